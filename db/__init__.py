from .db import (
    Base,
    get_engine,
    get_session,
    create_all,
    dispose_engine,
    default_slots,
    SqlMessageArchive,
    SqlKeyValueStore,
    SqlNotificationScheduler,
    SqlPreferenceStore,
)  # noqa: F401

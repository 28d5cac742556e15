"""Shows a fired notification to the user.

The desktop/OS banner is out of scope for the scheduler; in dev mode the banner
is just printed so the dispatcher can be followed from a terminal.
"""

from config import settings

from app.types.message_contract import ScheduledTrigger


def show_banner(trigger: ScheduledTrigger) -> None:
    title = trigger.title or settings.NOTIFICATION_TITLE
    print("[Notify] DEV mode:", title, "-", trigger.body or "(no body)", f"({trigger.message_id})")

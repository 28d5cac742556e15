"""Contract of the notification scheduler and the guarded wrapper the engine uses.

The scheduler itself (OS daemon, trigger table, ...) is an external capability.
The engine only ever talks to it through :class:`GuardedScheduler`, which puts
a timeout and a bounded retry around each call and turns failures into
:class:`TransientSchedulingError`.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Protocol, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)
from tenacity.wait import wait_base

from app.types.errors import TransientSchedulingError
from app.types.message_contract import ScheduledTrigger, TriggerPayload
from config import settings

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class NotificationScheduler(Protocol):
    async def list_scheduled(self) -> List[ScheduledTrigger]: ...

    async def cancel(self, identifier: str) -> None: ...

    async def create(
        self,
        fires_at: datetime,
        payload: TriggerPayload,
        title: Optional[str] = None,
        body: Optional[str] = None,
    ) -> str: ...


# Retry only on timeouts / OS / persistence errors
RETRY_ERRORS = (
    asyncio.TimeoutError,
    OSError,
    SQLAlchemyError,
)


class GuardedScheduler:
    """Timeout + retry decorator around any :class:`NotificationScheduler`."""

    def __init__(
        self,
        inner: NotificationScheduler,
        timeout: Optional[float] = None,
        attempts: Optional[int] = None,
        wait: Optional[wait_base] = None,
    ):
        self.inner = inner
        self.timeout = timeout if timeout is not None else settings.DEVICE_CALL_TIMEOUT
        self.attempts = attempts if attempts is not None else settings.DEVICE_CALL_ATTEMPTS
        self.wait = wait if wait is not None else wait_random_exponential(multiplier=0.2, max=2)

    async def _call(
        self,
        name: str,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        idempotent: bool = True,
        **kwargs: Any,
    ) -> T:
        # create is not idempotent: a timed-out call may still have landed.
        attempts = self.attempts if idempotent else 1
        try:
            async for attempt in AsyncRetrying(
                wait=self.wait,
                stop=stop_after_attempt(attempts),
                retry=retry_if_exception_type(RETRY_ERRORS),
                reraise=True,
            ):
                with attempt:
                    return await asyncio.wait_for(fn(*args, **kwargs), self.timeout)
        except (RetryError, *RETRY_ERRORS) as exc:
            _LOGGER.warning("Notification scheduler %s failed: %r", name, exc)
            raise TransientSchedulingError(f"notification scheduler {name} failed") from exc
        raise TransientSchedulingError(f"notification scheduler {name} made no attempt")

    async def list_scheduled(self) -> List[ScheduledTrigger]:
        return await self._call("list", self.inner.list_scheduled)

    async def cancel(self, identifier: str) -> None:
        await self._call("cancel", self.inner.cancel, identifier)

    async def create(
        self,
        fires_at: datetime,
        payload: TriggerPayload,
        title: Optional[str] = None,
        body: Optional[str] = None,
    ) -> str:
        return await self._call(
            "create", self.inner.create, fires_at, payload, idempotent=False, title=title, body=body
        )

"""Exception hierarchy of the scheduling subsystem."""

from __future__ import annotations


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling engine."""


class TransientSchedulingError(SchedulingError):
    """A notification-scheduler or persistence call failed or timed out.

    The engine logs these and gives up for the current run; the next
    invocation retries the missing work.
    """


class EmptyCatalogError(SchedulingError):
    """No message can be selected because the catalog is empty."""

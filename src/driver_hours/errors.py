"""Exceptions raised by the session and activity state machine."""

from __future__ import annotations


class DriverHoursError(Exception):
    """Base class for lifecycle errors surfaced to callers."""


class InvalidState(DriverHoursError):
    """An operation was attempted without its precondition (usually an open session)."""


class AlreadyOpen(DriverHoursError):
    """A program was started while another one is still open."""


class NoSession(DriverHoursError):
    """A program operation needs an open session and there is none."""


class NoActiveActivity(DriverHoursError):
    """There is no open activity to end."""


class UnknownCategory(DriverHoursError, ValueError):
    """The activity category is not one of driving, break, work or other."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Unknown activity category: {value!r}")
        self.value = value

"""Error taxonomy for the monitoring engine."""

from __future__ import annotations

from typing import Optional


class MonitorError(Exception):
    """Base class for errors raised by the monitoring services."""


class ValidationError(MonitorError, ValueError):
    """Input rejected before any state was touched."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        lower: Optional[float] = None,
        upper: Optional[float] = None,
        value: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.field = field
        self.lower = lower
        self.upper = upper
        self.value = value

    @classmethod
    def out_of_range(cls, field: str, lower: float, upper: float, value: float) -> "ValidationError":
        return cls(
            f"{field} must be between {_fmt(lower)} and {_fmt(upper)}. Got: {_fmt(value)}",
            field=field,
            lower=lower,
            upper=upper,
            value=value,
        )


class PersistenceError(MonitorError):
    """A backing-store read or write failed."""


class TransportError(MonitorError):
    """A live-update notification could not be delivered."""


def _fmt(number: float) -> str:
    # 150.0 -> "150"
    if float(number).is_integer():
        return str(int(number))
    return str(number)

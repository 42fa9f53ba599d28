"""
Error taxonomy for the managed instance group canary rollout.

Every error is fatal to the current run. Callers can still tell them apart:
LocationError is bad input, NotFoundError/APIError come from the Compute API,
the primary-version errors mean the fleet is in a shape the scaler cannot
reason about, and the remaining ones are rollout gates that tripped.
"""

from typing import Optional


class RolloutError(Exception):
    """Base class for all rollout errors."""


class LocationError(RolloutError, ValueError):
    """Raised when a location has both or neither of region and zone set."""


class NotFoundError(RolloutError):
    """Raised when an instance group, template or backend service is missing."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation


class APIError(RolloutError):
    """Raised on a transport or provider-side failure."""

    def __init__(
        self, operation: str, message: str, status_code: Optional[int] = None
    ):
        prefix = f"{operation} failed"
        if status_code is not None:
            prefix += f" ({status_code})"
        super().__init__(f"{prefix}: {message}")
        self.operation = operation
        self.status_code = status_code


class PrimaryVersionError(RolloutError):
    """Raised when the primary (non-canary) version cannot be determined."""


class AmbiguousPrimaryError(PrimaryVersionError):
    """Raised when more than one non-canary version is present."""


class MissingPrimaryError(PrimaryVersionError):
    """Raised when no non-canary version is present."""


class StabilityTimeoutError(RolloutError):
    """Raised when the group does not become stable within the tick budget."""

    def __init__(self, ticks: int):
        super().__init__(f"instance group did not become stable within {ticks} ticks")
        self.ticks = ticks


class UnhealthyCanaryError(RolloutError):
    """Raised when a canary instance is reported unhealthy by the backend service."""

    def __init__(self, instance: str):
        super().__init__(
            f"found unhealthy canary instance in backend service: '{instance}'"
        )
        self.instance = instance


class RolloutCancelledError(RolloutError):
    """Raised when the run's cancel event is set."""

"""Exception types raised by the compute stages."""


class PlaneSweepError(Exception):
    """Base class for stage failures.

    Args:
        message: Human-readable description of the failure.
        location: Where the failure originated (stage name or "file:line").
    """

    def __init__(self, message: str = "", location: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.location = location

    def __str__(self) -> str:
        if self.location:
            return f"{self.location}: {self.message}"
        return self.message


class ResourceUnavailableError(PlaneSweepError):
    """No usable compute device was found."""


class ComputeFailureError(PlaneSweepError):
    """A tensor kernel or memory operation failed mid-algorithm."""

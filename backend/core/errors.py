"""Error taxonomy for the scheduling core."""


class SchedulingError(Exception):
    """Base class for scheduling failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(SchedulingError):
    """A provider, patient or appointment does not exist."""


class SchedulingValidationError(SchedulingError):
    """A malformed or non-bookable time, type or window was requested."""


class ConflictError(SchedulingError):
    """The slot was taken by another live appointment at commit time."""


class InvalidTransitionError(SchedulingError):
    """A lifecycle change was attempted from an incompatible status."""


class UpstreamError(SchedulingError):
    """The text-understanding collaborator failed or returned garbage."""


class UpstreamTimeoutError(UpstreamError):
    """The text-understanding collaborator did not answer in time."""

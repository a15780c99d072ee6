"""Failure taxonomy for the placement engine.

Only ContentUnavailable and CompletionSinkFailure ever reach a caller.
CorruptPersistedState and StaleSessionWrite are raised and handled inside
the engine; an exhausted duplicate budget is resolved by accepting the
duplicate and is never raised.
"""


class PlacementError(Exception):
    """Base class for placement engine errors."""


class ContentUnavailable(PlacementError):
    """The content source returned no questions for the requested grade."""

    def __init__(self, operation: str, grade: str, reason: str | None = None):
        self.operation = operation
        self.grade = grade
        self.reason = reason
        msg = f"No questions available for {operation} at grade {grade}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class CorruptPersistedState(PlacementError):
    """A persisted question history blob could not be parsed."""


class StaleSessionWrite(PlacementError):
    """A fetch result arrived after its owning session was torn down."""


class SessionCancelled(PlacementError):
    """The assessment was cancelled before it reached a verdict."""


class CompletionSinkFailure(PlacementError):
    """Recording the final grade failed; the grade is kept for a retry."""

    def __init__(self, final_grade: str, cause: Exception):
        self.final_grade = final_grade
        self.cause = cause
        super().__init__(f"Failed to record completion at grade {final_grade}: {cause}")

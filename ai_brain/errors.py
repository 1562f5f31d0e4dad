"""Error taxonomy shared by the memory engines."""

from __future__ import annotations


class BrainError(RuntimeError):
    """Base class for memory core failures."""


class OracleUnavailable(BrainError):
    """An embedding or text-understanding call failed or timed out."""


class MalformedOracleResponse(BrainError):
    """The text-understanding oracle returned something that is not the expected JSON."""


class StoreUnavailable(BrainError):
    """The durable store could not be reached or rejected the statement."""


class InvalidRecordError(BrainError, ValueError):
    """A record would violate an invariant if it were persisted."""


class PerUserProcessingError(BrainError):
    """Processing one user's maintenance pass raised."""

    def __init__(self, user_id: str, cause: BaseException) -> None:
        super().__init__(f"user_id={user_id}: {cause}")
        self.user_id = user_id
        self.cause = cause

"""Errors raised by the mastery engine and the progress store."""


class SpellwiseError(Exception):
    """Base class for engine errors."""


class MalformedSessionError(SpellwiseError, ValueError):
    """A session that cannot be folded: unsealed, out of order, or already sealed."""


class DuplicateSessionError(SpellwiseError):
    """The session id has already been folded into a progress record."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} has already been folded")
        self.session_id = session_id


class StoreConflictError(SpellwiseError):
    """A compare-and-set write lost against a concurrent writer. Retryable."""

    def __init__(self, identity: str, expected_version: int):
        super().__init__(
            f"Progress record for {identity} changed since version {expected_version}"
        )
        self.identity = identity
        self.expected_version = expected_version


class LearnerNotFoundError(SpellwiseError, ValueError):
    """No learner is stored under the given identity."""

    def __init__(self, identity: str):
        super().__init__(f"Learner {identity} not found")
        self.identity = identity

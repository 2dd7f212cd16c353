"""
Exception hierarchy for SkillSwap.

Every error raised by the domain modules inherits from SkillSwapError and
carries the HTTP status the API answers with.
"""


class SkillSwapError(Exception):
    """Base exception for all SkillSwap errors."""
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidRequestError(SkillSwapError):
    """Validation failure (self-swap, missing field, bad interval)."""
    status_code = 400


class PermissionDeniedError(SkillSwapError):
    """Actor is not allowed to act on this record."""
    status_code = 403


class NotFoundError(SkillSwapError):
    status_code = 404


class DuplicateRequestError(SkillSwapError):
    """A swap request for the same (requester, receiver, skill) already exists."""
    status_code = 409


class IllegalTransitionError(SkillSwapError):
    """Swap request status change not permitted from its current state."""
    status_code = 409


class ScheduleConflictError(SkillSwapError):
    status_code = 409


class GenerationError(SkillSwapError):
    """Text-generation service failure (network, timeout, malformed output)."""
    status_code = 502


class StoreUnavailableError(SkillSwapError):
    status_code = 503

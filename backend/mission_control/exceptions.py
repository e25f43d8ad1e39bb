"""
Application exceptions.

Services raise these; ``main`` maps them onto HTTP status codes.
"""


class MissionControlError(Exception):
    """Base class for application errors."""


class NotFoundError(MissionControlError):
    """Requested resource does not exist or is not visible to the caller."""


class PermissionDeniedError(MissionControlError):
    """Caller is not allowed to touch the resource."""


class StorageError(MissionControlError):
    """A database operation failed. The message carries the failed action."""

    def __init__(self, action: str, cause: Exception = None):
        self.action = action
        self.cause = cause
        detail = f"Failed to {action}"
        if cause is not None:
            detail = f"{detail}: {cause}"
        super().__init__(detail)


class ProviderError(MissionControlError):
    """An upstream vendor (LLM, STT, TTS) call failed."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(message)

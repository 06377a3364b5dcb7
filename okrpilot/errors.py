"""Exception types raised by the reconciliation pipeline."""
from __future__ import annotations


class OkrPilotError(Exception):
    """Base class for okrpilot failures."""
    pass


class ConfigurationError(OkrPilotError):
    """Raised when required configuration (e.g. the API credential) is missing."""
    pass


class ModelDiscoveryFailed(OkrPilotError):
    """Raised when the model listing call fails."""

    def __init__(self, message: str, body: str = "") -> None:
        super().__init__(message)
        self.body = body


class NoModelsAvailable(ModelDiscoveryFailed):
    """Raised when discovery returns no model that can generate content."""
    pass


class CompletionFailed(OkrPilotError):
    """Raised when the completion call fails and no retry is left."""

    def __init__(self, message: str, status_code: int = 0, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MalformedResponse(OkrPilotError):
    """Raised in strict mode when the model output cannot be parsed."""
    pass

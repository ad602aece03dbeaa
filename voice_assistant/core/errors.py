"""Error kinds raised by providers and surfaced by the conversation session."""

from typing import Optional


class VoiceAssistantError(Exception):
    """Base class for every error the assistant surfaces to the user."""


class CaptureError(VoiceAssistantError):
    """Speech capture failed or is unavailable."""

    UNSUPPORTED = "unsupported"
    PERMISSION_DENIED = "permission-denied"
    NO_SPEECH = "no-speech"
    OTHER = "other"

    REASONS = (UNSUPPORTED, PERMISSION_DENIED, NO_SPEECH, OTHER)

    def __init__(self, reason: str, detail: Optional[str] = None):
        if reason not in self.REASONS:
            raise ValueError(f"Unknown capture error reason: {reason}")
        self.reason = reason
        self.detail = detail or reason
        super().__init__(self.detail)


class AuthError(VoiceAssistantError):
    """No credential is configured for the inference endpoint."""


class InferenceError(VoiceAssistantError):
    """The chat-completion request failed or returned no reply."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class SynthesisError(VoiceAssistantError):
    """Text-to-speech failed or is unavailable."""


class ValidationError(VoiceAssistantError):
    """A value was rejected before being stored."""

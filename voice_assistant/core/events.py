"""
Typed events consumed by the conversation session, and the listener
interface the presentation layer implements.

Commands come from the user interface. Outcome events are produced by
provider work running off the session thread; each carries the generation
of the turn that launched it so stale results can be recognised.
"""

from dataclasses import dataclass
from typing import Optional

from .errors import CaptureError, VoiceAssistantError
from .state import Activity


# Commands


@dataclass(frozen=True)
class StartCapture:
    pass


@dataclass(frozen=True)
class StopCapture:
    pass


@dataclass(frozen=True)
class ToggleCapture:
    pass


@dataclass(frozen=True)
class ClearConversation:
    halt: bool = False


# Outcomes


@dataclass(frozen=True)
class Outcome:
    generation: int


@dataclass(frozen=True)
class TranscriptReceived(Outcome):
    text: str
    latency_ms: Optional[float] = None


@dataclass(frozen=True)
class CaptureEnded(Outcome):
    """Capture finished without a transcript (cancelled)."""


@dataclass(frozen=True)
class CaptureFailed(Outcome):
    error: CaptureError


@dataclass(frozen=True)
class InferenceSucceeded(Outcome):
    reply: str
    latency_ms: Optional[float] = None


@dataclass(frozen=True)
class InferenceFailed(Outcome):
    error: VoiceAssistantError


@dataclass(frozen=True)
class SpeechEnded(Outcome):
    completed: bool = True
    latency_ms: Optional[float] = None


@dataclass(frozen=True)
class SpeechFailed(Outcome):
    error: VoiceAssistantError


class SessionListener:
    """Receives presentation events. Every method is a no-op by default."""

    def message_appended(self, role: str, text: str) -> None:
        pass

    def status_changed(self, label: str, activity: Activity) -> None:
        pass

    def error_shown(self, text: str) -> None:
        pass

    def notice_shown(self, text: str) -> None:
        pass

    def conversation_cleared(self) -> None:
        pass

"""Activity state of the conversation session."""

from dataclasses import dataclass
from enum import Enum


class Activity(Enum):
    """What the session is currently doing."""

    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"


STATUS_LABELS = {
    Activity.IDLE: "Ready to listen",
    Activity.LISTENING: "Listening...",
    Activity.PROCESSING: "Processing...",
    Activity.SPEAKING: "Speaking...",
}
ERROR_LABEL = "Error occurred"


@dataclass(frozen=True)
class SessionState:
    """A single activity tag plus whether the last turn ended in an error."""

    activity: Activity = Activity.IDLE
    error: bool = False

    @property
    def label(self) -> str:
        if self.error and self.activity is Activity.IDLE:
            return ERROR_LABEL
        return STATUS_LABELS[self.activity]

    @property
    def is_idle(self) -> bool:
        return self.activity is Activity.IDLE

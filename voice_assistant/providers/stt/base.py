"""Base interface for Speech-to-Text providers."""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class Transcript:
    """Text recognised from one captured utterance."""

    text: str
    timestamp: float
    confidence: Optional[float] = None
    latency: Optional[float] = None  # ms from end of speech to text


class STTProvider(ABC):
    """
    Abstract base class for single-shot STT providers.

    Each ``capture`` call records at most one utterance and returns to idle
    regardless of the outcome.
    """

    @abstractmethod
    def initialize(self) -> None:
        """
        Initialize the STT provider.

        Raises:
            CaptureError: with reason ``unsupported`` when the platform
                cannot capture speech
        """
        pass

    @abstractmethod
    def capture(
        self, cancel_event: Optional[threading.Event] = None
    ) -> Optional[Transcript]:
        """
        Capture and transcribe one utterance, blocking until done.

        Args:
            cancel_event: Cancels this capture when set. A capture whose
                event is already set returns None without recording.

        Returns:
            The transcript, or None when the capture was cancelled

        Raises:
            CaptureError: unsupported, permission-denied, no-speech or other
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Cancel the capture in progress, if any."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the STT provider."""
        pass

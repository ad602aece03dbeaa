"""Base interface for Text-to-Speech providers."""

from abc import ABC, abstractmethod


class TTSProvider(ABC):
    """Abstract base class for TTS providers."""

    @abstractmethod
    def initialize(self) -> None:
        """
        Initialize the TTS provider.

        Raises:
            SynthesisError: when speech output is unavailable
        """
        pass

    @abstractmethod
    def speak(self, text: str) -> bool:
        """
        Speak the given text, blocking until playback ends.

        Any utterance already playing is cancelled first; utterances are
        never queued.

        Args:
            text: The text to convert to speech

        Returns:
            True when playback completed, False when it was cancelled

        Raises:
            SynthesisError: when synthesis or playback fails
        """
        pass

    @abstractmethod
    def cancel(self) -> None:
        """Stop the current utterance. No-op if nothing is speaking."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the TTS provider and clean up resources."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the TTS provider."""
        pass

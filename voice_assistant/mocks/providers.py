"""
Mock provider implementations for running the assistant without a
microphone, speakers or network access.
"""

import threading
import time
from typing import List, Optional, Sequence

from ..core.errors import CaptureError
from ..providers.stt.base import STTProvider, Transcript
from ..providers.ai.base import AIProvider
from ..providers.tts.base import TTSProvider
from ..state.history import Message


DEFAULT_TRANSCRIPTS = [
    "Hello, how are you today?",
    "What's the weather like?",
    "Can you help me with a task?",
    "Tell me a joke.",
    "What time is it?",
]

DEFAULT_REPLIES = [
    "I'm doing great, thank you for asking! How can I help you today?",
    "The weather is looking nice! It's a perfect day for a conversation.",
    "I'd be happy to help you with your task. What would you like to work on?",
    "Here's a joke for you: Why don't scientists trust atoms? "
    "Because they make up everything!",
]


class MockSTTProvider(STTProvider):
    """Mock STT provider that cycles through canned transcripts."""

    def __init__(
        self, transcripts: Optional[List[str]] = None, delay: float = 1.5
    ):
        self.transcripts = list(DEFAULT_TRANSCRIPTS if transcripts is None else transcripts)
        self.delay = delay
        self.transcript_index = 0
        self.is_capturing = False
        self._stop_event = threading.Event()

    def initialize(self) -> None:
        """Initialize mock STT provider."""
        pass

    def capture(
        self, cancel_event: Optional[threading.Event] = None
    ) -> Optional[Transcript]:
        """Pretend to listen, then return the next transcript."""
        self._stop_event = cancel_event or threading.Event()
        self.is_capturing = True
        try:
            if self._stop_event.wait(self.delay):
                return None
        finally:
            self.is_capturing = False

        if not self.transcripts:
            raise CaptureError(CaptureError.NO_SPEECH, "No speech detected")

        text = self.transcripts[self.transcript_index % len(self.transcripts)]
        self.transcript_index += 1
        return Transcript(text=text, timestamp=time.time(), confidence=0.95, latency=150.0)

    def stop(self) -> None:
        """Cancel the pretend capture."""
        self._stop_event.set()

    def get_status(self) -> dict:
        """Get mock STT provider status."""
        return {
            "provider": "mock_stt",
            "is_capturing": self.is_capturing,
            "transcripts_generated": self.transcript_index,
        }


class MockAIProvider(AIProvider):
    """Mock AI provider that answers with canned replies."""

    def __init__(self, replies: Optional[List[str]] = None, delay: float = 0.5):
        self.replies = list(DEFAULT_REPLIES if replies is None else replies)
        self.delay = delay
        self.response_index = 0
        self.requests: List[Sequence[Message]] = []

    def initialize(self) -> None:
        """Initialize mock AI provider."""
        pass

    def complete(self, history: Sequence[Message]) -> str:
        """Return the next canned reply."""
        self.requests.append(tuple(history))
        time.sleep(self.delay)

        reply = self.replies[self.response_index % len(self.replies)]
        self.response_index += 1
        return reply

    def stop(self) -> None:
        """Stop mock AI provider."""
        pass

    def get_status(self) -> dict:
        """Get mock AI provider status."""
        return {
            "provider": "mock_ai",
            "responses_generated": self.response_index,
        }


class MockTTSProvider(TTSProvider):
    """Mock TTS provider that simulates playback time."""

    def __init__(self, seconds_per_word: float = 0.1):
        self.seconds_per_word = seconds_per_word
        self.is_playing = False
        self.spoken: List[str] = []
        self._cancel_event = threading.Event()

    def initialize(self) -> None:
        """Initialize mock TTS provider."""
        pass

    def speak(self, text: str) -> bool:
        """Wait roughly as long as reading the text aloud would take."""
        self.cancel()
        self._cancel_event.clear()
        self.is_playing = True
        self.spoken.append(text)
        try:
            duration = len(text.split()) * self.seconds_per_word
            return not self._cancel_event.wait(duration)
        finally:
            self.is_playing = False

    def cancel(self) -> None:
        """Stop mock audio playback."""
        if self.is_playing:
            self._cancel_event.set()

    def stop(self) -> None:
        """Stop mock TTS provider."""
        self.cancel()

    def get_status(self) -> dict:
        """Get mock TTS provider status."""
        return {"provider": "mock_tts", "is_playing": self.is_playing}

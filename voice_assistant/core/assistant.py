"""
Assistant wiring: builds the providers and the conversation session,
handles startup notices, API key changes and shutdown.
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional
import structlog

from .errors import CaptureError, SynthesisError, ValidationError
from .events import SessionListener
from .session import ConversationSession, Runner, describe_error
from ..config.settings import settings
from ..metrics.collector import MetricsCollector
from ..providers.ai.base import AIProvider
from ..providers.registry import registry
from ..providers.stt.base import STTProvider
from ..providers.tts.base import TTSProvider
from ..state.credential_store import CredentialStore


logger = structlog.get_logger()


WELCOME_MESSAGE = (
    "Welcome! Please configure your OpenRouter API key in settings to get started."
)
KEY_SAVED_MESSAGE = "API key saved successfully! You can now use the voice assistant."
VOICE_OUTPUT_UNAVAILABLE_MESSAGE = "Note: Voice output is not supported on this system."


@dataclass
class AssistantConfig:
    """Configuration for the voice assistant."""

    stt_provider: str = "whisperkit"
    ai_provider: str = "openrouter"
    tts_provider: str = "elevenlabs"
    enable_metrics: bool = True
    mock_mode: bool = False


class VoiceAssistant:
    """
    Owns the providers and the conversation session.

    ``start`` prepares everything, ``run`` drives the session loop on the
    calling thread until ``stop`` or ``request_shutdown``.
    """

    def __init__(
        self,
        config: AssistantConfig,
        credentials: Optional[CredentialStore] = None,
        listener: Optional[SessionListener] = None,
        runner: Optional[Runner] = None,
    ):
        self.config = config
        self.listener = listener or SessionListener()
        self.credentials = credentials or CredentialStore(
            settings.credentials.path, default=settings.env_api_key
        )
        self.metrics_collector = MetricsCollector() if config.enable_metrics else None
        self._runner = runner

        self.stt_provider: Optional[STTProvider] = self._initialize_stt_provider()
        self.ai_provider: AIProvider = self._initialize_ai_provider()
        self.tts_provider: Optional[TTSProvider] = self._initialize_tts_provider()

        self.session: Optional[ConversationSession] = None
        self.is_running = False
        self.shutdown_event = threading.Event()

    def _initialize_stt_provider(self) -> STTProvider:
        """Create the STT provider based on configuration."""
        if self.config.mock_mode:
            from ..mocks.providers import MockSTTProvider

            return MockSTTProvider()
        return registry.get_stt_provider(self.config.stt_provider)

    def _initialize_ai_provider(self) -> AIProvider:
        """Create the AI provider based on configuration."""
        if self.config.mock_mode:
            from ..mocks.providers import MockAIProvider

            return MockAIProvider()
        return registry.get_ai_provider(
            self.config.ai_provider, credentials=self.credentials
        )

    def _initialize_tts_provider(self) -> TTSProvider:
        """Create the TTS provider based on configuration."""
        if self.config.mock_mode:
            from ..mocks.providers import MockTTSProvider

            return MockTTSProvider()
        return registry.get_tts_provider(self.config.tts_provider)

    def start(self) -> ConversationSession:
        """Initialize providers and create the conversation session."""
        logger.info(
            "Starting voice assistant",
            stt_provider=self.config.stt_provider,
            ai_provider=self.config.ai_provider,
            tts_provider=self.config.tts_provider,
            mock_mode=self.config.mock_mode,
        )

        if not self.config.mock_mode and not self.credentials.is_configured():
            self.listener.notice_shown(WELCOME_MESSAGE)

        try:
            self.stt_provider.initialize()
        except CaptureError as e:
            logger.error("Speech recognition failed to initialize", error=str(e))
            self.listener.error_shown(describe_error(e))
            self.stt_provider = None

        self.ai_provider.initialize()

        try:
            self.tts_provider.initialize()
        except SynthesisError as e:
            logger.warning("Speech synthesis not available", error=str(e))
            self.listener.notice_shown(VOICE_OUTPUT_UNAVAILABLE_MESSAGE)
            self.tts_provider = None

        self.session = ConversationSession(
            self.stt_provider,
            self.ai_provider,
            self.tts_provider,
            listener=self.listener,
            metrics_collector=self.metrics_collector,
            runner=self._runner,
        )

        self.shutdown_event.clear()
        self.is_running = True
        self.listener.status_changed(self.session.state.label, self.session.state.activity)
        logger.info("Voice assistant ready")
        return self.session

    def run(self) -> None:
        """Drive the session loop until shutdown is requested."""
        if not self.session:
            raise RuntimeError("Voice assistant not started")
        self.session.run(self.shutdown_event)

    def post(self, command: Any) -> None:
        """Queue a user command for the session loop. Safe from any thread."""
        if not self.session:
            raise RuntimeError("Voice assistant not started")
        self.session.post(command)

    def request_shutdown(self) -> None:
        """Ask the session loop to exit. Safe from any thread."""
        self.shutdown_event.set()

    def save_credential(self, value: str) -> bool:
        """Validate and store a new API key, reporting the result."""
        try:
            self.credentials.set(value)
        except ValidationError as e:
            logger.info("Rejected API key", reason=str(e))
            self.listener.error_shown(str(e))
            return False
        except OSError as e:
            logger.error(
                "Failed to save API key", path=str(self.credentials.path), error=str(e)
            )
            self.listener.error_shown(f"Could not save API key: {e}")
            return False

        self.listener.notice_shown(KEY_SAVED_MESSAGE)
        return True

    def stop(self) -> None:
        """Stop the assistant and release providers."""
        logger.info("Stopping voice assistant")

        self.shutdown_event.set()
        if self.session:
            self.session.shutdown()

        for provider in (self.stt_provider, self.ai_provider, self.tts_provider):
            if provider is None:
                continue
            try:
                provider.stop()
            except Exception as e:
                logger.warning(
                    "Error stopping provider",
                    provider=type(provider).__name__,
                    error=str(e),
                )

        if self.metrics_collector:
            self.metrics_collector.end_session()

        self.is_running = False
        logger.info("Voice assistant stopped")

    def get_status(self) -> Dict[str, Any]:
        """Get current assistant status."""
        status: Dict[str, Any] = {
            "is_running": self.is_running,
            "mock_mode": self.config.mock_mode,
            "credential_configured": self.credentials.is_configured(),
        }
        if self.session:
            status.update(self.session.get_status())
        return status

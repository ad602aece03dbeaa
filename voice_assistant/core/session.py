"""
Conversation session: the state machine that runs one turn at a time
through capture, inference and speech.
"""

import threading
import time
from functools import partial
from queue import Queue, Empty
from typing import Any, Callable, Dict, Optional, Sequence
import structlog

from .errors import (
    AuthError,
    CaptureError,
    InferenceError,
    SynthesisError,
    VoiceAssistantError,
)
from .events import (
    CaptureEnded,
    CaptureFailed,
    ClearConversation,
    InferenceFailed,
    InferenceSucceeded,
    Outcome,
    SessionListener,
    SpeechEnded,
    SpeechFailed,
    StartCapture,
    StopCapture,
    ToggleCapture,
    TranscriptReceived,
)
from .state import Activity, SessionState
from ..metrics.collector import MetricsCollector
from ..providers.ai.base import AIProvider
from ..providers.stt.base import STTProvider
from ..providers.tts.base import TTSProvider
from ..state.history import ASSISTANT, USER, ConversationHistory, Message


logger = structlog.get_logger()


Runner = Callable[[Callable[[], None], str], None]

STT_UNAVAILABLE_MESSAGE = (
    "Speech recognition not initialized. Please restart the assistant."
)

CAPTURE_ERROR_MESSAGES = {
    CaptureError.NO_SPEECH: "No speech detected. Please try again.",
    CaptureError.PERMISSION_DENIED: (
        "Microphone access denied. Please enable microphone permissions."
    ),
    CaptureError.UNSUPPORTED: "Speech recognition is not supported on this system.",
}


def spawn_thread(target: Callable[[], None], name: str) -> None:
    """Run provider work on a daemon thread."""
    threading.Thread(target=target, daemon=True, name=name).start()


def describe_error(error: Exception) -> str:
    """User-facing text for an error surfaced by the session."""
    if isinstance(error, CaptureError):
        return CAPTURE_ERROR_MESSAGES.get(
            error.reason, f"Speech recognition error: {error.detail}"
        )
    if isinstance(error, AuthError):
        return str(error) or "Please configure your OpenRouter API key in settings."
    if isinstance(error, InferenceError):
        return f"API Error: {error.message}"
    return str(error)


class ConversationSession:
    """
    Coordinates speech capture, inference and speech output for a single
    conversation.

    The session owns the history and the activity state, and changes them
    only inside ``dispatch``, on the thread that owns the session. Provider
    calls block, so they run through ``runner`` (a daemon thread by
    default) and report back by posting outcome events to the session
    queue, which the owning thread drains with ``process_pending`` or
    ``run``.

    Each launched operation is tagged with the current generation. Any
    command that abandons a turn (stop, clear, preempting speech) advances
    the generation, so results of the abandoned turn are dropped instead of
    applied.
    """

    def __init__(
        self,
        stt_provider: Optional[STTProvider],
        ai_provider: AIProvider,
        tts_provider: Optional[TTSProvider] = None,
        listener: Optional[SessionListener] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        runner: Optional[Runner] = None,
    ):
        self.stt_provider = stt_provider
        self.ai_provider = ai_provider
        self.tts_provider = tts_provider
        self.listener = listener or SessionListener()
        self.metrics_collector = metrics_collector
        self._runner = runner or spawn_thread

        self.history = ConversationHistory()
        self.state = SessionState()
        self.generation = 0
        self.events: "Queue[Any]" = Queue()
        self._capture_cancel: Optional[threading.Event] = None

        self._handlers: Dict[type, Callable[[Any], None]] = {
            StartCapture: self._on_start_capture,
            StopCapture: self._on_stop_capture,
            ToggleCapture: self._on_toggle_capture,
            ClearConversation: self._on_clear,
            TranscriptReceived: self._on_transcript,
            CaptureEnded: self._on_capture_ended,
            CaptureFailed: self._on_capture_failed,
            InferenceSucceeded: self._on_inference_succeeded,
            InferenceFailed: self._on_inference_failed,
            SpeechEnded: self._on_speech_ended,
            SpeechFailed: self._on_speech_failed,
        }

    # Commands, for use on the owning thread

    def start_capture(self) -> None:
        self.dispatch(StartCapture())

    def stop_capture(self) -> None:
        self.dispatch(StopCapture())

    def toggle_capture(self) -> None:
        self.dispatch(ToggleCapture())

    def clear(self, halt: bool = False) -> None:
        """Discard the history and return to Idle from any state."""
        self.dispatch(ClearConversation(halt=halt))

    # Event loop

    def post(self, event: Any) -> None:
        """Queue an event for the owning thread. Safe from any thread."""
        self.events.put(event)

    def process_pending(self, timeout: Optional[float] = None) -> int:
        """
        Dispatch every queued event.

        Args:
            timeout: seconds to wait for the first event; None returns
                immediately when the queue is empty

        Returns:
            Number of events dispatched
        """
        processed = 0
        try:
            event = self.events.get(block=timeout is not None, timeout=timeout)
        except Empty:
            return processed

        while True:
            self.dispatch(event)
            processed += 1
            try:
                event = self.events.get_nowait()
            except Empty:
                return processed

    def run(self, shutdown_event: threading.Event, poll_interval: float = 0.1) -> None:
        """Dispatch events until ``shutdown_event`` is set."""
        logger.debug("Session loop started")
        while not shutdown_event.is_set():
            self.process_pending(timeout=poll_interval)
        logger.debug("Session loop stopped")

    def dispatch(self, event: Any) -> None:
        """Apply one event to the state machine."""
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unhandled event type: {type(event).__name__}")

        if isinstance(event, Outcome) and event.generation != self.generation:
            logger.debug(
                "Dropping stale result",
                event_type=type(event).__name__,
                generation=event.generation,
                current_generation=self.generation,
            )
            if self.metrics_collector:
                self.metrics_collector.record_stale_result()
            return

        handler(event)

    def shutdown(self) -> None:
        """Stop capture and speech and abandon the current turn."""
        self._halt_activity()
        self._next_generation()
        self._set_state(Activity.IDLE)

    # State helpers

    def _set_state(self, activity: Activity, error: bool = False) -> None:
        self.state = SessionState(activity, error)
        logger.debug("Session state changed", activity=activity.value, error=error)
        self.listener.status_changed(self.state.label, activity)

    def _next_generation(self) -> int:
        self.generation += 1
        return self.generation

    def _expect(self, activity: Activity, event: Outcome) -> bool:
        if self.state.activity is activity:
            return True
        logger.warning(
            "Event does not match current activity",
            event_type=type(event).__name__,
            expected=activity.value,
            activity=self.state.activity.value,
        )
        return False

    def _show_error(self, text: str) -> None:
        self.listener.error_shown(text)
        self._set_state(Activity.IDLE, error=True)

    def _record_error(self, component: str, error: Exception) -> None:
        if self.metrics_collector:
            self.metrics_collector.record_error(component, str(error))

    def _launch(self, name: str, job: Callable[[int], Outcome]) -> None:
        generation = self.generation

        def target():
            self.post(job(generation))

        self._runner(target, name)

    def _stop_listening(self) -> None:
        if self._capture_cancel is not None:
            self._capture_cancel.set()
        try:
            self.stt_provider.stop()
        except Exception as e:
            logger.warning("Error stopping speech capture", error=str(e))

    def _cancel_speech(self) -> None:
        try:
            self.tts_provider.cancel()
        except Exception as e:
            logger.warning("Error cancelling speech", error=str(e))

    def _halt_activity(self) -> None:
        if self.state.activity is Activity.LISTENING and self.stt_provider:
            self._stop_listening()
        elif self.state.activity is Activity.SPEAKING and self.tts_provider:
            self._cancel_speech()

    # Provider jobs, run off the session thread

    def _capture_job(self, generation: int, cancel_event: threading.Event) -> Outcome:
        try:
            transcript = self.stt_provider.capture(cancel_event)
        except CaptureError as e:
            return CaptureFailed(generation, e)
        except Exception as e:
            logger.error("Unexpected speech capture failure", error=str(e), exc_info=True)
            return CaptureFailed(generation, CaptureError(CaptureError.OTHER, str(e)))

        if transcript is None:
            return CaptureEnded(generation)
        return TranscriptReceived(generation, transcript.text, transcript.latency)

    def _inference_job(self, generation: int, history: Sequence[Message]) -> Outcome:
        start_time = time.time()
        try:
            reply = self.ai_provider.complete(history)
        except VoiceAssistantError as e:
            return InferenceFailed(generation, e)
        except Exception as e:
            logger.error("Unexpected inference failure", error=str(e), exc_info=True)
            return InferenceFailed(generation, InferenceError(str(e)))

        return InferenceSucceeded(generation, reply, (time.time() - start_time) * 1000)

    def _speech_job(self, generation: int, text: str) -> Outcome:
        start_time = time.time()
        try:
            completed = self.tts_provider.speak(text)
        except VoiceAssistantError as e:
            return SpeechFailed(generation, e)
        except Exception as e:
            logger.error("Unexpected speech failure", error=str(e), exc_info=True)
            return SpeechFailed(generation, SynthesisError(str(e)))

        return SpeechEnded(
            generation, completed is not False, (time.time() - start_time) * 1000
        )

    # Handlers

    def _on_start_capture(self, event: StartCapture) -> None:
        activity = self.state.activity
        if activity in (Activity.LISTENING, Activity.PROCESSING):
            logger.info("Ignoring capture request", activity=activity.value)
            return

        if self.stt_provider is None:
            self._show_error(STT_UNAVAILABLE_MESSAGE)
            return

        if activity is Activity.SPEAKING:
            logger.info("Capture requested while speaking, cancelling speech")
            self._cancel_speech()
            if self.metrics_collector:
                self.metrics_collector.record_preemption()

        self._next_generation()
        self._set_state(Activity.LISTENING)
        self._capture_cancel = threading.Event()
        self._launch(
            "Capture-Worker",
            partial(self._capture_job, cancel_event=self._capture_cancel),
        )

    def _on_stop_capture(self, event: StopCapture) -> None:
        if self.state.activity is not Activity.LISTENING:
            logger.debug("No capture to stop", activity=self.state.activity.value)
            return

        self._stop_listening()
        self._next_generation()
        self._set_state(Activity.IDLE)

    def _on_toggle_capture(self, event: ToggleCapture) -> None:
        if self.state.activity is Activity.LISTENING:
            self._on_stop_capture(StopCapture())
        else:
            self._on_start_capture(StartCapture())

    def _on_clear(self, event: ClearConversation) -> None:
        if event.halt:
            self._halt_activity()

        self._next_generation()
        self.history.clear()
        self.listener.conversation_cleared()
        self._set_state(Activity.IDLE)
        logger.info("Conversation cleared")

    def _on_transcript(self, event: TranscriptReceived) -> None:
        if not self._expect(Activity.LISTENING, event):
            return

        text = event.text.strip()
        if not text:
            self._on_capture_failed(
                CaptureFailed(
                    event.generation,
                    CaptureError(CaptureError.NO_SPEECH, "Empty transcript"),
                )
            )
            return

        if self.metrics_collector and event.latency_ms is not None:
            self.metrics_collector.record_capture_latency(event.latency_ms)

        self.history.add_user_message(text)
        self.listener.message_appended(USER, text)
        self._set_state(Activity.PROCESSING)
        self._launch(
            "AI-Worker", partial(self._inference_job, history=self.history.snapshot())
        )

    def _on_capture_ended(self, event: CaptureEnded) -> None:
        if self._expect(Activity.LISTENING, event):
            self._set_state(Activity.IDLE)

    def _on_capture_failed(self, event: CaptureFailed) -> None:
        if not self._expect(Activity.LISTENING, event):
            return

        logger.warning(
            "Speech capture failed",
            reason=event.error.reason,
            detail=event.error.detail,
        )
        self._record_error("capture", event.error)
        self._show_error(describe_error(event.error))

    def _on_inference_succeeded(self, event: InferenceSucceeded) -> None:
        if not self._expect(Activity.PROCESSING, event):
            return

        if self.metrics_collector:
            if event.latency_ms is not None:
                self.metrics_collector.record_inference_latency(event.latency_ms)
            self.metrics_collector.record_turn()

        self.history.add_assistant_message(event.reply)
        self.listener.message_appended(ASSISTANT, event.reply)

        if self.tts_provider is None:
            self._set_state(Activity.IDLE)
            return

        self._set_state(Activity.SPEAKING)
        self._launch("TTS-Worker", partial(self._speech_job, text=event.reply))

    def _on_inference_failed(self, event: InferenceFailed) -> None:
        if not self._expect(Activity.PROCESSING, event):
            return

        logger.error(
            "Inference failed",
            error_type=type(event.error).__name__,
            error=str(event.error),
        )
        self._record_error("inference", event.error)
        self._show_error(describe_error(event.error))

    def _on_speech_ended(self, event: SpeechEnded) -> None:
        if not self._expect(Activity.SPEAKING, event):
            return

        if self.metrics_collector and event.completed and event.latency_ms is not None:
            self.metrics_collector.record_speech_latency(event.latency_ms)
        self._set_state(Activity.IDLE)

    def _on_speech_failed(self, event: SpeechFailed) -> None:
        if not self._expect(Activity.SPEAKING, event):
            return

        # Speech output is best effort: log it and go back to idle
        logger.warning("Speech synthesis failed", error=str(event.error))
        self._record_error("speech", event.error)
        self._set_state(Activity.IDLE)

    def get_status(self) -> Dict[str, Any]:
        """Get current session status."""
        return {
            "activity": self.state.activity.value,
            "error": self.state.error,
            "status": self.state.label,
            "generation": self.generation,
            "history_length": len(self.history),
            "pending_events": self.events.qsize(),
            "providers_status": {
                "stt": self.stt_provider.get_status() if self.stt_provider else None,
                "ai": self.ai_provider.get_status(),
                "tts": self.tts_provider.get_status() if self.tts_provider else None,
            },
        }

"""Tests for the conversation session state machine."""

import sys
import threading
import time
import httpx
import pytest
from unittest.mock import Mock, patch

from ..core.errors import CaptureError, InferenceError, SynthesisError
from ..core.events import (
    ClearConversation,
    InferenceSucceeded,
    SessionListener,
    StartCapture,
    ToggleCapture,
)
from ..core.session import (
    STT_UNAVAILABLE_MESSAGE,
    ConversationSession,
    describe_error,
)
from ..core.state import Activity, ERROR_LABEL
from ..metrics.collector import MetricsCollector
from ..mocks.providers import MockAIProvider, MockSTTProvider, MockTTSProvider
from ..providers.ai.openrouter import OpenRouterProvider
from ..providers.stt.base import STTProvider, Transcript
from ..providers.stt.whisperkit import WhisperKitProvider
from ..providers.tts.base import TTSProvider
from ..state.credential_store import CredentialStore
from ..state.history import ASSISTANT, USER
from .test_stt import ScriptedDetector, make_sounddevice


def inline_runner(target, name):
    """Run provider work immediately on the calling thread."""
    target()


class DeferredRunner:
    """Hold provider work until the test releases it."""

    def __init__(self):
        self.jobs = []

    def __call__(self, target, name):
        self.jobs.append((name, target))

    def run_next(self):
        name, target = self.jobs.pop(0)
        target()
        return name


class RecordingListener(SessionListener):
    """Collects everything the session presents."""

    def __init__(self):
        self.messages = []
        self.statuses = []
        self.errors = []
        self.notices = []
        self.cleared = 0

    def message_appended(self, role, text):
        self.messages.append((role, text))

    def status_changed(self, label, activity):
        self.statuses.append(label)

    def error_shown(self, text):
        self.errors.append(text)

    def notice_shown(self, text):
        self.notices.append(text)

    def conversation_cleared(self):
        self.cleared += 1


def make_stt(*texts):
    stt = Mock(spec=STTProvider)
    stt.capture.side_effect = [
        Transcript(text=text, timestamp=time.time(), latency=12.0) for text in texts
    ]
    return stt


class TestConversationTurns:
    """Full turns through capture, inference and speech."""

    def setup_method(self):
        self.listener = RecordingListener()
        self.metrics = MetricsCollector()

    def make_session(self, stt, ai, tts=None, runner=inline_runner):
        return ConversationSession(
            stt,
            ai,
            tts,
            listener=self.listener,
            metrics_collector=self.metrics,
            runner=runner,
        )

    def test_single_turn(self):
        """A turn appends the user and assistant messages and returns to idle."""
        ai = MockAIProvider(replies=["Paris."], delay=0)
        tts = MockTTSProvider(seconds_per_word=0)
        session = self.make_session(make_stt("What is the capital of France?"), ai, tts)

        session.start_capture()
        session.process_pending()

        assert [(m.role, m.content) for m in session.history] == [
            (USER, "What is the capital of France?"),
            (ASSISTANT, "Paris."),
        ]
        assert self.listener.messages == [
            (USER, "What is the capital of France?"),
            (ASSISTANT, "Paris."),
        ]
        assert self.listener.statuses == [
            "Listening...",
            "Processing...",
            "Speaking...",
            "Ready to listen",
        ]
        assert tts.spoken == ["Paris."]
        assert session.state.is_idle
        assert not session.state.error

    def test_inference_sees_the_whole_history(self):
        """Each request carries every earlier message in order."""
        ai = MockAIProvider(replies=["One.", "Two.", "Three."], delay=0)
        session = self.make_session(make_stt("first", "second", "third"), ai)

        for _ in range(3):
            session.start_capture()
            session.process_pending()

        assert len(session.history) == 6
        assert [len(request) for request in ai.requests] == [1, 3, 5]
        last_request = [(m.role, m.content) for m in ai.requests[-1]]
        assert last_request == [
            (USER, "first"),
            (ASSISTANT, "One."),
            (USER, "second"),
            (ASSISTANT, "Two."),
            (USER, "third"),
        ]
        assert self.metrics.get_summary()["completed_turns"] == 3

    def test_without_speech_output_returns_to_idle(self):
        session = self.make_session(
            make_stt("hello"), MockAIProvider(replies=["hi"], delay=0)
        )

        session.start_capture()
        session.process_pending()

        assert "Speaking..." not in self.listener.statuses
        assert session.state.activity is Activity.IDLE

    def test_missing_credential_reports_auth_error(self, tmp_path):
        """Inference without a key fails before any request is sent."""

        def handler(request):
            raise AssertionError("no request expected")

        ai = OpenRouterProvider(
            CredentialStore(tmp_path / "credentials.json"),
            transport=httpx.MockTransport(handler),
        )
        session = self.make_session(make_stt("Hello"), ai)

        session.start_capture()
        session.process_pending()

        assert self.listener.errors == [
            "Please configure your OpenRouter API key in settings."
        ]
        assert session.state.label == ERROR_LABEL
        assert [m.role for m in session.history] == [USER]
        ai.stop()

    def test_inference_error_is_shown(self):
        ai = Mock()
        ai.complete.side_effect = InferenceError("Rate limited", status_code=429)
        session = self.make_session(make_stt("Hello"), ai)

        session.start_capture()
        session.process_pending()

        assert self.listener.errors == ["API Error: Rate limited"]
        assert session.state.activity is Activity.IDLE
        assert session.state.error
        assert self.metrics.get_summary()["errors_by_component"] == {"inference": 1}

    def test_error_flag_clears_on_next_capture(self):
        ai = Mock()
        ai.complete.side_effect = [InferenceError("boom"), "fine"]
        session = self.make_session(make_stt("one", "two"), ai)

        session.start_capture()
        session.process_pending()
        assert session.state.error

        session.start_capture()
        session.process_pending()
        assert not session.state.error
        assert len(session.history) == 3

    def test_speech_failure_is_not_shown(self):
        """Speech output problems are logged but never block the reply."""
        tts = Mock(spec=TTSProvider)
        tts.speak.side_effect = SynthesisError("quota exceeded")
        session = self.make_session(
            make_stt("hello"), MockAIProvider(replies=["hi"], delay=0), tts
        )

        session.start_capture()
        session.process_pending()

        assert self.listener.errors == []
        assert session.state.activity is Activity.IDLE
        assert not session.state.error
        assert self.listener.messages[-1] == (ASSISTANT, "hi")


class TestCaptureFailures:
    """Capture errors and empty transcripts."""

    def setup_method(self):
        self.listener = RecordingListener()

    def make_session(self, stt):
        return ConversationSession(
            stt,
            MockAIProvider(delay=0),
            listener=self.listener,
            runner=inline_runner,
        )

    @pytest.mark.parametrize(
        "reason,message",
        [
            (CaptureError.NO_SPEECH, "No speech detected. Please try again."),
            (
                CaptureError.PERMISSION_DENIED,
                "Microphone access denied. Please enable microphone permissions.",
            ),
            (
                CaptureError.UNSUPPORTED,
                "Speech recognition is not supported on this system.",
            ),
        ],
    )
    def test_capture_error_messages(self, reason, message):
        stt = Mock(spec=STTProvider)
        stt.capture.side_effect = CaptureError(reason)
        session = self.make_session(stt)

        session.start_capture()
        session.process_pending()

        assert self.listener.errors == [message]
        assert session.state.label == ERROR_LABEL
        assert len(session.history) == 0

    def test_other_capture_error_includes_detail(self):
        stt = Mock(spec=STTProvider)
        stt.capture.side_effect = RuntimeError("device exploded")
        session = self.make_session(stt)

        session.start_capture()
        session.process_pending()

        assert self.listener.errors == ["Speech recognition error: device exploded"]

    def test_blank_transcript_counts_as_no_speech(self):
        session = self.make_session(make_stt("   "))

        session.start_capture()
        session.process_pending()

        assert self.listener.errors == ["No speech detected. Please try again."]
        assert len(session.history) == 0

    def test_transcript_is_trimmed(self):
        session = self.make_session(make_stt("  hello there \n"))

        session.start_capture()
        session.process_pending()

        assert session.history.snapshot()[0].content == "hello there"

    def test_capture_without_recognizer(self):
        session = self.make_session(None)

        session.start_capture()

        assert self.listener.errors == [STT_UNAVAILABLE_MESSAGE]
        assert session.state.label == ERROR_LABEL


class TestInterruptions:
    """Stop, clear and speech preemption abandon the current turn."""

    def setup_method(self):
        self.listener = RecordingListener()
        self.metrics = MetricsCollector()
        self.runner = DeferredRunner()

    def make_session(self, stt, ai=None, tts=None):
        return ConversationSession(
            stt,
            ai or MockAIProvider(replies=["late reply"], delay=0),
            tts,
            listener=self.listener,
            metrics_collector=self.metrics,
            runner=self.runner,
        )

    def test_stop_while_listening(self):
        stt = Mock(spec=STTProvider)
        stt.capture.return_value = None
        session = self.make_session(stt)

        session.start_capture()
        assert session.state.activity is Activity.LISTENING

        session.stop_capture()
        stt.stop.assert_called_once()
        assert session.state.activity is Activity.IDLE

        self.runner.run_next()
        session.process_pending()
        assert session.state.activity is Activity.IDLE
        assert self.metrics.get_summary()["stale_results"] == 1

    def test_stop_before_capture_worker_runs(self):
        """A capture stopped before its worker starts never reads the microphone."""
        stt = WhisperKitProvider()
        stt.is_initialized = True
        stt.detector = ScriptedDetector([False] * 1000)
        sd = make_sounddevice()
        session = self.make_session(stt)

        session.start_capture()
        session.stop_capture()
        assert session.state.activity is Activity.IDLE

        with patch.dict(sys.modules, {"sounddevice": sd}):
            self.runner.run_next()
        session.process_pending()

        sd.InputStream.return_value.read.assert_not_called()
        assert not stt.is_capturing
        assert session.state.activity is Activity.IDLE
        assert self.listener.errors == []
        assert self.metrics.get_summary()["stale_results"] == 1

    def test_early_stop_does_not_cancel_next_capture(self):
        session = self.make_session(MockSTTProvider(transcripts=["hello"], delay=0))

        session.start_capture()
        session.stop_capture()
        session.start_capture()

        assert self.runner.run_next() == "Capture-Worker"
        assert self.runner.run_next() == "Capture-Worker"
        session.process_pending()

        assert self.listener.messages == [(USER, "hello")]
        assert session.state.activity is Activity.PROCESSING

    def test_toggle_starts_and_stops(self):
        stt = Mock(spec=STTProvider)
        session = self.make_session(stt)

        session.toggle_capture()
        assert session.state.activity is Activity.LISTENING
        session.toggle_capture()
        assert session.state.activity is Activity.IDLE
        stt.stop.assert_called_once()

    def test_capture_request_ignored_while_busy(self):
        session = self.make_session(make_stt("hello"))

        session.start_capture()
        generation = session.generation
        session.start_capture()
        assert session.generation == generation
        assert len(self.runner.jobs) == 1

        self.runner.run_next()
        session.process_pending()
        assert session.state.activity is Activity.PROCESSING

        session.start_capture()
        assert session.state.activity is Activity.PROCESSING
        assert [name for name, _ in self.runner.jobs] == ["AI-Worker"]

    def test_clear_drops_late_reply(self):
        """A reply that arrives after clearing must not reach the history."""
        session = self.make_session(make_stt("hello"))

        session.start_capture()
        self.runner.run_next()
        session.process_pending()
        assert session.state.activity is Activity.PROCESSING

        session.clear()
        assert len(session.history) == 0
        assert session.state.activity is Activity.IDLE
        assert self.listener.cleared == 1

        assert self.runner.run_next() == "AI-Worker"
        session.process_pending()

        assert len(session.history) == 0
        assert self.listener.messages == [(USER, "hello")]
        assert session.state.activity is Activity.IDLE
        assert self.metrics.get_summary()["stale_results"] == 1

    def test_clear_with_halt_stops_capture(self):
        stt = Mock(spec=STTProvider)
        session = self.make_session(stt)

        session.start_capture()
        session.dispatch(ClearConversation(halt=True))

        stt.stop.assert_called_once()
        assert session.state.activity is Activity.IDLE

    def test_clear_without_halt_leaves_capture_running(self):
        stt = Mock(spec=STTProvider)
        session = self.make_session(stt)

        session.start_capture()
        session.clear()

        stt.stop.assert_not_called()
        assert session.state.activity is Activity.IDLE

    def test_capture_preempts_speech(self):
        tts = Mock(spec=TTSProvider)
        tts.speak.return_value = False
        session = self.make_session(make_stt("hello", "again"), tts=tts)

        session.start_capture()
        self.runner.run_next()
        session.process_pending()
        self.runner.run_next()
        session.process_pending()
        assert session.state.activity is Activity.SPEAKING

        session.start_capture()
        tts.cancel.assert_called_once()
        assert session.state.activity is Activity.LISTENING
        assert self.metrics.get_summary()["preemptions"] == 1

        # The interrupted speech job reports back late and is ignored
        assert self.runner.run_next() == "TTS-Worker"
        session.process_pending()
        assert session.state.activity is Activity.LISTENING

        assert self.runner.run_next() == "Capture-Worker"
        session.process_pending()
        assert [m.content for m in session.history] == ["hello", "late reply", "again"]

    def test_stale_outcome_from_older_generation(self):
        session = self.make_session(Mock(spec=STTProvider))
        session.start_capture()

        session.dispatch(InferenceSucceeded(session.generation - 1, "stale"))

        assert len(session.history) == 0
        assert session.state.activity is Activity.LISTENING

    def test_unknown_event_type(self):
        session = self.make_session(Mock(spec=STTProvider))

        with pytest.raises(TypeError, match="Unhandled event type"):
            session.dispatch(object())


class TestSessionLoop:
    """The session loop with real worker threads."""

    def test_run_until_shutdown(self):
        listener = RecordingListener()
        session = ConversationSession(
            MockSTTProvider(transcripts=["Hello"], delay=0),
            MockAIProvider(replies=["Hi there!"], delay=0),
            MockTTSProvider(seconds_per_word=0),
            listener=listener,
        )
        shutdown_event = threading.Event()
        loop = threading.Thread(
            target=session.run, args=(shutdown_event, 0.01), daemon=True
        )
        loop.start()

        session.post(ToggleCapture())

        deadline = time.time() + 5
        while len(listener.statuses) < 4 and time.time() < deadline:
            time.sleep(0.01)

        shutdown_event.set()
        loop.join(timeout=1)

        assert not loop.is_alive()
        assert listener.messages == [(USER, "Hello"), (ASSISTANT, "Hi there!")]
        assert listener.statuses[-1] == "Ready to listen"

    def test_process_pending_counts_events(self):
        session = ConversationSession(
            Mock(spec=STTProvider), MockAIProvider(delay=0), runner=DeferredRunner()
        )

        assert session.process_pending() == 0
        session.post(StartCapture())
        session.post(StartCapture())
        assert session.process_pending() == 2

    def test_shutdown_cancels_speech(self):
        tts = Mock(spec=TTSProvider)
        runner = DeferredRunner()
        session = ConversationSession(
            make_stt("hello"),
            MockAIProvider(delay=0),
            tts,
            runner=runner,
        )
        session.start_capture()
        runner.run_next()
        session.process_pending()
        runner.run_next()
        session.process_pending()

        session.shutdown()

        tts.cancel.assert_called_once()
        assert session.state.activity is Activity.IDLE


class TestDescribeError:
    def test_inference_error(self):
        assert describe_error(InferenceError("Invalid model")) == "API Error: Invalid model"

    def test_plain_error(self):
        assert describe_error(SynthesisError("no audio")) == "no audio"

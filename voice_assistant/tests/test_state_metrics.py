"""Tests for conversation state, credential storage, settings, logging and metrics."""

import json
import logging
import os
import stat
import pytest
from pathlib import Path
from unittest.mock import patch

from ..config.settings import Settings
from ..core.errors import CaptureError, ValidationError
from ..core.state import Activity, SessionState
from ..metrics.collector import MetricsCollector, calculate_latency_stats
from ..state.credential_store import CREDENTIAL_KEY, CredentialStore
from ..state.history import ASSISTANT, USER, ConversationHistory, Message
from ..utils.logging import JsonFormatter, setup_logging


class TestConversationHistory:
    """Test conversation history behaviour."""

    def test_messages_keep_insertion_order(self):
        history = ConversationHistory()
        history.add_user_message("Hello")
        history.add_assistant_message("Hi there!")
        history.add_user_message("How are you?")

        assert [m.role for m in history] == [USER, ASSISTANT, USER]
        assert history.to_payload() == [
            {"role": "user", "content": "Hello"},
            {"role": "assistant", "content": "Hi there!"},
            {"role": "user", "content": "How are you?"},
        ]

    def test_snapshot_is_independent(self):
        history = ConversationHistory()
        history.add_user_message("Hello")
        snapshot = history.snapshot()

        history.add_assistant_message("Hi")
        history.clear()

        assert snapshot == (Message(USER, "Hello"),)
        assert len(history) == 0

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError, match="Unknown message role"):
            Message("system", "You are helpful")


class TestSessionState:
    def test_labels(self):
        assert SessionState().label == "Ready to listen"
        assert SessionState(Activity.LISTENING).label == "Listening..."
        assert SessionState(Activity.PROCESSING).label == "Processing..."
        assert SessionState(Activity.SPEAKING).label == "Speaking..."
        assert SessionState(Activity.IDLE, error=True).label == "Error occurred"

    def test_capture_error_reasons(self):
        error = CaptureError(CaptureError.NO_SPEECH)
        assert error.detail == "no-speech"

        with pytest.raises(ValueError, match="Unknown capture error reason"):
            CaptureError("network")


class TestCredentialStore:
    """Test API key persistence."""

    def test_missing_file_is_unconfigured(self, tmp_path):
        store = CredentialStore(tmp_path / "credentials.json")

        assert store.get() == ""
        assert not store.is_configured()

    def test_set_persists_key(self, tmp_path):
        path = tmp_path / "nested" / "credentials.json"
        store = CredentialStore(path)

        store.set("  sk-or-v1-abc123  ")

        assert store.get() == "sk-or-v1-abc123"
        assert json.loads(path.read_text()) == {CREDENTIAL_KEY: "sk-or-v1-abc123"}
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert CredentialStore(path).get() == "sk-or-v1-abc123"
        assert list(path.parent.glob("*.tmp")) == []

    def test_replaces_existing_key(self, tmp_path):
        store = CredentialStore(tmp_path / "credentials.json")
        store.set("sk-or-v1-first")
        store.set("sk-or-v1-second")

        assert CredentialStore(store.path).get() == "sk-or-v1-second"

    @pytest.mark.parametrize("value", ["", "   ", None])
    def test_empty_key_rejected(self, tmp_path, value):
        store = CredentialStore(tmp_path / "credentials.json")

        with pytest.raises(ValidationError, match="Please enter an API key"):
            store.set(value)

        assert not store.path.exists()

    def test_wrong_prefix_rejected(self, tmp_path):
        store = CredentialStore(tmp_path / "credentials.json")
        store.set("sk-or-v1-valid")

        with pytest.raises(ValidationError, match='should start with "sk-or-v1-"'):
            store.set("sk-ant-123")

        assert store.get() == "sk-or-v1-valid"
        assert CredentialStore(store.path).get() == "sk-or-v1-valid"

    def test_failed_write_keeps_previous_key(self, tmp_path):
        store = CredentialStore(tmp_path / "credentials.json")
        store.set("sk-or-v1-first")

        with patch(
            "voice_assistant.state.credential_store.os.replace",
            side_effect=OSError("No space left on device"),
        ):
            with pytest.raises(OSError, match="No space left"):
                store.set("sk-or-v1-second")

        assert store.get() == "sk-or-v1-first"
        assert CredentialStore(store.path).get() == "sk-or-v1-first"
        assert list(tmp_path.glob("*.tmp")) == []

    def test_parent_is_a_file(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = CredentialStore(blocker / "credentials.json")

        with pytest.raises(OSError):
            store.set("sk-or-v1-abc")

        assert not store.is_configured()

    def test_corrupt_file_is_unconfigured(self, tmp_path):
        path = tmp_path / "credentials.json"
        path.write_text("{not json")

        assert CredentialStore(path).get() == ""

    def test_default_used_when_nothing_stored(self, tmp_path):
        path = tmp_path / "credentials.json"
        assert CredentialStore(path, default="sk-or-v1-env").get() == "sk-or-v1-env"

        CredentialStore(path).set("sk-or-v1-stored")
        assert CredentialStore(path, default="sk-or-v1-env").get() == "sk-or-v1-stored"


class TestMetricsCollector:
    """Test in-memory metrics collection."""

    def test_latency_stats(self):
        stats = calculate_latency_stats([400.0, 100.0, 300.0, 200.0])

        assert stats.min == 100.0
        assert stats.max == 400.0
        assert stats.avg == 250.0
        assert stats.p50 == 300.0
        assert stats.p95 == 400.0
        assert stats.samples == 4

    def test_empty_latency_stats(self):
        assert calculate_latency_stats([]).samples == 0

    def test_summary(self):
        collector = MetricsCollector()
        collector.record_capture_latency(120.0)
        collector.record_inference_latency(800.0)
        collector.record_inference_latency(1200.0)
        collector.record_speech_latency(2500.0)
        collector.record_turn()
        collector.record_turn()
        collector.record_error("inference", "API Error: Rate limited")
        collector.record_error("capture", "no-speech")
        collector.record_error("capture", "no-speech")
        collector.record_preemption()
        collector.record_stale_result()

        summary = collector.get_summary()

        assert summary["completed_turns"] == 2
        assert summary["inference_latency_ms"]["avg"] == 1000.0
        assert summary["capture_latency_ms"]["samples"] == 1
        assert summary["speech_latency_ms"]["max"] == 2500.0
        assert summary["total_errors"] == 3
        assert summary["errors_by_component"] == {"inference": 1, "capture": 2}
        assert summary["preemptions"] == 1
        assert summary["stale_results"] == 1
        assert summary["session_duration_seconds"] >= 0

    def test_reset_and_end(self):
        collector = MetricsCollector()
        collector.record_turn()
        collector.end_session()
        assert collector.current.end_time is not None

        collector.reset()
        assert collector.get_summary()["completed_turns"] == 0
        assert collector.current.end_time is None


class TestSettings:
    """Test configuration loading."""

    def test_default_settings(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings()

        assert settings.ai_provider == "openrouter"
        assert settings.inference.base_url == "https://openrouter.ai/api/v1"
        assert settings.inference.model == "google/gemini-2.0-flash-exp:free"
        assert settings.capture.language == "en"
        assert settings.logging.level == "INFO"
        assert settings.validate() == []

    def test_environment_variable_override(self):
        env = {
            "OPENROUTER_MODEL": "anthropic/claude-3-haiku",
            "INFERENCE_TIMEOUT": "12.5",
            "WHISPERKIT_MODEL": "base",
            "CAPTURE_LANGUAGE": "fr",
            "CREDENTIALS_PATH": "/tmp/voice/credentials.json",
            "LOG_LEVEL": "DEBUG",
            "LOG_FILE_ENABLED": "true",
            "OPENROUTER_API_KEY": "sk-or-v1-from-env",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings()
            assert settings.env_api_key == "sk-or-v1-from-env"

        assert settings.inference.model == "anthropic/claude-3-haiku"
        assert settings.inference.timeout == 12.5
        assert settings.capture.whisperkit_model == "base"
        assert settings.capture.language == "fr"
        assert settings.credentials.path == "/tmp/voice/credentials.json"
        assert settings.logging.level == "DEBUG"
        assert settings.logging.file_enabled is True

    def test_config_file_loading(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(
            json.dumps(
                {
                    "tts_provider": "elevenlabs",
                    "inference": {"model": "openai/gpt-4o-mini", "unknown": 1},
                    "capture": {"silence_duration_ms": 1200},
                }
            )
        )

        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(config_file)

        assert settings.inference.model == "openai/gpt-4o-mini"
        assert settings.capture.silence_duration_ms == 1200
        assert not hasattr(settings.inference, "unknown")

    def test_invalid_config_file_keeps_defaults(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text("{broken")

        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(config_file)

        assert settings.inference.model == "google/gemini-2.0-flash-exp:free"

    def test_provider_config(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings()

        openrouter = settings.get_provider_config("openrouter")
        assert openrouter["endpoint"] == "/chat/completions"
        assert openrouter["timeout"] == 60.0

        whisperkit = settings.get_provider_config("whisperkit")
        assert whisperkit["sample_rate"] == 16000
        assert whisperkit["language"] == "en"

        elevenlabs = settings.get_provider_config("elevenlabs")
        assert elevenlabs["voice_id"] == "pNInz6obpgDQGcFmaJgB"

        with pytest.raises(ValueError, match="Unknown provider type"):
            settings.get_provider_config("gemini")

    def test_settings_validation(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings()
        settings.inference.base_url = "openrouter.ai"
        settings.capture.frame_duration_ms = 25
        settings.logging.level = "VERBOSE"

        issues = settings.validate()

        assert len(issues) == 3
        assert any("base URL" in issue for issue in issues)

    def test_to_dict(self):
        with patch.dict(os.environ, {}, clear=True):
            data = Settings().to_dict()

        assert data["ai_provider"] == "openrouter"
        assert data["credentials"]["path"].endswith("credentials.json")


class TestLogging:
    """Test logging configuration."""

    def teardown_method(self):
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            handler.close()
            root_logger.removeHandler(handler)

    def test_json_formatter(self):
        formatter = JsonFormatter()
        record = logging.LogRecord(
            name="test_logger",
            level=logging.INFO,
            pathname="test.py",
            lineno=10,
            msg="Test message",
            args=(),
            exc_info=None,
        )
        record.turn = 3

        log_data = json.loads(formatter.format(record))

        assert log_data["level"] == "INFO"
        assert log_data["logger"] == "test_logger"
        assert log_data["message"] == "Test message"
        assert log_data["attributes"] == {"turn": 3}
        assert log_data["timestamp"].endswith("Z")

    def test_setup_logging_debug(self):
        assert setup_logging(debug=True) is None
        assert logging.getLogger().level == logging.DEBUG

    def test_setup_logging_to_file(self, tmp_path):
        log_path = setup_logging(log_file=True, log_dir=tmp_path, log_format="json")

        assert log_path.parent == Path(tmp_path)
        assert log_path.exists()
        first_line = log_path.read_text().splitlines()[0]
        assert json.loads(first_line)["level"] == "INFO"

"""Configuration settings for the voice assistant."""

import os
from pathlib import Path
from typing import Optional, Dict, Any, Union
from dataclasses import dataclass, asdict
import json
import structlog
from dotenv import load_dotenv
import threading


logger = structlog.get_logger()


@dataclass
class InferenceSettings:
    """Chat-completion endpoint settings."""
    base_url: str = "https://openrouter.ai/api/v1"
    endpoint: str = "/chat/completions"
    model: str = "google/gemini-2.0-flash-exp:free"
    timeout: float = 60.0  # seconds
    referer: str = "https://github.com/voice-assistant"
    title: str = "Voice Assistant"


@dataclass
class CaptureSettings:
    """Speech capture settings."""
    whisperkit_path: str = "/opt/homebrew/bin/whisperkit-cli"
    whisperkit_model: str = "large-v3_turbo"
    whisperkit_compute_units: str = "cpuAndNeuralEngine"
    language: str = "en"
    sample_rate: int = 16000
    frame_duration_ms: int = 30
    vad_aggressiveness: int = 2
    silence_duration_ms: int = 800
    no_speech_timeout: float = 8.0  # seconds
    max_utterance: float = 30.0  # seconds
    transcribe_timeout: float = 60.0  # seconds


@dataclass
class SpeechSettings:
    """Speech synthesis settings."""
    elevenlabs_voice_id: str = "pNInz6obpgDQGcFmaJgB"  # Adam voice
    elevenlabs_model_id: str = "eleven_flash_v2_5"
    elevenlabs_output_format: str = "mp3_22050_32"
    stability: float = 0.5
    similarity_boost: float = 0.8
    style: float = 0.0
    speed: float = 1.0
    use_speaker_boost: bool = True


@dataclass
class CredentialSettings:
    """Where the API key is kept."""
    path: str = "~/.voice-assistant/credentials.json"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = "INFO"
    format: str = "dev"
    file_enabled: bool = False
    directory: str = "./logs"
    file_rotation_mb: int = 10
    file_backup_count: int = 7


SECTIONS = ("inference", "capture", "speech", "credentials", "logging")


class Settings:
    """Main settings class for the voice assistant."""

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        self.config_file = Path(config_file) if config_file else None
        self._lock = threading.RLock()
        self._env_loaded = False

        self.stt_provider = "whisperkit"
        self.ai_provider = "openrouter"
        self.tts_provider = "elevenlabs"

        self.inference = InferenceSettings()
        self.capture = CaptureSettings()
        self.speech = SpeechSettings()
        self.credentials = CredentialSettings()
        self.logging = LoggingSettings()

        # .env first so it can feed the environment overrides
        self._load_env_file()

        if self.config_file and self.config_file.exists():
            self.load_from_file()

        self.load_from_env()

    def _load_env_file(self) -> None:
        """Load environment variables from the nearest .env file."""
        if not self._env_loaded:
            current_dir = Path.cwd()
            for parent in [current_dir] + list(current_dir.parents):
                env_file = parent / ".env"
                if env_file.exists():
                    load_dotenv(env_file)
                    logger.debug("Loaded .env file", path=str(env_file))
                    break
            self._env_loaded = True

    def load_from_file(self) -> None:
        """Load settings from the JSON configuration file."""
        if not self.config_file or not self.config_file.exists():
            return

        try:
            with self._lock:
                with open(self.config_file, "r") as f:
                    config = json.load(f)

                for key in ("stt_provider", "ai_provider", "tts_provider"):
                    if key in config:
                        setattr(self, key, config[key])

                for section_name in SECTIONS:
                    section = getattr(self, section_name)
                    for key, value in config.get(section_name, {}).items():
                        if hasattr(section, key):
                            setattr(section, key, value)

                logger.info("Loaded settings from file", file=str(self.config_file))

        except (OSError, ValueError) as e:
            logger.error(
                "Failed to load settings from file",
                file=str(self.config_file),
                error=str(e),
            )

    def load_from_env(self) -> None:
        """Load settings from environment variables."""
        with self._lock:
            self.stt_provider = os.getenv("STT_PROVIDER", self.stt_provider)
            self.ai_provider = os.getenv("AI_PROVIDER", self.ai_provider)
            self.tts_provider = os.getenv("TTS_PROVIDER", self.tts_provider)

            if os.getenv("OPENROUTER_BASE_URL"):
                self.inference.base_url = os.getenv("OPENROUTER_BASE_URL")
            if os.getenv("OPENROUTER_MODEL"):
                self.inference.model = os.getenv("OPENROUTER_MODEL")
            if os.getenv("INFERENCE_TIMEOUT"):
                self.inference.timeout = float(os.getenv("INFERENCE_TIMEOUT"))

            if os.getenv("WHISPERKIT_PATH"):
                self.capture.whisperkit_path = os.getenv("WHISPERKIT_PATH")
            if os.getenv("WHISPERKIT_MODEL"):
                self.capture.whisperkit_model = os.getenv("WHISPERKIT_MODEL")
            if os.getenv("WHISPERKIT_COMPUTE_UNITS"):
                self.capture.whisperkit_compute_units = os.getenv(
                    "WHISPERKIT_COMPUTE_UNITS"
                )
            if os.getenv("CAPTURE_LANGUAGE"):
                self.capture.language = os.getenv("CAPTURE_LANGUAGE")
            if os.getenv("CAPTURE_SILENCE_MS"):
                self.capture.silence_duration_ms = int(os.getenv("CAPTURE_SILENCE_MS"))

            if os.getenv("ELEVENLABS_VOICE_ID"):
                self.speech.elevenlabs_voice_id = os.getenv("ELEVENLABS_VOICE_ID")
            if os.getenv("ELEVENLABS_MODEL_ID"):
                self.speech.elevenlabs_model_id = os.getenv("ELEVENLABS_MODEL_ID")
            if os.getenv("ELEVENLABS_OUTPUT_FORMAT"):
                self.speech.elevenlabs_output_format = os.getenv(
                    "ELEVENLABS_OUTPUT_FORMAT"
                )

            if os.getenv("CREDENTIALS_PATH"):
                self.credentials.path = os.getenv("CREDENTIALS_PATH")

            if os.getenv("LOG_LEVEL"):
                self.logging.level = os.getenv("LOG_LEVEL")
            if os.getenv("LOG_FORMAT"):
                self.logging.format = os.getenv("LOG_FORMAT")
            if os.getenv("LOG_FILE_ENABLED"):
                self.logging.file_enabled = (
                    os.getenv("LOG_FILE_ENABLED").lower() == "true"
                )

    @property
    def env_api_key(self) -> str:
        """API key supplied through the environment, if any."""
        return os.getenv("OPENROUTER_API_KEY", "")

    def get_provider_config(self, provider_type: str) -> Dict[str, Any]:
        """Get constructor arguments for a specific provider."""
        if provider_type == "whisperkit":
            return {
                "whisperkit_path": self.capture.whisperkit_path,
                "model": self.capture.whisperkit_model,
                "compute_units": self.capture.whisperkit_compute_units,
                "language": self.capture.language,
                "sample_rate": self.capture.sample_rate,
                "frame_duration_ms": self.capture.frame_duration_ms,
                "vad_aggressiveness": self.capture.vad_aggressiveness,
                "silence_duration_ms": self.capture.silence_duration_ms,
                "no_speech_timeout": self.capture.no_speech_timeout,
                "max_utterance": self.capture.max_utterance,
                "transcribe_timeout": self.capture.transcribe_timeout,
            }
        elif provider_type == "openrouter":
            return {
                "base_url": self.inference.base_url,
                "endpoint": self.inference.endpoint,
                "model": self.inference.model,
                "timeout": self.inference.timeout,
                "referer": self.inference.referer,
                "title": self.inference.title,
            }
        elif provider_type == "elevenlabs":
            return {
                "voice_id": self.speech.elevenlabs_voice_id,
                "model_id": self.speech.elevenlabs_model_id,
                "output_format": self.speech.elevenlabs_output_format,
                "stability": self.speech.stability,
                "similarity_boost": self.speech.similarity_boost,
                "style": self.speech.style,
                "speed": self.speech.speed,
                "use_speaker_boost": self.speech.use_speaker_boost,
            }
        else:
            raise ValueError(f"Unknown provider type: {provider_type}")

    def validate(self) -> list[str]:
        """Validate current settings and return list of issues."""
        issues = []

        if not self.inference.base_url.startswith(("http://", "https://")):
            issues.append(f"Invalid inference base URL: {self.inference.base_url}")
        if self.inference.timeout <= 0:
            issues.append(f"Invalid inference timeout: {self.inference.timeout}")
        if not self.inference.model:
            issues.append("No inference model configured")

        if self.capture.sample_rate not in [8000, 16000, 32000, 48000]:
            issues.append(f"Invalid sample rate: {self.capture.sample_rate}")
        if self.capture.frame_duration_ms not in [10, 20, 30]:
            issues.append(f"Invalid frame duration: {self.capture.frame_duration_ms}")
        if not 0 <= self.capture.vad_aggressiveness <= 3:
            issues.append(
                f"Invalid VAD aggressiveness: {self.capture.vad_aggressiveness}"
            )
        if self.capture.no_speech_timeout <= 0:
            issues.append(
                f"Invalid no-speech timeout: {self.capture.no_speech_timeout}"
            )

        if self.logging.level.upper() not in ["DEBUG", "INFO", "WARNING", "ERROR"]:
            issues.append(f"Invalid log level: {self.logging.level}")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary for serialization."""
        data: Dict[str, Any] = {
            "stt_provider": self.stt_provider,
            "ai_provider": self.ai_provider,
            "tts_provider": self.tts_provider,
        }
        for section_name in SECTIONS:
            data[section_name] = asdict(getattr(self, section_name))
        return data


# Global settings instance
settings = Settings()

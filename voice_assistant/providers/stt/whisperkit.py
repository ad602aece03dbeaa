"""WhisperKit STT provider: microphone capture with VAD endpointing."""

import collections
import os
import shutil
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from typing import List, Optional
import numpy as np
import soundfile as sf
import structlog

from .base import STTProvider, Transcript
from ...core.errors import CaptureError
from ...utils.voice_activity import VoiceActivityDetector


logger = structlog.get_logger()


PREROLL_MS = 500


def _load_sounddevice():
    """Import sounddevice, which fails with OSError when PortAudio is missing."""
    try:
        import sounddevice
    except OSError as e:
        raise CaptureError(
            CaptureError.UNSUPPORTED, f"Audio input is not available: {e}"
        ) from e
    return sounddevice


class WhisperKitProvider(STTProvider):
    """
    Records a single utterance from the default microphone and transcribes
    it with the WhisperKit CLI.

    Recording starts immediately, waits up to ``no_speech_timeout`` seconds
    for speech, and ends after ``silence_duration_ms`` of trailing silence
    or ``max_utterance`` seconds of audio.
    """

    def __init__(
        self,
        whisperkit_path: str = "/opt/homebrew/bin/whisperkit-cli",
        model: str = "large-v3_turbo",
        compute_units: str = "cpuAndNeuralEngine",
        language: str = "en",
        sample_rate: int = 16000,
        frame_duration_ms: int = 30,
        vad_aggressiveness: int = 2,
        silence_duration_ms: int = 800,
        no_speech_timeout: float = 8.0,
        max_utterance: float = 30.0,
        transcribe_timeout: float = 60.0,
    ):
        self.whisperkit_path = whisperkit_path
        self.model = model
        self.compute_units = compute_units
        self.language = language
        self.sample_rate = sample_rate
        self.silence_duration_ms = silence_duration_ms
        self.no_speech_timeout = no_speech_timeout
        self.max_utterance = max_utterance
        self.transcribe_timeout = transcribe_timeout

        self.detector = VoiceActivityDetector(
            sample_rate=sample_rate,
            frame_duration_ms=frame_duration_ms,
            vad_aggressiveness=vad_aggressiveness,
        )

        # State management
        self.is_initialized = False
        self.is_capturing = False
        self.process: Optional[subprocess.Popen] = None
        self._process_lock = threading.Lock()
        self._capture_lock = threading.Lock()
        self._stop_event = threading.Event()

        # Performance metrics
        self.capture_count = 0
        self.last_latency_ms: Optional[float] = None

    def initialize(self) -> None:
        """Check that the WhisperKit CLI and a microphone are available."""
        logger.info(
            "Initializing WhisperKit provider",
            model=self.model,
            whisperkit_path=self.whisperkit_path,
        )

        if not shutil.which(self.whisperkit_path) and not Path(
            self.whisperkit_path
        ).exists():
            raise CaptureError(
                CaptureError.UNSUPPORTED,
                f"WhisperKit CLI not found at {self.whisperkit_path}",
            )

        sd = _load_sounddevice()
        try:
            default_input = sd.query_devices(kind="input")
        except (sd.PortAudioError, ValueError) as e:
            raise CaptureError(
                CaptureError.UNSUPPORTED, f"No microphone available: {e}"
            ) from e

        logger.info(
            "Audio input device",
            name=default_input["name"],
            default_samplerate=default_input["default_samplerate"],
        )
        self.is_initialized = True

    def capture(
        self, cancel_event: Optional[threading.Event] = None
    ) -> Optional[Transcript]:
        """Record one utterance and return its transcript."""
        if not self.is_initialized:
            raise CaptureError(
                CaptureError.UNSUPPORTED, "WhisperKit provider not initialized"
            )

        # Captures never overlap
        with self._capture_lock:
            self._stop_event = cancel_event or threading.Event()
            if self._stop_event.is_set():
                logger.debug("Capture cancelled before recording")
                return None
            return self._capture_utterance()

    def _capture_utterance(self) -> Optional[Transcript]:
        self.is_capturing = True
        self.capture_count += 1
        try:
            audio = self._record_utterance()
            if audio is None:
                logger.debug("Capture cancelled during recording")
                return None

            speech_end_time = time.time()
            text = self._transcribe(audio)
            if text is None:
                logger.debug("Capture cancelled during transcription")
                return None
        finally:
            self.is_capturing = False

        if not text:
            raise CaptureError(CaptureError.NO_SPEECH, "No speech detected")

        self.last_latency_ms = (time.time() - speech_end_time) * 1000
        logger.info(
            "Utterance transcribed",
            text_length=len(text),
            latency_ms=round(self.last_latency_ms, 1),
        )
        return Transcript(text=text, timestamp=time.time(), latency=self.last_latency_ms)

    def _record_utterance(self) -> Optional[np.ndarray]:
        """Read frames until the utterance ends. None when stopped."""
        sd = _load_sounddevice()
        frame_size = self.detector.frame_size
        preroll = collections.deque(
            maxlen=max(1, PREROLL_MS // self.detector.frame_duration_ms)
        )
        frames: List[np.ndarray] = []

        self.detector.reset()
        start_time = time.time()

        try:
            with sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="int16",
                blocksize=frame_size,
            ) as stream:
                while not self._stop_event.is_set():
                    data, overflowed = stream.read(frame_size)
                    if overflowed:
                        logger.warning("Audio input overflow")

                    frame = np.asarray(data).reshape(-1)[:frame_size].copy()
                    now = time.time()

                    if not self.detector.speech_started:
                        preroll.append(frame)
                    self.detector.process_frame(frame, now)

                    if self.detector.speech_started:
                        if frames:
                            frames.append(frame)
                        else:
                            frames.extend(preroll)

                        if self.detector.silence_ms(now) >= self.silence_duration_ms:
                            break
                        if now - start_time >= self.max_utterance:
                            logger.info("Maximum utterance length reached")
                            break
                    elif now - start_time >= self.no_speech_timeout:
                        raise CaptureError(
                            CaptureError.NO_SPEECH, "No speech detected"
                        )
        except sd.PortAudioError as e:
            raise self._map_audio_error(e) from e

        if self._stop_event.is_set():
            return None
        return np.concatenate(frames)

    @staticmethod
    def _map_audio_error(error: Exception) -> CaptureError:
        """Translate a PortAudio failure into a capture error reason."""
        message = str(error)
        lowered = message.lower()
        if "permission" in lowered or "not allowed" in lowered or "denied" in lowered:
            return CaptureError(CaptureError.PERMISSION_DENIED, message)
        if "no default" in lowered or "invalid device" in lowered:
            return CaptureError(CaptureError.UNSUPPORTED, message)
        return CaptureError(CaptureError.OTHER, message)

    def _build_command(self, audio_path: str) -> List[str]:
        return [
            self.whisperkit_path,
            "transcribe",
            "--audio-path",
            audio_path,
            "--model",
            self.model,
            "--language",
            self.language,
            "--audio-encoder-compute-units",
            self.compute_units,
            "--text-decoder-compute-units",
            self.compute_units,
        ]

    def _transcribe(self, audio: np.ndarray) -> Optional[str]:
        """Run WhisperKit on the recorded audio. None when stopped."""
        with tempfile.NamedTemporaryFile(suffix=".wav", delete=False) as temp_file:
            temp_filename = temp_file.name

        try:
            sf.write(temp_filename, audio, self.sample_rate, subtype="PCM_16")
            cmd = self._build_command(temp_filename)

            with self._process_lock:
                if self._stop_event.is_set():
                    return None
                process = subprocess.Popen(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                )
                self.process = process

            logger.debug("WhisperKit subprocess started", pid=process.pid)

            try:
                stdout, stderr = process.communicate(timeout=self.transcribe_timeout)
            except subprocess.TimeoutExpired:
                process.kill()
                process.communicate()
                raise CaptureError(
                    CaptureError.OTHER,
                    f"Transcription timed out after {self.transcribe_timeout}s",
                )

            if self._stop_event.is_set():
                return None

            if process.returncode != 0:
                logger.error(
                    "WhisperKit process failed",
                    return_code=process.returncode,
                    stderr=stderr,
                )
                raise CaptureError(
                    CaptureError.OTHER,
                    f"WhisperKit failed with code {process.returncode}: "
                    f"{(stderr or '').strip()}",
                )

            lines = [line.strip() for line in stdout.splitlines()]
            return " ".join(line for line in lines if line)

        except OSError as e:
            raise CaptureError(CaptureError.OTHER, str(e)) from e
        finally:
            with self._process_lock:
                self.process = None
            try:
                os.unlink(temp_filename)
            except OSError:
                pass

    def stop(self) -> None:
        """Cancel the capture in progress."""
        logger.info("Stopping WhisperKit capture", capturing=self.is_capturing)
        self._stop_event.set()

        with self._process_lock:
            process = self.process
        if process and process.poll() is None:
            try:
                process.terminate()
            except OSError as e:
                logger.warning("Error terminating WhisperKit process", error=str(e))

    def get_status(self) -> dict:
        """Get WhisperKit provider status."""
        return {
            "provider": "whisperkit",
            "model": self.model,
            "language": self.language,
            "is_initialized": self.is_initialized,
            "is_capturing": self.is_capturing,
            "process_running": self.process is not None and self.process.poll() is None,
            "capture_count": self.capture_count,
            "last_latency_ms": self.last_latency_ms,
            "vad_stats": self.detector.get_stats(),
        }

"""Voice activity detection used to end an utterance on silence."""

import collections
import time
from typing import Deque, Optional
import numpy as np
import webrtcvad
import structlog


logger = structlog.get_logger()


class VoiceActivityDetector:
    """
    Frame-by-frame speech detector combining webrtcvad with a level gate.

    Frames must be int16 mono PCM of exactly ``frame_size`` samples.
    Speech is considered active when at least ``voice_threshold`` of the
    last ``window`` frames were voiced.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        frame_duration_ms: int = 30,
        vad_aggressiveness: int = 2,
        voice_threshold: float = 0.6,
        window: int = 10,
        min_level: float = 0.005,
    ):
        self.sample_rate = sample_rate
        self.frame_duration_ms = frame_duration_ms
        self.frame_size = int(sample_rate * frame_duration_ms / 1000)
        self.voice_threshold = voice_threshold
        self.window = window
        self.min_level = min_level

        self.vad = webrtcvad.Vad(vad_aggressiveness)

        self.voice_frames: Deque[bool] = collections.deque(maxlen=window)
        self.audio_levels: Deque[float] = collections.deque(maxlen=50)
        self.noise_floor = 0.0
        self.dynamic_threshold = min_level
        self.is_voice_active = False
        self.speech_started = False
        self.last_voice_time: Optional[float] = None
        self._frame_count = 0

    def reset(self) -> None:
        """Forget all state from a previous utterance."""
        self.voice_frames.clear()
        self.audio_levels.clear()
        self.noise_floor = 0.0
        self.dynamic_threshold = self.min_level
        self.is_voice_active = False
        self.speech_started = False
        self.last_voice_time = None
        self._frame_count = 0

    def process_frame(self, frame: np.ndarray, now: Optional[float] = None) -> bool:
        """
        Feed one frame and return whether speech is currently active.

        Args:
            frame: int16 samples, ``frame_size`` long
            now: timestamp for the frame, defaults to time.time()
        """
        now = time.time() if now is None else now
        frame = np.asarray(frame, dtype=np.int16).reshape(-1)
        if len(frame) != self.frame_size:
            raise ValueError(
                f"Expected {self.frame_size} samples per frame, got {len(frame)}"
            )

        level = float(np.sqrt(np.mean((frame.astype(np.float32) / 32768.0) ** 2)))
        self.audio_levels.append(level)

        self._frame_count += 1
        if self._frame_count % 20 == 0:
            self._update_dynamic_threshold()

        voiced = self.vad.is_speech(frame.tobytes(), self.sample_rate)
        self.voice_frames.append(voiced and level > self.dynamic_threshold)

        ratio = sum(self.voice_frames) / self.window
        was_active = self.is_voice_active
        self.is_voice_active = ratio >= self.voice_threshold

        if self.is_voice_active:
            self.last_voice_time = now
            if not was_active:
                logger.debug(
                    "Voice activity started",
                    voice_ratio=ratio,
                    audio_level=level,
                    threshold=self.dynamic_threshold,
                )
            self.speech_started = True

        return self.is_voice_active

    def _update_dynamic_threshold(self) -> None:
        """Track the noise floor from the quietest recent frames."""
        if len(self.audio_levels) < 10:
            return

        recent_levels = sorted(self.audio_levels)
        self.noise_floor = float(np.mean(recent_levels[: len(recent_levels) // 4]))
        self.dynamic_threshold = max(self.noise_floor * 3.0, self.min_level)

    def silence_ms(self, now: Optional[float] = None) -> float:
        """Milliseconds since speech was last active, 0 before any speech."""
        if self.last_voice_time is None:
            return 0.0
        now = time.time() if now is None else now
        return (now - self.last_voice_time) * 1000

    def get_stats(self) -> dict:
        return {
            "is_voice_active": self.is_voice_active,
            "speech_started": self.speech_started,
            "noise_floor": self.noise_floor,
            "dynamic_threshold": self.dynamic_threshold,
            "frames_processed": self._frame_count,
        }

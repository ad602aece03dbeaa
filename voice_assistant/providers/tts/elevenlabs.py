"""ElevenLabs TTS provider implementation."""

import os
import threading
import time
from io import BytesIO
from typing import Optional
import pygame
from elevenlabs import VoiceSettings
from elevenlabs.client import ElevenLabs
import structlog

from .base import TTSProvider
from ...core.errors import SynthesisError


logger = structlog.get_logger()


class ElevenLabsProvider(TTSProvider):
    """
    ElevenLabs TTS provider with pygame playback.

    Only one utterance plays at a time: every ``speak`` call and every
    ``cancel`` advances the utterance counter, and a playback loop exits as
    soon as it no longer owns the current counter value.
    """

    def __init__(
        self,
        voice_id: str = "pNInz6obpgDQGcFmaJgB",  # Adam voice
        model_id: str = "eleven_flash_v2_5",
        output_format: str = "mp3_22050_32",
        stability: float = 0.5,
        similarity_boost: float = 0.8,
        style: float = 0.0,
        speed: float = 1.0,
        use_speaker_boost: bool = True,
        poll_interval: float = 0.05,
    ):
        self.voice_id = voice_id
        self.model_id = model_id
        self.output_format = output_format
        self.poll_interval = poll_interval

        self.voice_settings = VoiceSettings(
            stability=stability,
            similarity_boost=similarity_boost,
            style=style,
            use_speaker_boost=use_speaker_boost,
            speed=speed,
        )

        self.client: Optional[ElevenLabs] = None
        self.is_playing = False
        self._utterance = 0
        self._lock = threading.Lock()

    def initialize(self) -> None:
        """Initialize ElevenLabs client and pygame mixer."""
        logger.info("Initializing ElevenLabs provider", voice_id=self.voice_id)

        api_key = os.getenv("ELEVENLABS_API_KEY")
        if not api_key:
            raise SynthesisError("ELEVENLABS_API_KEY environment variable not set")

        self.client = ElevenLabs(api_key=api_key)

        try:
            pygame.mixer.pre_init(frequency=22050, size=-16, channels=2, buffer=1024)
            pygame.mixer.init()
        except pygame.error as e:
            self.client = None
            raise SynthesisError(f"Audio output unavailable: {e}") from e

        logger.info("ElevenLabs provider initialized")

    def _begin_utterance(self) -> int:
        with self._lock:
            self._utterance += 1
            return self._utterance

    def _is_current(self, utterance: int) -> bool:
        with self._lock:
            return self._utterance == utterance

    def _synthesize(self, text: str) -> bytes:
        """Fetch the complete audio for the text."""
        audio = self.client.text_to_speech.convert(
            voice_id=self.voice_id,
            text=text,
            model_id=self.model_id,
            output_format=self.output_format,
            voice_settings=self.voice_settings,
        )

        if isinstance(audio, (bytes, bytearray)):
            return bytes(audio)
        # The SDK returns an iterator of byte chunks
        return b"".join(audio)

    def speak(self, text: str) -> bool:
        """Synthesize and play text, blocking until playback ends."""
        if not self.client:
            raise SynthesisError("ElevenLabs not initialized")

        self.cancel()
        utterance = self._begin_utterance()
        logger.debug("Generating TTS audio", text_length=len(text))

        try:
            audio_data = self._synthesize(text)
        except Exception as e:
            logger.error("Error generating TTS audio", error=str(e))
            raise SynthesisError(f"Speech synthesis failed: {e}") from e

        if not self._is_current(utterance):
            logger.debug("Utterance cancelled before playback")
            return False

        try:
            pygame.mixer.music.load(BytesIO(audio_data))
            pygame.mixer.music.play()
            self.is_playing = True

            while pygame.mixer.music.get_busy():
                if not self._is_current(utterance):
                    logger.debug("TTS playback interrupted")
                    return False
                time.sleep(self.poll_interval)
        except pygame.error as e:
            logger.error("Error playing TTS audio", error=str(e))
            raise SynthesisError(f"Audio playback failed: {e}") from e
        finally:
            if self._is_current(utterance):
                self.is_playing = False

        logger.debug("Audio playback completed", total_bytes=len(audio_data))
        return self._is_current(utterance)

    def cancel(self) -> None:
        """Stop current audio playback."""
        self._begin_utterance()
        if not self.is_playing:
            return

        logger.debug("Stopping audio playback")
        try:
            pygame.mixer.music.stop()
        except pygame.error as e:
            logger.warning("Error stopping playback", error=str(e))
        self.is_playing = False

    def stop(self) -> None:
        """Stop ElevenLabs provider."""
        logger.info("Stopping ElevenLabs provider")

        self.cancel()
        if pygame.mixer.get_init():
            pygame.mixer.quit()
        self.client = None

    def get_status(self) -> dict:
        """Get ElevenLabs provider status."""
        return {
            "provider": "elevenlabs",
            "voice_id": self.voice_id,
            "model_id": self.model_id,
            "is_playing": self.is_playing,
            "initialized": self.client is not None,
            "mixer_initialized": pygame.mixer.get_init() is not None,
        }

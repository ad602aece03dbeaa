"""Speech-to-Text providers."""

def register_providers():
    """Register all STT providers."""
    # Import at function level to avoid circular imports
    from ..registry import registry
    from ...config.settings import settings
    from .whisperkit import WhisperKitProvider

    registry.register_stt_provider(
        "whisperkit",
        WhisperKitProvider,
        lambda: settings.get_provider_config("whisperkit"),
    )

"""AI providers."""


def register_providers():
    """Register all AI providers."""
    # Import at function level to avoid circular imports
    from ..registry import registry
    from ...config.settings import settings
    from .openrouter import OpenRouterProvider

    registry.register_ai_provider(
        "openrouter",
        OpenRouterProvider,
        lambda: settings.get_provider_config("openrouter"),
    )

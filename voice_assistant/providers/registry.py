"""Provider registry for dynamic provider loading."""

from typing import Any, Callable, Dict, Optional, Type
import structlog

from .stt.base import STTProvider
from .ai.base import AIProvider
from .tts.base import TTSProvider


logger = structlog.get_logger()


ConfigGetter = Callable[[], Dict[str, Any]]

KINDS = {
    "stt": ("STT", STTProvider),
    "ai": ("AI", AIProvider),
    "tts": ("TTS", TTSProvider),
}


class ProviderRegistry:
    """Registry for managing provider implementations."""

    def __init__(self):
        self._providers: Dict[str, Dict[str, type]] = {kind: {} for kind in KINDS}
        self._provider_configs: Dict[str, ConfigGetter] = {}

    def _register(
        self,
        kind: str,
        name: str,
        provider_class: type,
        config_getter: Optional[ConfigGetter],
    ) -> None:
        label, base_class = KINDS[kind]
        if not issubclass(provider_class, base_class):
            raise TypeError(
                f"{provider_class.__name__} is not a {base_class.__name__}"
            )

        self._providers[kind][name] = provider_class
        if config_getter:
            self._provider_configs[f"{kind}:{name}"] = config_getter
        logger.debug(
            f"Registered {label} provider",
            name=name,
            class_name=provider_class.__name__,
        )

    def _create(self, kind: str, name: str, **kwargs):
        label, _ = KINDS[kind]
        if name not in self._providers[kind]:
            raise ValueError(f"Unknown {label} provider: {name}")

        # Explicit arguments win over configured ones
        config_getter = self._provider_configs.get(f"{kind}:{name}")
        options = dict(config_getter()) if config_getter else {}
        options.update(kwargs)

        return self._providers[kind][name](**options)

    def register_stt_provider(
        self,
        name: str,
        provider_class: Type[STTProvider],
        config_getter: Optional[ConfigGetter] = None,
    ) -> None:
        """Register an STT provider."""
        self._register("stt", name, provider_class, config_getter)

    def register_ai_provider(
        self,
        name: str,
        provider_class: Type[AIProvider],
        config_getter: Optional[ConfigGetter] = None,
    ) -> None:
        """Register an AI provider."""
        self._register("ai", name, provider_class, config_getter)

    def register_tts_provider(
        self,
        name: str,
        provider_class: Type[TTSProvider],
        config_getter: Optional[ConfigGetter] = None,
    ) -> None:
        """Register a TTS provider."""
        self._register("tts", name, provider_class, config_getter)

    def get_stt_provider(self, name: str, **kwargs) -> STTProvider:
        """Get an STT provider instance."""
        return self._create("stt", name, **kwargs)

    def get_ai_provider(self, name: str, **kwargs) -> AIProvider:
        """Get an AI provider instance."""
        return self._create("ai", name, **kwargs)

    def get_tts_provider(self, name: str, **kwargs) -> TTSProvider:
        """Get a TTS provider instance."""
        return self._create("tts", name, **kwargs)

    def list_stt_providers(self) -> list[str]:
        """List available STT providers."""
        return list(self._providers["stt"])

    def list_ai_providers(self) -> list[str]:
        """List available AI providers."""
        return list(self._providers["ai"])

    def list_tts_providers(self) -> list[str]:
        """List available TTS providers."""
        return list(self._providers["tts"])

    def clear(self) -> None:
        """Clear all registered providers."""
        for providers in self._providers.values():
            providers.clear()
        self._provider_configs.clear()


# Global registry instance
registry = ProviderRegistry()

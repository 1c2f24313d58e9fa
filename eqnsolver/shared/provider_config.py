"""
Provider configuration resolution.

Maps a provider name onto endpoint URL, credentials, model id, extra headers and
the wire format used to talk to it. The wire format is decided here, once, so
the chat client never has to re-detect it per call.
"""
import logging
from typing import Optional

from eqnsolver.shared.config import SolverSettings, solver_settings
from eqnsolver.shared.errors import ConfigurationError
from eqnsolver.shared.models import ProviderConfig

logger = logging.getLogger(__name__)


SUPPORTED_PROVIDERS = ("groq", "openrouter", "cerebras", "nvidia", "gemini")


def _require_key(value: Optional[str], env_name: str) -> str:
    if not value:
        raise ConfigurationError(f"{env_name} not set")
    return value


def resolve_provider(name: Optional[str] = None, settings: Optional[SolverSettings] = None) -> ProviderConfig:
    """
    Resolve a provider name into a ProviderConfig.

    Args:
        name: Provider name ("groq", "openrouter", "cerebras", "nvidia", "gemini").
              None falls back to settings.default_provider.
        settings: Settings to read from (defaults to the global instance)

    Returns:
        ProviderConfig for the provider

    Raises:
        ConfigurationError: Unknown provider or missing API key
    """
    settings = settings or solver_settings
    provider = (name or settings.default_provider or "groq").strip().lower()

    if provider == "openrouter":
        return ProviderConfig(
            name=provider,
            endpoint_url=settings.openrouter_api_url,
            api_key=_require_key(settings.openrouter_api_key, "OPENROUTER_API_KEY"),
            model_id=settings.openrouter_model,
            extra_headers={
                "HTTP-Referer": settings.openrouter_site_url,
                "X-Title": settings.openrouter_site_title,
            },
        )

    if provider == "groq":
        return ProviderConfig(
            name=provider,
            endpoint_url=settings.groq_api_url,
            api_key=_require_key(settings.groq_api_key, "GROQ_API_KEY"),
            model_id=settings.groq_model,
        )

    if provider == "cerebras":
        return ProviderConfig(
            name=provider,
            endpoint_url=settings.cerebras_api_url,
            api_key=_require_key(settings.cerebras_api_key, "CEREBRAS_API_KEY"),
            model_id=settings.cerebras_model,
        )

    if provider == "nvidia":
        return ProviderConfig(
            name=provider,
            endpoint_url=settings.nvidia_api_url,
            api_key=_require_key(settings.nvidia_api_key, "NVIDIA_API_KEY"),
            model_id=settings.nvidia_model,
        )

    if provider == "gemini":
        # Key goes into the URL query string at request time (see GeminiChatAdapter)
        return ProviderConfig(
            name=provider,
            endpoint_url=f"{settings.gemini_api_base_url.rstrip('/')}/{settings.gemini_model}:generateContent",
            api_key=_require_key(settings.gemini_api_key, "GEMINI_API_KEY"),
            model_id=settings.gemini_model,
            wire_format="gemini",
        )

    logger.error(f"Unknown provider requested: {provider}")
    raise ConfigurationError(
        f"Unknown provider '{provider}'. Supported providers: {', '.join(SUPPORTED_PROVIDERS)}"
    )

"""
LLM provider configuration for content generation.

Supported providers:
- simulation (default, deterministic templates, no network)
- OpenRouter
- OpenAI
- Microsoft Azure OpenAI

Calls go through litellm; this module only resolves model strings and
credentials into litellm keyword arguments.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .core.config import settings

logger = logging.getLogger(__name__)


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    SIMULATION = "simulation"
    OPENROUTER = "openrouter"
    OPENAI = "openai"
    AZURE = "azure"


@dataclass
class ProviderConfig:
    """Configuration for an LLM provider."""
    provider: LLMProvider
    model_name: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    extra_params: Dict[str, Any] = field(default_factory=dict)

    def completion_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``litellm.acompletion``."""
        kwargs: Dict[str, Any] = {"model": self.model_name}
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.base_url:
            kwargs["api_base"] = self.base_url
        kwargs.update(self.extra_params)
        return kwargs


DEFAULT_MODELS = {
    LLMProvider.SIMULATION: "simulation",
    LLMProvider.OPENROUTER: "openrouter/openai/gpt-4o-mini",
    LLMProvider.OPENAI: "gpt-4o-mini",
    LLMProvider.AZURE: "gpt-4o",
}


def resolve_provider(provider: Optional[str] = None) -> LLMProvider:
    provider_str = (provider or settings.MODEL_PROVIDER or "simulation").lower()
    try:
        return LLMProvider(provider_str)
    except ValueError:
        logger.warning(f"Unknown provider '{provider_str}', falling back to simulation")
        return LLMProvider.SIMULATION


def get_provider_config(
    provider: Optional[str] = None,
    model_name: Optional[str] = None
) -> ProviderConfig:
    """
    Get configuration for the specified provider.

    Args:
        provider: Provider name (defaults to MODEL_PROVIDER setting)
        model_name: Model name (defaults to MODEL_NAME setting or provider default)

    Returns:
        ProviderConfig with all necessary settings
    """
    llm_provider = resolve_provider(provider)
    final_model = model_name or settings.MODEL_NAME or DEFAULT_MODELS[llm_provider]

    if llm_provider == LLMProvider.OPENROUTER:
        model = final_model if final_model.startswith("openrouter/") else f"openrouter/{final_model}"
        return ProviderConfig(
            provider=llm_provider,
            model_name=model,
            api_key=settings.OPENROUTER_API_KEY,
            base_url=settings.OPENROUTER_BASE_URL,
        )

    if llm_provider == LLMProvider.OPENAI:
        return ProviderConfig(
            provider=llm_provider,
            model_name=final_model,
            api_key=settings.OPENAI_API_KEY,
        )

    if llm_provider == LLMProvider.AZURE:
        # Azure uses the deployment name in the model field
        deployment = settings.AZURE_OPENAI_DEPLOYMENT or final_model
        return ProviderConfig(
            provider=llm_provider,
            model_name=f"azure/{deployment}",
            api_key=settings.AZURE_OPENAI_API_KEY,
            base_url=settings.AZURE_OPENAI_ENDPOINT,
            extra_params={"api_version": settings.AZURE_OPENAI_API_VERSION},
        )

    return ProviderConfig(provider=LLMProvider.SIMULATION, model_name=DEFAULT_MODELS[LLMProvider.SIMULATION])


def validate_provider_config(provider: str) -> Dict[str, Any]:
    """
    Validate that the required configuration is present for a provider.

    Args:
        provider: Provider name to validate

    Returns:
        Dict with 'valid' bool and 'missing' list of missing config keys
    """
    provider_str = provider.lower()
    missing = []

    if provider_str == "openrouter":
        if not settings.OPENROUTER_API_KEY:
            missing.append("OPENROUTER_API_KEY")

    elif provider_str == "openai":
        if not settings.OPENAI_API_KEY:
            missing.append("OPENAI_API_KEY")

    elif provider_str == "azure":
        if not settings.AZURE_OPENAI_API_KEY:
            missing.append("AZURE_OPENAI_API_KEY")
        if not settings.AZURE_OPENAI_ENDPOINT:
            missing.append("AZURE_OPENAI_ENDPOINT")

    return {
        "valid": len(missing) == 0,
        "missing": missing,
        "provider": provider_str
    }


def list_available_providers() -> Dict[str, Dict[str, Any]]:
    """
    List all providers and their configuration status.

    Returns:
        Dict mapping provider names to their validation status
    """
    providers = {}
    for p in LLMProvider:
        validation = validate_provider_config(p.value)
        providers[p.value] = {
            "configured": validation["valid"],
            "missing_config": validation["missing"],
            "default_model": DEFAULT_MODELS.get(p),
        }
    return providers

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from policywatch.config import settings

if TYPE_CHECKING:
    from langchain_core.language_models.chat_models import BaseChatModel

# Valid provider identifiers
VALID_PROVIDERS = ("ollama", "openai", "openrouter", "azure_openai", "anthropic")

# Module-level caches, keyed by (provider, model, temperature, max_tokens)
_llm_cache: dict[str, BaseChatModel] = {}
_config_overrides: dict[str, str] = {}


# ---------------------------------------------------------------------------
# Override management
# ---------------------------------------------------------------------------

def load_config_overrides(overrides: dict[str, str]) -> None:
    """Replace the in-memory config overrides and clear all cached instances."""
    _config_overrides.clear()
    _config_overrides.update(overrides)
    clear_llm_cache()


def clear_llm_cache() -> None:
    """Drop all cached chat models so they're recreated on next call."""
    _llm_cache.clear()


def _get(key: str, fallback: str | None) -> str | None:
    """Return config override if set, else the env-based fallback."""
    return _config_overrides.get(key) or fallback


def _timeout() -> httpx.Timeout:
    return httpx.Timeout(
        settings.LLM_REQUEST_TIMEOUT_SECONDS,
        connect=settings.LLM_CONNECT_TIMEOUT_SECONDS,
    )


# ---------------------------------------------------------------------------
# Internal constructors (lazy imports to avoid hard dep on unused packages)
# ---------------------------------------------------------------------------

def _create_chat_model(
    provider: str,
    *,
    model: str,
    temperature: float,
    max_tokens: int,
) -> BaseChatModel:
    # Retries are owned by LLMClient, so provider SDK retries are disabled.
    if provider == "ollama":
        from langchain_ollama import ChatOllama

        return ChatOllama(
            base_url=settings.OLLAMA_BASE_URL,
            model=model,
            temperature=temperature,
            num_predict=max_tokens,
            format="json",
        )

    if provider == "openai":
        from langchain_openai import ChatOpenAI

        api_key = _get("openai_api_key", settings.OPENAI_API_KEY)
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required when using the openai provider")
        return ChatOpenAI(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=api_key,
            timeout=_timeout(),
            max_retries=0,
        )

    if provider == "openrouter":
        from langchain_openai import ChatOpenAI

        api_key = _get("openrouter_api_key", settings.OPENROUTER_API_KEY)
        if not api_key:
            raise ValueError("OPENROUTER_API_KEY is required when using the openrouter provider")
        return ChatOpenAI(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=api_key,
            base_url=settings.OPENROUTER_BASE_URL,
            timeout=_timeout(),
            max_retries=0,
        )

    if provider == "azure_openai":
        from langchain_openai import AzureChatOpenAI

        api_key = _get("azure_openai_api_key", settings.AZURE_OPENAI_API_KEY)
        endpoint = _get("azure_openai_endpoint", settings.AZURE_OPENAI_ENDPOINT)
        if not api_key:
            raise ValueError("AZURE_OPENAI_API_KEY is required when using the azure_openai provider")
        if not endpoint:
            raise ValueError("AZURE_OPENAI_ENDPOINT is required when using the azure_openai provider")
        return AzureChatOpenAI(
            azure_deployment=model,
            azure_endpoint=endpoint,
            api_key=api_key,
            api_version=settings.AZURE_OPENAI_API_VERSION,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=_timeout(),
            max_retries=0,
        )

    if provider == "anthropic":
        from langchain_anthropic import ChatAnthropic

        api_key = _get("anthropic_api_key", settings.ANTHROPIC_API_KEY)
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY is required when using the anthropic provider")
        return ChatAnthropic(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=api_key,
            timeout=settings.LLM_REQUEST_TIMEOUT_SECONDS,
            max_retries=0,
        )

    raise ValueError(f"Unknown provider: {provider!r}. Valid: {VALID_PROVIDERS}")


# ---------------------------------------------------------------------------
# Public factory functions
# ---------------------------------------------------------------------------

def get_analysis_provider() -> str:
    return _get("provider_analysis", settings.LLM_PROVIDER_ANALYSIS)


def get_analysis_model_name() -> str:
    """Model id for the configured analysis provider, e.g. 'gpt-4o-mini'."""
    provider = get_analysis_provider()
    defaults = {
        "ollama": settings.OLLAMA_MODEL_ANALYSIS,
        "openai": settings.OPENAI_MODEL_ANALYSIS,
        "openrouter": settings.OPENROUTER_MODEL_ANALYSIS,
        "azure_openai": settings.AZURE_OPENAI_MODEL_ANALYSIS,
        "anthropic": settings.ANTHROPIC_MODEL_ANALYSIS,
    }
    if provider not in defaults:
        raise ValueError(f"Unknown provider: {provider!r}. Valid: {VALID_PROVIDERS}")
    return _get("model_analysis", defaults[provider])


def get_analysis_llm(temperature: float, max_tokens: int) -> BaseChatModel:
    """Analysis Engine. Used for: chunk analysis, summaries, FAQ, tags, change analysis."""
    provider = get_analysis_provider()
    model = get_analysis_model_name()
    key = f"{provider}:{model}:{temperature}:{max_tokens}"
    if key not in _llm_cache:
        _llm_cache[key] = _create_chat_model(
            provider,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    return _llm_cache[key]

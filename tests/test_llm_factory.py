"""
Provider wiring for the analysis model. No network calls: chat models are
only constructed, never invoked.
"""

import pytest

from policywatch.config import settings
from policywatch.llm.factory import (
    _create_chat_model,
    clear_llm_cache,
    get_analysis_llm,
    get_analysis_model_name,
    get_analysis_provider,
    load_config_overrides,
)


@pytest.fixture(autouse=True)
def _clear_cache():
    """Ensure each test gets a fresh LLM instance and no overrides."""
    load_config_overrides({})
    yield
    load_config_overrides({})
    clear_llm_cache()


# ---------------------------------------------------------------------------
# Provider / model selection
# ---------------------------------------------------------------------------

def test_default_provider_and_model(monkeypatch):
    monkeypatch.setattr(settings, "LLM_PROVIDER_ANALYSIS", "openai")
    monkeypatch.setattr(settings, "OPENAI_MODEL_ANALYSIS", "gpt-4o-mini")
    assert get_analysis_provider() == "openai"
    assert get_analysis_model_name() == "gpt-4o-mini"


def test_overrides_take_precedence(monkeypatch):
    monkeypatch.setattr(settings, "LLM_PROVIDER_ANALYSIS", "openai")
    load_config_overrides({"provider_analysis": "anthropic", "model_analysis": "claude-3-5-haiku-latest"})
    assert get_analysis_provider() == "anthropic"
    assert get_analysis_model_name() == "claude-3-5-haiku-latest"


def test_unknown_provider(monkeypatch):
    monkeypatch.setattr(settings, "LLM_PROVIDER_ANALYSIS", "carrier_pigeon")
    with pytest.raises(ValueError, match="Unknown provider"):
        get_analysis_model_name()
    with pytest.raises(ValueError, match="Unknown provider"):
        _create_chat_model("carrier_pigeon", model="x", temperature=0.2, max_tokens=100)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

def test_openai_requires_key(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        _create_chat_model("openai", model="gpt-4o-mini", temperature=0.2, max_tokens=100)


def test_openai_model_has_sdk_retries_disabled(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    llm = _create_chat_model("openai", model="gpt-4o-mini", temperature=0.3, max_tokens=256)
    assert llm.model_name == "gpt-4o-mini"
    assert llm.temperature == 0.3
    assert llm.max_tokens == 256
    assert llm.max_retries == 0


def test_openrouter_uses_base_url(monkeypatch):
    monkeypatch.setattr(settings, "OPENROUTER_API_KEY", "or-test")
    llm = _create_chat_model("openrouter", model="anthropic/claude-3.5-sonnet", temperature=0.2, max_tokens=256)
    assert llm.openai_api_base == settings.OPENROUTER_BASE_URL


def test_anthropic_requires_key(monkeypatch):
    monkeypatch.setattr(settings, "ANTHROPIC_API_KEY", None)
    with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
        _create_chat_model("anthropic", model="claude-3-5-sonnet-latest", temperature=0.2, max_tokens=100)


def test_azure_requires_endpoint(monkeypatch):
    monkeypatch.setattr(settings, "AZURE_OPENAI_API_KEY", "az-test")
    monkeypatch.setattr(settings, "AZURE_OPENAI_ENDPOINT", None)
    with pytest.raises(ValueError, match="AZURE_OPENAI_ENDPOINT"):
        _create_chat_model("azure_openai", model="gpt-4o", temperature=0.2, max_tokens=100)


def test_ollama_requests_json_output():
    llm = _create_chat_model("ollama", model="gpt-oss:20b", temperature=0.2, max_tokens=512)
    assert llm.format == "json"
    assert llm.num_predict == 512


def test_instances_are_cached_per_settings(monkeypatch):
    monkeypatch.setattr(settings, "LLM_PROVIDER_ANALYSIS", "openai")
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")

    first = get_analysis_llm(0.2, 1000)
    assert get_analysis_llm(0.2, 1000) is first
    assert get_analysis_llm(0.4, 1000) is not first

    clear_llm_cache()
    assert get_analysis_llm(0.2, 1000) is not first

import pytest

import loopwright.llm as llm_module
from loopwright.config import Config, get_config, set_config
from loopwright.llm import (
    DEFAULT_TOKEN_LIMIT,
    OllamaProvider,
    OpenAIChatProvider,
    create_provider,
    get_provider,
    model_token_limit,
)


def test_create_provider_supports_ollama():
    provider = create_provider(
        provider="ollama",
        model="llama3.2",
        base_url="http://localhost:11434",
    )
    assert isinstance(provider, OllamaProvider)
    assert provider.model == "llama3.2"
    assert provider.base_url == "http://localhost:11434"


def test_create_provider_defaults_to_openai_endpoint():
    provider = create_provider(provider="openai", model="gpt-4", api_key="sk-test")

    assert isinstance(provider, OpenAIChatProvider)
    assert provider.base_url == "https://api.openai.com/v1"
    assert provider.token_limit == 8000
    assert not hasattr(provider, "api_key")


def test_create_provider_rejects_unsupported_provider():
    with pytest.raises(ValueError):
        create_provider(provider="cohere", model="command-r")


def test_model_token_limits():
    assert model_token_limit("gpt-3.5-turbo") == 4000
    assert model_token_limit("gpt-4") == 8000
    assert model_token_limit("gpt-4-32k") == 32000
    assert model_token_limit("llama3.2") == DEFAULT_TOKEN_LIMIT
    assert model_token_limit("gpt-4", override=1234) == 1234


def test_token_limit_override_is_applied():
    provider = create_provider(provider="ollama", model="llama3.2", token_limit=16000)

    assert provider.token_limit == 16000


def test_get_provider_builds_from_config(monkeypatch):
    old_cfg = get_config().model_copy(deep=True)
    cfg = Config()
    cfg.model.provider = "ollama"
    cfg.model.model = "mistral"
    cfg.model.reply_tokens = 321
    set_config(cfg)
    monkeypatch.setattr(llm_module, "_provider", None)
    try:
        provider = get_provider()

        assert isinstance(provider, OllamaProvider)
        assert provider.model == "mistral"
        assert provider.max_tokens == 321
        assert get_provider() is provider
    finally:
        set_config(old_cfg)

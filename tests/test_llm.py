#!/usr/bin/env python3
"""Settings and LLM gateway tests. No network calls.

Usage:
    pytest tests/test_llm.py -v --tb=short
"""

from types import SimpleNamespace

import openai
import pytest

from conftest import FakeProvider
from docbuilder.config.settings import DEFAULT_MODEL, get_settings, load_settings
from docbuilder.llm.gateway import LLMGateway, LLMGatewayError, build_gateway, get_gateway
from docbuilder.llm.openai_provider import OpenAICompatibleProvider
from docbuilder.llm.provider import LLMRequest, ProviderError


# =========================================================================
# SETTINGS
# =========================================================================
class TestSettings:
    """YAML config plus environment overrides."""

    def test_missing_file_uses_defaults(self, tmp_path):
        settings = load_settings(str(tmp_path / "absent.yaml"))
        assert settings.llm_model == DEFAULT_MODEL
        assert settings.llm_timeout == 60.0
        assert settings.blob_backend == "local"

    def test_yaml_values_and_env_expansion(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MY_TITLE", "Regulatory Desk")
        cfg = tmp_path / "app.yaml"
        cfg.write_text(
            "llm:\n"
            "  model: openai/gpt-4o-mini\n"
            "  timeout_seconds: 45\n"
            "  app_title: ${MY_TITLE:-Fallback}\n"
            "  app_url: ${UNSET_URL_VAR:-http://example.test}\n"
            "api:\n"
            "  rate_limit_calls: 5\n",
            encoding="utf-8",
        )
        settings = load_settings(str(cfg))
        assert settings.llm_model == "openai/gpt-4o-mini"
        assert settings.llm_timeout == 45.0
        assert settings.app_title == "Regulatory Desk"
        assert settings.app_url == "http://example.test"
        assert settings.rate_limit_calls == 5

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        cfg = tmp_path / "app.yaml"
        cfg.write_text("llm:\n  model: from/yaml\n", encoding="utf-8")
        monkeypatch.setenv("DOCBUILDER_LLM_MODEL", "from/env")
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
        settings = load_settings(str(cfg))
        assert settings.llm_model == "from/env"
        assert settings.llm_api_key == "sk-test"

    def test_invalid_number_falls_back(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DOCBUILDER_LLM_TIMEOUT", "soon")
        settings = load_settings(str(tmp_path / "absent.yaml"))
        assert settings.llm_timeout == 60.0

    def test_broken_yaml_is_not_fatal(self, tmp_path):
        cfg = tmp_path / "app.yaml"
        cfg.write_text("llm: [unclosed\n", encoding="utf-8")
        assert load_settings(str(cfg)).llm_model == DEFAULT_MODEL

    def test_secrets_masked(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-secret")
        data = get_settings().as_public_dict()
        assert data["llm_api_key"] == "***"
        assert data["api_key"] == ""


# =========================================================================
# GATEWAY
# =========================================================================
class TestGateway:
    """LLMGateway defaults and error mapping."""

    def test_defaults_filled(self):
        provider = FakeProvider(["hi"])
        gw = LLMGateway(provider, default_model="test/model", default_max_tokens=256)
        assert gw.complete("Say hi", system_prompt="Be brief", timeout=12) == "hi"
        request = provider.calls[0]
        assert request.model == "test/model"
        assert request.max_tokens == 256
        assert request.timeout == 12
        assert request.to_messages()[0] == {"role": "system", "content": "Be brief"}

    def test_explicit_model_wins(self):
        provider = FakeProvider(["ok"])
        LLMGateway(provider, "test/model").complete("q", model="other/model")
        assert provider.calls[0].model == "other/model"

    def test_empty_prompt_rejected(self):
        with pytest.raises(ValueError):
            LLMGateway(FakeProvider(), "test/model").complete("")

    def test_provider_error_keeps_status(self):
        gw = LLMGateway(FakeProvider([ProviderError("rate limited", 429)]), "test/model")
        with pytest.raises(LLMGatewayError) as exc:
            gw.complete("q")
        assert exc.value.status_code == 429

    def test_no_system_message_when_empty(self):
        messages = LLMRequest(user_prompt="q").to_messages()
        assert messages == [{"role": "user", "content": "q"}]

    def test_missing_key_is_server_error(self):
        with pytest.raises(LLMGatewayError) as exc:
            get_gateway()
        assert exc.value.status_code == 500

    def test_build_gateway_uses_settings(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
        monkeypatch.setenv("DOCBUILDER_LLM_MODEL", "env/model")
        gw = build_gateway(get_settings())
        assert gw.default_model == "env/model"
        assert gw.provider_name == "openrouter"


# =========================================================================
# OPENAI-COMPATIBLE PROVIDER
# =========================================================================
class _FakeCompletions:
    def __init__(self, response):
        self.response = response
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _client(response):
    completions = _FakeCompletions(response)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


class TestOpenAIProvider:
    """Response mapping with an injected client."""

    def test_maps_response(self):
        resp = SimpleNamespace(
            model="test/model",
            choices=[SimpleNamespace(message=SimpleNamespace(content="Assessment: compliant"),
                                     finish_reason="stop")],
            usage=SimpleNamespace(prompt_tokens=120, completion_tokens=8),
        )
        client, completions = _client(resp)
        provider = OpenAICompatibleProvider("sk-test", client=client)
        out = provider.invoke(LLMRequest(user_prompt="q", system_prompt="s",
                                         model="test/model", max_tokens=64, timeout=60))
        assert out.content == "Assessment: compliant"
        assert out.input_tokens == 120
        assert out.output_tokens == 8
        assert out.stop_reason == "stop"
        assert completions.kwargs["timeout"] == 60
        assert completions.kwargs["messages"][0]["role"] == "system"
        assert "temperature" not in completions.kwargs

    def test_no_choices_is_provider_error(self):
        client, _ = _client(SimpleNamespace(model="m", choices=[], usage=None))
        provider = OpenAICompatibleProvider("sk-test", client=client)
        with pytest.raises(ProviderError) as exc:
            provider.invoke(LLMRequest(user_prompt="q", model="m"))
        assert exc.value.status_code == 502

    def test_null_content_becomes_empty_string(self):
        resp = SimpleNamespace(
            model="m",
            choices=[SimpleNamespace(message=SimpleNamespace(content=None),
                                     finish_reason="length")],
            usage=None,
        )
        client, _ = _client(resp)
        out = OpenAICompatibleProvider("sk-test", client=client).invoke(
            LLMRequest(user_prompt="q", model="m"))
        assert out.content == ""
        assert out.input_tokens == 0

    def test_unmapped_openai_error_is_provider_error(self):
        client, _ = _client(openai.OpenAIError("response failed validation"))
        provider = OpenAICompatibleProvider("sk-test", client=client)
        with pytest.raises(ProviderError) as exc:
            provider.invoke(LLMRequest(user_prompt="q", model="m"))
        assert exc.value.status_code == 502
        assert "response failed validation" in str(exc.value)

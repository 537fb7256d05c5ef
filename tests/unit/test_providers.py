"""Tests for providers/."""

from __future__ import annotations

import httpx
import pytest

from devswarm.models.provider import CompletionResult
from devswarm.providers.anthropic import JSON_INSTRUCTION, AnthropicProvider
from devswarm.providers.base import BaseProvider, get_ai_provider
from devswarm.providers.openai_provider import OpenAIProvider


def _capture_post(monkeypatch, status: int, payload: dict | None = None, text: str = ""):
    """Replace httpx.AsyncClient.post and record what was sent."""
    sent: dict = {}

    async def fake_post(self, url, json=None, headers=None, **kwargs):
        sent.update(url=url, json=json, headers=headers)
        request = httpx.Request("POST", url)
        if payload is not None:
            return httpx.Response(status, json=payload, request=request)
        return httpx.Response(status, text=text, request=request)

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)
    return sent


class TestGetAIProvider:
    def test_anthropic_provider(self):
        config = {"ai": {"provider": "anthropic", "anthropic": {"api_key": "test"}}}
        provider = get_ai_provider(config)
        assert isinstance(provider, AnthropicProvider)
        assert provider.is_configured

    def test_openai_provider(self):
        config = {"ai": {"provider": "openai", "openai": {"api_key": "test"}}}
        provider = get_ai_provider(config)
        assert provider.name == "openai"
        assert provider.model == "gpt-4o-mini"

    def test_none_disables_ai(self):
        assert get_ai_provider({"ai": {"provider": "none"}}) is None

    def test_invalid_provider_raises(self):
        config = {"ai": {"provider": "invalid"}}
        with pytest.raises(ValueError, match="Unknown"):
            get_ai_provider(config)

    def test_provider_override(self):
        config = {"ai": {"provider": "anthropic", "openai": {"api_key": "test"}}}
        provider = get_ai_provider(config, provider_override="openai")
        assert provider.name == "openai"

    def test_model_override(self):
        config = {"ai": {"provider": "openai", "openai": {"model": "gpt-4o"}}}
        provider = get_ai_provider(config, model_override="gpt-4.1")
        assert provider.model == "gpt-4.1"
        assert config["ai"]["openai"]["model"] == "gpt-4o"

    def test_common_settings_shared(self):
        config = {"ai": {"provider": "openai", "retry_attempts": 7, "openai": {}}}
        provider = get_ai_provider(config)
        assert provider.max_attempts == 7
        assert "openai" not in provider.common

    def test_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "secret")
        provider = get_ai_provider({"ai": {"provider": "openai", "openai": {"api_key_env": "MY_KEY"}}})
        assert provider.is_configured

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        provider = get_ai_provider({"ai": {"provider": "anthropic", "anthropic": {}}})
        assert provider.is_configured is False


class TestBaseProviderRetry:
    @pytest.mark.asyncio
    async def test_retry_on_failure(self):
        provider = BaseProvider(
            provider_config={},
            common_config={"retry_attempts": 3, "retry_delay_seconds": 0},
        )
        call_count = 0

        async def mock_complete(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                return CompletionResult(success=False, error="500 Internal Server Error")
            return CompletionResult(success=True, content="ok")

        provider.complete = mock_complete

        result = await provider.complete_with_retry(system_prompt="test", user_prompt="test")
        assert result.success
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_fatal_error_not_retried(self):
        provider = BaseProvider(
            provider_config={},
            common_config={"retry_attempts": 2, "retry_delay_seconds": 0},
        )
        call_count = 0

        async def mock_complete(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            return CompletionResult(success=False, error="401 Unauthorized")

        provider.complete = mock_complete

        result = await provider.complete_with_retry(system_prompt="test", user_prompt="test")
        assert not result.success
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        provider = BaseProvider(
            provider_config={},
            common_config={"retry_attempts": 2, "retry_delay_seconds": 0},
        )
        call_count = 0

        async def mock_complete(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            return CompletionResult(success=False, error="503 Service Unavailable")

        provider.complete = mock_complete

        result = await provider.complete_with_retry(system_prompt="test", user_prompt="test")
        assert not result.success
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_final_error_is_sanitized(self):
        provider = BaseProvider(provider_config={}, common_config={"retry_attempts": 1})

        async def mock_complete(*args, **kwargs):
            return CompletionResult(success=False, error="401 bad key sk-abcdefghijklmnopqrstuvwxyz")

        provider.complete = mock_complete

        result = await provider.complete_with_retry(system_prompt="test", user_prompt="test")
        assert "sk-abcdefghij" not in result.error
        assert "[REDACTED_KEY]" in result.error

    @pytest.mark.asyncio
    async def test_success_on_first_try(self):
        provider = BaseProvider(
            provider_config={},
            common_config={"retry_attempts": 3, "retry_delay_seconds": 0},
        )

        async def mock_complete(*args, **kwargs):
            return CompletionResult(success=True, content="great")

        provider.complete = mock_complete

        result = await provider.complete_with_retry(system_prompt="test", user_prompt="test")
        assert result.success
        assert result.content == "great"


class TestOpenAIProvider:
    @pytest.mark.asyncio
    async def test_json_mode_request(self, monkeypatch):
        sent = _capture_post(monkeypatch, 200, {
            "choices": [{"message": {"content": '{"findings": []}'}}],
            "usage": {"prompt_tokens": 11, "completion_tokens": 3},
        })
        provider = OpenAIProvider({"api_key": "sk-test"}, {"max_tokens": 900, "temperature": 0.3})

        result = await provider.complete("sys", "user", json_mode=True)

        assert result.success
        assert result.content == '{"findings": []}'
        assert result.tokens_used == {"input": 11, "output": 3}
        assert sent["url"] == OpenAIProvider.API_URL
        assert sent["headers"]["Authorization"] == "Bearer sk-test"
        assert sent["json"]["response_format"] == {"type": "json_object"}
        assert sent["json"]["max_tokens"] == 900
        assert sent["json"]["messages"][0] == {"role": "system", "content": "sys"}

    @pytest.mark.asyncio
    async def test_explicit_temperature_wins(self, monkeypatch):
        sent = _capture_post(monkeypatch, 200, {"choices": [{"message": {"content": "hi"}}]})
        provider = OpenAIProvider({"api_key": "sk-test"}, {"temperature": 0.3})

        await provider.complete("sys", "user", max_tokens=500, temperature=0.5)

        assert sent["json"]["temperature"] == 0.5
        assert sent["json"]["max_tokens"] == 500
        assert "response_format" not in sent["json"]

    @pytest.mark.asyncio
    async def test_http_error(self, monkeypatch):
        _capture_post(monkeypatch, 401, text="invalid api key")
        provider = OpenAIProvider({"api_key": "sk-test"}, {})

        result = await provider.complete("sys", "user")

        assert not result.success
        assert result.error == "401 | invalid api key"

    @pytest.mark.asyncio
    async def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        result = await OpenAIProvider({}, {}).complete("sys", "user")
        assert result.error == "API key not found in environment variable: OPENAI_API_KEY"

    @pytest.mark.asyncio
    async def test_malformed_response(self, monkeypatch):
        _capture_post(monkeypatch, 200, {"choices": []})
        result = await OpenAIProvider({"api_key": "sk-test"}, {}).complete("sys", "user")
        assert not result.success


class TestAnthropicProvider:
    @pytest.mark.asyncio
    async def test_json_mode_appends_instruction(self, monkeypatch):
        sent = _capture_post(monkeypatch, 200, {
            "content": [{"type": "text", "text": "[]"}],
            "usage": {"input_tokens": 5, "output_tokens": 1},
        })
        provider = AnthropicProvider({"api_key": "sk-ant-test"}, {})

        result = await provider.complete("sys", "user", json_mode=True)

        assert result.content == "[]"
        assert result.tokens_used == {"input": 5, "output": 1}
        assert sent["json"]["system"] == f"sys\n\n{JSON_INSTRUCTION}"
        assert sent["headers"]["x-api-key"] == "sk-ant-test"
        assert sent["headers"]["anthropic-version"] == "2023-06-01"

    @pytest.mark.asyncio
    async def test_server_error(self, monkeypatch):
        _capture_post(monkeypatch, 503, text="overloaded")
        result = await AnthropicProvider({"api_key": "k"}, {}).complete("sys", "user")
        assert result.error == "503 | overloaded"

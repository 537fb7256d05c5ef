"""AI provider abstraction with retry logic."""

from __future__ import annotations

import asyncio
import os
from typing import Optional, Protocol, runtime_checkable

from ..core.config import resolve_ai_provider_name
from ..models.provider import CompletionResult
from ..utils.sanitize import sanitize_error

RETRYABLE_MARKERS = ("429", "500", "502", "503", "504", "timeout", "timed out")
FATAL_MARKERS = ("400", "401", "403", "404")


@runtime_checkable
class AIProvider(Protocol):
    """Protocol that all AI providers must implement."""

    name: str

    @property
    def is_configured(self) -> bool: ...

    async def complete_with_retry(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
        json_mode: bool = False,
        temperature: Optional[float] = None,
    ) -> CompletionResult: ...


class BaseProvider:
    """Base class with shared retry logic and config handling."""

    name: str = "base"
    default_key_env: str = ""

    def __init__(self, provider_config: dict, common_config: dict):
        self.config = provider_config
        self.common = common_config
        self.max_attempts = common_config.get("retry_attempts", 3)
        self.retry_delay = common_config.get("retry_delay_seconds", 5)

    def _get_api_key(self) -> Optional[str]:
        if self.config.get("api_key"):
            return self.config["api_key"]
        env_var = self.config.get("api_key_env", self.default_key_env)
        return os.environ.get(env_var) if env_var else None

    @property
    def is_configured(self) -> bool:
        return bool(self._get_api_key())

    @property
    def model(self) -> str:
        return self.config.get("model", "")

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
        json_mode: bool = False,
        temperature: Optional[float] = None,
    ) -> CompletionResult:
        raise NotImplementedError

    async def complete_with_retry(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
        json_mode: bool = False,
        temperature: Optional[float] = None,
    ) -> CompletionResult:
        """Wrap complete() with retry logic including rate-limit handling."""
        rate_limit_max = max(self.max_attempts, 5)
        last_result: Optional[CompletionResult] = None

        for attempt in range(1, rate_limit_max + 1):
            result = await self.complete(
                system_prompt, user_prompt, max_tokens, json_mode, temperature
            )
            last_result = result

            if result.success:
                return result

            error_msg = result.error or ""
            is_rate_limit = "429" in error_msg
            is_retryable = (
                any(code in error_msg for code in RETRYABLE_MARKERS)
                and not any(code in error_msg for code in FATAL_MARKERS)
            )

            effective_max = rate_limit_max if is_rate_limit else self.max_attempts
            if not is_retryable or attempt >= effective_max:
                result.error = sanitize_error(error_msg)
                return result

            # Rate limits: 30s base. Others: standard backoff.
            base_delay = 30 if is_rate_limit else self.retry_delay
            await asyncio.sleep(base_delay * min(attempt, 3))

        return last_result or CompletionResult(success=False, error="Max retries exceeded")


def get_ai_provider(
    config: dict,
    provider_override: Optional[str] = None,
    model_override: Optional[str] = None,
) -> Optional[BaseProvider]:
    """Factory for the configured AI provider, or None when AI is off."""
    ai_config = config.get("ai", {})
    provider_name = provider_override or resolve_ai_provider_name(config)
    if provider_name is None or provider_name == "none":
        return None

    provider_config = dict(ai_config.get(provider_name, {}))
    if model_override:
        provider_config["model"] = model_override

    common_config = {
        k: v for k, v in ai_config.items() if k not in ("openai", "anthropic")
    }

    if provider_name == "openai":
        from .openai_provider import OpenAIProvider
        return OpenAIProvider(provider_config, common_config)
    elif provider_name == "anthropic":
        from .anthropic import AnthropicProvider
        return AnthropicProvider(provider_config, common_config)
    else:
        raise ValueError(f"Unknown AI provider: {provider_name}")

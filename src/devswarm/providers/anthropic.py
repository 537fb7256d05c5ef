"""Anthropic Messages API provider."""

from __future__ import annotations

from typing import Optional

import httpx

from ..models.provider import CompletionResult
from .base import BaseProvider

# The Messages API has no JSON response mode; the instruction is appended
# to the system prompt instead.
JSON_INSTRUCTION = "Respond with JSON only. Do not wrap it in markdown fences."


class AnthropicProvider(BaseProvider):
    name = "anthropic"
    default_key_env = "ANTHROPIC_API_KEY"
    API_URL = "https://api.anthropic.com/v1/messages"

    @property
    def model(self) -> str:
        return self.config.get("model", "claude-sonnet-4-5-20250929")

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 0,
        json_mode: bool = False,
        temperature: Optional[float] = None,
    ) -> CompletionResult:
        api_key = self._get_api_key()
        if not api_key:
            env_var = self.config.get("api_key_env", self.default_key_env)
            return CompletionResult(
                success=False,
                error=f"API key not found in environment variable: {env_var}",
            )

        system = f"{system_prompt}\n\n{JSON_INSTRUCTION}" if json_mode else system_prompt
        body = {
            "model": self.model,
            "max_tokens": max_tokens or self.common.get("max_tokens", 2000),
            "temperature": self.common.get("temperature", 0.3) if temperature is None else temperature,
            "system": system,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        headers = {
            "x-api-key": api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        }
        url = self.config.get("endpoint") or self.API_URL

        try:
            async with httpx.AsyncClient(timeout=self.common.get("timeout_seconds", 120)) as client:
                response = await client.post(url, json=body, headers=headers)
                response.raise_for_status()
                data = response.json()

            content = next(
                (block.get("text") for block in data.get("content", []) if block.get("type") == "text"),
                None,
            )
            usage = data.get("usage", {})
            tokens = {
                "input": usage.get("input_tokens", 0),
                "output": usage.get("output_tokens", 0),
            }
            return CompletionResult(
                success=True, content=content, tokens_used=tokens, model=self.model
            )
        except httpx.HTTPStatusError as e:
            return CompletionResult(
                success=False,
                error=f"{e.response.status_code} | {e.response.text}",
            )
        except (httpx.HTTPError, ValueError) as e:
            return CompletionResult(success=False, error=str(e) or type(e).__name__)

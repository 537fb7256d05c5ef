"""OpenAI chat completions provider."""

from __future__ import annotations

from typing import Optional

import httpx

from ..models.provider import CompletionResult
from .base import BaseProvider


class OpenAIProvider(BaseProvider):
    name = "openai"
    default_key_env = "OPENAI_API_KEY"
    API_URL = "https://api.openai.com/v1/chat/completions"

    @property
    def model(self) -> str:
        return self.config.get("model", "gpt-4o-mini")

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

        body: dict = {
            "model": self.model,
            "max_tokens": max_tokens or self.common.get("max_tokens", 2000),
            "temperature": self.common.get("temperature", 0.3) if temperature is None else temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        url = self.config.get("endpoint") or self.API_URL

        try:
            async with httpx.AsyncClient(timeout=self.common.get("timeout_seconds", 120)) as client:
                response = await client.post(url, json=body, headers=headers)
                response.raise_for_status()
                data = response.json()

            content = data["choices"][0]["message"]["content"]
            usage = data.get("usage", {})
            tokens = {
                "input": usage.get("prompt_tokens", 0),
                "output": usage.get("completion_tokens", 0),
            }
            return CompletionResult(
                success=True, content=content, tokens_used=tokens, model=self.model
            )
        except httpx.HTTPStatusError as e:
            return CompletionResult(
                success=False,
                error=f"{e.response.status_code} | {e.response.text}",
            )
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            return CompletionResult(success=False, error=str(e) or type(e).__name__)

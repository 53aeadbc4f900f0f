"""
Streaming chat completions from an OpenAI-compatible provider.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import httpx

from sessiongate.logging_config import logger


class ProviderError(Exception):
    """
    Provider call failed. `status_code` is None for transport failures.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class CompletionProvider(Protocol):
    def stream(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        ...


class OpenAICompatibleProvider:
    def __init__(
        self,
        *,
        base_url: str,
        api_key: Optional[str],
        model: str,
        timeout_seconds: float = 60.0,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client

    def _payload(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": messages,
            "stream": True,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    async def stream(self, messages: List[Dict[str, str]]) -> AsyncIterator[str]:
        """
        Yield content deltas until the provider sends `[DONE]`.

        Raises:
            ProviderError: missing API key, HTTP error status or transport
                failure (including timeouts)
        """
        if not self._api_key:
            raise ProviderError("Completion provider API key is not configured")

        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        client = self._client or httpx.AsyncClient(timeout=self.timeout_seconds)
        try:
            async with client.stream("POST", url, headers=headers, json=self._payload(messages)) as resp:
                if resp.status_code >= 400:
                    text = (await resp.aread()).decode("utf-8", errors="ignore")
                    logger.warning(
                        "Completion provider HTTP error %s for %s: %s",
                        resp.status_code,
                        url,
                        text[:500],
                    )
                    raise ProviderError(
                        f"Completion provider HTTP error {resp.status_code}",
                        status_code=resp.status_code,
                    )

                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        return
                    try:
                        parsed = json.loads(data)
                    except json.JSONDecodeError:
                        continue
                    choices = parsed.get("choices") or [{}]
                    content = (choices[0].get("delta") or {}).get("content")
                    if content:
                        yield content
        except httpx.HTTPError as exc:
            logger.warning("Completion provider transport error for %s: %s", url, exc)
            raise ProviderError("Completion provider unreachable") from exc
        finally:
            if self._client is None:
                await client.aclose()


__all__ = ["CompletionProvider", "OpenAICompatibleProvider", "ProviderError"]

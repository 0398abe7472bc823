"""LLM client: calls go through the backend proxy, never straight upstream.

The generation layer injects an LLM callable matching the protocol:

    async def __call__(self, stage: str, prompt: PromptPair) -> LLMResponse: ...

`stage` names the generation mode ("backstory", "campaign", "decision",
"expansion"). Implementations use it for logging and token budgets.

Two implementations are provided:

    ProxyLLM:  real HTTP client posting Messages-API bodies to the proxy's
                /api/claude/messages endpoint.
    MockLLM:   deterministic, network-free content from tnes.mock. Used for
                offline development and prompt inspection.

Failures are raised as GenerationError subclasses so the caller can tell an
unreachable proxy (RemoteUnavailable) from an upstream rejection
(RemoteError, which carries the status code and raw body).
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Protocol

import httpx
from pydantic import BaseModel

from tnes import mock
from tnes.prompts import PromptPair

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
DEFAULT_TIMEOUT = 30.0

# Output budgets per stage; a 15-decision campaign is a long JSON document.
DEFAULT_MAX_TOKENS: dict[str, int] = {
    "backstory": 300,
    "campaign": 8000,
    "expansion": 8000,
    "decision": 1200,
}


class LLMResponse(BaseModel):
    content: str
    usage: dict[str, Any] | None = None
    provider: Literal["proxy", "mock"] = "proxy"


# ---------------------------------------------------------------------------
# Protocol: every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, prompt: PromptPair) -> LLMResponse: ...


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class GenerationError(RuntimeError):
    """Base class for every failure reaching or using the LLM."""


class RemoteUnavailable(GenerationError):
    """The proxy could not be reached."""


class RemoteTimeout(RemoteUnavailable):
    """The proxy did not answer within the configured timeout."""


class RemoteError(GenerationError):
    """The proxy or upstream answered with a non-success status or an unusable body."""

    def __init__(self, message: str, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


# ---------------------------------------------------------------------------
# ProxyLLM: connects to the backend proxy
# ---------------------------------------------------------------------------

class ProxyLLM:
    """Async HTTP client for the Messages-API proxy.

    Request:  POST {proxy_url}/api/claude/messages
              {"model", "max_tokens", "temperature", "system",
               "messages": [{"role": "user", "content": ...}]}
    Response: {"content": [{"text": "..."}], "usage": {...}}

    Args:
        proxy_url:   Base URL of the proxy, e.g. "http://localhost:13013".
        model:       Model identifier forwarded upstream.
        temperature: Sampling temperature.
        max_tokens:  Per-stage output budgets; unknown stages use 1000.
        timeout:     HTTP timeout in seconds. Defaults to 30.
    """

    def __init__(
        self,
        proxy_url: str,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.8,
        max_tokens: dict[str, int] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._base_url = proxy_url.rstrip("/")
        self._model = model
        self._temperature = temperature
        self._max_tokens = {**DEFAULT_MAX_TOKENS, **(max_tokens or {})}
        self._timeout = timeout

    @property
    def url(self) -> str:
        return f"{self._base_url}/api/claude/messages"

    def _build_body(self, stage: str, prompt: PromptPair) -> dict[str, Any]:
        return {
            "model": self._model,
            "max_tokens": self._max_tokens.get(stage, 1000),
            "temperature": self._temperature,
            "system": prompt.system_prompt,
            "messages": [{"role": "user", "content": prompt.user_prompt}],
        }

    def _parse_response(self, data: Any, status_code: int) -> LLMResponse:
        content = data.get("content") if isinstance(data, dict) else None
        if not content or not isinstance(content[0], dict) or "text" not in content[0]:
            raise RemoteError(
                "Unexpected response format from LLM proxy",
                status_code=status_code,
                body=str(data),
            )
        return LLMResponse(content=content[0]["text"], usage=data.get("usage"))

    async def __call__(self, stage: str, prompt: PromptPair) -> LLMResponse:
        body = self._build_body(stage, prompt)
        logger.debug(
            "llm call stage=%s url=%s prompt_len=%d",
            stage, self.url, len(prompt.user_prompt),
        )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.url, json=body)
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise RemoteUnavailable(f"Cannot connect to LLM proxy at {self._base_url}") from e
        except httpx.TimeoutException as e:
            raise RemoteTimeout(f"LLM proxy timed out after {self._timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise RemoteError(
                f"LLM proxy returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                body=e.response.text,
            ) from e
        except httpx.TransportError as e:
            raise RemoteUnavailable(f"Transport failure talking to LLM proxy: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise RemoteError(
                "LLM proxy returned a non-JSON body",
                status_code=resp.status_code,
                body=resp.text,
            ) from e

        result = self._parse_response(data, resp.status_code)
        logger.debug("llm response stage=%s len=%d usage=%s", stage, len(result.content), result.usage)
        return result


# ---------------------------------------------------------------------------
# MockLLM: deterministic canned generation, no network
# ---------------------------------------------------------------------------

class MockLLM:
    """Answers every stage from tnes.mock. No network calls.

    Output depends only on the request carried by the prompt (character
    name, class, keywords, decision number), so identical requests produce
    byte-identical content.
    """

    async def __call__(self, stage: str, prompt: PromptPair) -> LLMResponse:
        logger.debug("MockLLM stage=%s prompt_len=%d", stage, len(prompt.user_prompt))
        if prompt.request is None:
            raise RemoteError("MockLLM needs the originating request", status_code=400)
        return LLMResponse(content=mock.respond(prompt.request), provider="mock")

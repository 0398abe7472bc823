"""Tests for tnes.llm: ProxyLLM and MockLLM."""

import pytest
import httpx
from unittest.mock import AsyncMock, MagicMock, patch

from tnes.llm import (
    DEFAULT_MAX_TOKENS,
    GenerationError,
    MockLLM,
    ProxyLLM,
    RemoteError,
    RemoteTimeout,
    RemoteUnavailable,
)
from tnes.prompts import KeywordBackstory, PromptPair, build_prompt


def _prompt() -> PromptPair:
    return PromptPair(system_prompt="You are a dungeon master.", user_prompt="Describe the gatehouse.")


def _mock_response(body: dict, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body
    resp.text = str(body)
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


# ---------------------------------------------------------------------------
# MockLLM
# ---------------------------------------------------------------------------

class TestMockLLM:
    async def test_identical_requests_identical_output(self) -> None:
        llm = MockLLM()
        request = KeywordBackstory(
            character_name="Lyra", character_class="Rogue", keywords=["revenge", "noble house"],
        )
        first = await llm("backstory", build_prompt(request))
        second = await llm("backstory", build_prompt(request))
        assert first.content == second.content
        assert first.provider == "mock"

    async def test_weaves_keywords(self) -> None:
        request = KeywordBackstory(
            character_name="Lyra", character_class="Rogue", keywords=["revenge", "artifact"],
        )
        result = await MockLLM()("backstory", build_prompt(request))
        assert "revenge" in result.content
        assert "artifact" in result.content

    async def test_requires_originating_request(self) -> None:
        with pytest.raises(RemoteError):
            await MockLLM()("custom", _prompt())


# ---------------------------------------------------------------------------
# ProxyLLM
# ---------------------------------------------------------------------------

class TestProxyLLM:
    @pytest.fixture
    def llm(self) -> ProxyLLM:
        return ProxyLLM(proxy_url="http://localhost:13013")

    async def test_happy_path(self, llm: ProxyLLM) -> None:
        body = {"content": [{"text": "The gatehouse is dark and smoky."}], "usage": {"output_tokens": 7}}
        mock_post = AsyncMock(return_value=_mock_response(body))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await llm("backstory", _prompt())
        assert result.content == "The gatehouse is dark and smoky."
        assert result.usage == {"output_tokens": 7}
        assert result.provider == "proxy"

    async def test_posts_to_proxy_endpoint(self, llm: ProxyLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"content": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("backstory", _prompt())
        url = mock_post.call_args[0][0]
        assert url == "http://localhost:13013/api/claude/messages"

    async def test_trailing_slash_stripped_from_url(self) -> None:
        llm = ProxyLLM(proxy_url="http://localhost:13013/")
        assert llm.url == "http://localhost:13013/api/claude/messages"

    async def test_sends_messages_body(self, llm: ProxyLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"content": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("campaign", _prompt())
        sent = mock_post.call_args.kwargs["json"]
        assert sent["system"] == "You are a dungeon master."
        assert sent["messages"] == [{"role": "user", "content": "Describe the gatehouse."}]
        assert sent["max_tokens"] == DEFAULT_MAX_TOKENS["campaign"]
        assert sent["temperature"] == 0.8
        assert "model" in sent

    async def test_stage_budget_override(self) -> None:
        llm = ProxyLLM(proxy_url="http://x", max_tokens={"decision": 500})
        mock_post = AsyncMock(return_value=_mock_response({"content": [{"text": "ok"}]}))
        with patch("httpx.AsyncClient.post", mock_post):
            await llm("decision", _prompt())
        assert mock_post.call_args.kwargs["json"]["max_tokens"] == 500

    async def test_connect_error_is_unavailable(self, llm: ProxyLLM) -> None:
        mock_post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(RemoteUnavailable, match="Cannot connect"):
                await llm("backstory", _prompt())

    async def test_timeout_is_distinguishable_unavailable(self, llm: ProxyLLM) -> None:
        mock_post = AsyncMock(side_effect=httpx.TimeoutException("timeout"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(RemoteTimeout, match="timed out") as exc:
                await llm("backstory", _prompt())
        assert isinstance(exc.value, RemoteUnavailable)

    async def test_http_error_carries_status_and_body(self, llm: ProxyLLM) -> None:
        bad_resp = MagicMock()
        bad_resp.status_code = 529
        bad_resp.text = '{"error": "overloaded"}'
        bad_resp.raise_for_status.side_effect = httpx.HTTPStatusError(
            "", request=MagicMock(), response=bad_resp
        )
        mock_post = AsyncMock(return_value=bad_resp)
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(RemoteError, match="HTTP 529") as exc:
                await llm("backstory", _prompt())
        assert exc.value.status_code == 529
        assert exc.value.body == '{"error": "overloaded"}'
        assert not isinstance(exc.value, RemoteUnavailable)

    async def test_malformed_response_raises_remote_error(self, llm: ProxyLLM) -> None:
        mock_post = AsyncMock(return_value=_mock_response({"unexpected": "format"}))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(RemoteError, match="Unexpected response format"):
                await llm("backstory", _prompt())

    async def test_non_json_body_raises_remote_error(self, llm: ProxyLLM) -> None:
        resp = _mock_response({})
        resp.json.side_effect = ValueError("not json")
        mock_post = AsyncMock(return_value=resp)
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(RemoteError, match="non-JSON"):
                await llm("backstory", _prompt())

    async def test_all_failures_are_generation_errors(self, llm: ProxyLLM) -> None:
        mock_post = AsyncMock(side_effect=httpx.ReadError("reset"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(GenerationError):
                await llm("backstory", _prompt())

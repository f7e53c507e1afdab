"""Tests for model oracle implementations.

Shared behaviour (complete, _call_with_retry) lives in BaseOracle and is
tested once via a lightweight stub. Provider-specific tests cover only the
SDK client setup and _call_api.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from difflens_core.cancellation import CancellationSignal
from difflens_core.errors import ModelTimeoutError, ModelUnavailableError, OracleCancelledError
from difflens_core.oracles.anthropic import AnthropicOracle
from difflens_core.oracles.base import BaseOracle
from difflens_core.oracles.factory import get_oracle
from difflens_core.oracles.openai import OpenAIOracle

VALID_JSON = json.dumps([{"file": "f.py", "line": 3, "severity": 4, "comment": "Missing error handling"}])


class _StubOracle(BaseOracle):
    def __init__(self, reply=VALID_JSON, **kwargs):
        super().__init__(**kwargs)
        self.reply = reply
        self.calls = 0

    async def _call_api(self, prompt: str) -> str:
        self.calls += 1
        return self.reply


class _HangingOracle(BaseOracle):
    """Never answers until released."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def _call_api(self, prompt: str) -> str:
        self.started.set()
        await self.release.wait()
        return "[]"


# ---------------------------------------------------------------------------
# Shared behaviour, tested once through the stub
# ---------------------------------------------------------------------------


class TestComplete:
    @pytest.mark.asyncio
    async def test_returns_raw_reply(self):
        assert await _StubOracle().complete("prompt") == VALID_JSON

    @pytest.mark.asyncio
    async def test_returns_reply_when_signal_not_fired(self):
        assert await _StubOracle().complete("prompt", CancellationSignal()) == VALID_JSON

    @pytest.mark.asyncio
    async def test_already_cancelled_signal_skips_call(self):
        oracle = _StubOracle()
        signal = CancellationSignal()
        signal.cancel()
        with pytest.raises(OracleCancelledError):
            await oracle.complete("prompt", signal)
        assert oracle.calls == 0

    @pytest.mark.asyncio
    async def test_cancel_during_call_abandons_it(self):
        oracle = _HangingOracle()
        signal = CancellationSignal()
        task = asyncio.ensure_future(oracle.complete("prompt", signal))
        await oracle.started.wait()
        signal.cancel()
        with pytest.raises(OracleCancelledError):
            await task

    @pytest.mark.asyncio
    async def test_timeout_raises_without_retry(self):
        oracle = _HangingOracle(timeout_seconds=0.01, max_retries=3)
        with pytest.raises(ModelTimeoutError):
            await oracle.complete("prompt")


class TestRetry:
    @pytest.mark.asyncio
    async def test_raises_unavailable_after_max_retries(self):
        class _AlwaysFail(BaseOracle):
            async def _call_api(self, prompt: str) -> str:
                raise RuntimeError("network error")

        with patch("difflens_core.oracles.base.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ModelUnavailableError):
                await _AlwaysFail().complete("prompt")
        # Backoff between attempts only: 1s, 2s.
        assert [c.args[0] for c in sleep.call_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_retries_on_transient_failure(self):
        call_count = 0

        class _FailOnceThenSucceed(BaseOracle):
            async def _call_api(self, prompt: str) -> str:
                nonlocal call_count
                call_count += 1
                if call_count == 1:
                    raise RuntimeError("transient")
                return VALID_JSON

        with patch("difflens_core.oracles.base.asyncio.sleep", new_callable=AsyncMock):
            result = await _FailOnceThenSucceed().complete("prompt")
        assert result == VALID_JSON
        assert call_count == 2

    def test_options_override_class_defaults(self):
        oracle = _StubOracle(timeout_seconds=5, max_retries=1)
        assert oracle.timeout_seconds == 5
        assert oracle.max_retries == 1

    def test_class_defaults(self):
        oracle = _StubOracle()
        assert oracle.timeout_seconds == BaseOracle.TIMEOUT_SECONDS
        assert oracle.max_retries == BaseOracle.MAX_RETRIES


# ---------------------------------------------------------------------------
# Provider-specific: only what differs between Anthropic and OpenAI
# ---------------------------------------------------------------------------


class TestAnthropicOracle:
    def test_raises_import_error_without_sdk(self):
        with patch.dict("sys.modules", {"anthropic": None}):
            with pytest.raises(ImportError):
                AnthropicOracle(api_key="key")

    def test_model_is_claude(self):
        assert "claude" in AnthropicOracle.MODEL

    def test_temperature_is_set(self):
        assert AnthropicOracle.TEMPERATURE == 0.3

    @pytest.mark.asyncio
    async def test_call_api_joins_text_blocks(self):
        from anthropic.types import TextBlock

        with patch("anthropic.AsyncAnthropic") as client_cls:
            client = client_cls.return_value
            client.messages.create = AsyncMock(
                return_value=MagicMock(content=[TextBlock(type="text", text=" [] ")])
            )
            oracle = AnthropicOracle(api_key="key", model="claude-custom")
            assert await oracle._call_api("prompt") == "[]"
        assert client.messages.create.call_args.kwargs["model"] == "claude-custom"


class TestOpenAIOracle:
    def test_raises_import_error_without_sdk(self):
        import difflens_core.oracles.openai as openai_mod

        with patch.object(openai_mod, "_AsyncOpenAI", None):
            with pytest.raises(ImportError):
                OpenAIOracle(api_key="key")

    def test_model_is_gpt(self):
        assert "gpt" in OpenAIOracle.MODEL

    def test_temperature_is_set(self):
        assert OpenAIOracle.TEMPERATURE == 0.2

    @pytest.mark.asyncio
    async def test_none_content_becomes_empty_string(self):
        with patch("difflens_core.oracles.openai._AsyncOpenAI") as client_cls:
            client = client_cls.return_value
            message = MagicMock()
            message.content = None
            client.chat.completions.create = AsyncMock(return_value=MagicMock(choices=[MagicMock(message=message)]))
            assert await OpenAIOracle(api_key="key")._call_api("prompt") == ""


class TestGetOracle:
    def test_builds_openai_with_options(self):
        with patch("difflens_core.oracles.openai._AsyncOpenAI"):
            oracle = get_oracle(
                {"model": "openai", "openai_api_key": "k", "model_name": "gpt-4.1", "timeout_seconds": 10}
            )
        assert isinstance(oracle, OpenAIOracle)
        assert oracle.model == "gpt-4.1"
        assert oracle.timeout_seconds == 10
        assert oracle.max_retries == BaseOracle.MAX_RETRIES

    def test_unknown_provider_raises(self):
        with pytest.raises(ValueError):
            get_oracle({"model": "llama"})

"""
Unit tests for SDK layer.

Tests the metered OpenAI client wrapper and the telemetry it reports.
"""

import os
import tempfile
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import httpx
import openai
import pytest

from bot_telemetry.config.loader import ForwarderConfig, WriteMode
from bot_telemetry.sdk.openai_client import MeteredOpenAI, error_category
from bot_telemetry.storage.models import EntityKind
from bot_telemetry.storage.repository import SqliteStore
from bot_telemetry.telemetry.forwarder import TelemetryForwarder, TenantRequiredError


def _response(model="gpt-4o-mini", prompt_tokens=1000, completion_tokens=500, cached_tokens=0):
    return SimpleNamespace(
        id="chatcmpl-123",
        model=model,
        usage=SimpleNamespace(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            prompt_tokens_details=SimpleNamespace(cached_tokens=cached_tokens),
        ),
    )


def _openai_client(response=None, error=None) -> Mock:
    client = Mock()
    client.chat.completions.create = AsyncMock(return_value=response, side_effect=error)
    return client


def _forwarder() -> Mock:
    forwarder = Mock()
    for name in ("log_error", "log_latency", "log_usage", "log_success"):
        setattr(forwarder, name, AsyncMock(return_value=True))
    return forwarder


class TestErrorCategory:
    """Test error classification for the error log."""

    def test_connection_error_is_network(self):
        error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1"))
        assert error_category(error) == "Network"

    def test_other_provider_errors(self):
        assert error_category(openai.OpenAIError("bad key")) == "OpenAI"

    @pytest.mark.parametrize("message,expected", [
        ("getaddrinfo ENOTFOUND api.example.com", "Network"),
        ("SMTP connection refused", "Email"),
        ("something else", "Server"),
    ])
    def test_message_based_categories(self, message, expected):
        assert error_category(RuntimeError(message)) == expected


class TestMeteredOpenAI:
    """Test MeteredOpenAI client wrapper."""

    def test_init_missing_model(self):
        with pytest.raises(ValueError, match="model is required"):
            MeteredOpenAI(_forwarder(), model="", client=Mock())

        with pytest.raises(ValueError, match="model is required"):
            MeteredOpenAI(_forwarder(), model=None, client=Mock())

    def test_init_defaults(self):
        client = MeteredOpenAI(_forwarder(), client=Mock())
        assert client.model == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_chat_success_reports_telemetry(self):
        response = _response()
        openai_client = _openai_client(response=response)
        forwarder = _forwarder()
        client = MeteredOpenAI(forwarder, client=openai_client)

        result = await client.chat([{"role": "user", "content": "Hello"}], tenant_id="acme")

        assert result is response
        openai_client.chat.completions.create.assert_awaited_once_with(
            model="gpt-4o-mini",
            messages=[{"role": "user", "content": "Hello"}],
        )

        latency_ms, tenant = forwarder.log_latency.await_args.args
        assert tenant == "acme"
        assert isinstance(latency_ms, int)
        assert latency_ms >= 0

        usage, tenant = forwarder.log_usage.await_args.args
        assert tenant == "acme"
        assert usage["model"] == "gpt-4o-mini"
        assert (usage["prompt_tokens"], usage["completion_tokens"], usage["cached_tokens"]) == (1000, 500, 0)
        assert float(usage["cost"]) == pytest.approx(0.0018)
        assert usage["breakdown"]["unknown"] is False

        forwarder.log_success.assert_awaited_once_with("acme")
        forwarder.log_error.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_optional_parameters_passed_only_when_set(self):
        openai_client = _openai_client(response=_response())
        client = MeteredOpenAI(_forwarder(), model="gpt-4o", client=openai_client)

        await client.chat(
            [{"role": "user", "content": "Hi"}], tenant_id="acme", temperature=0.2, max_tokens=50, top_p=0.9
        )

        kwargs = openai_client.chat.completions.create.await_args.kwargs
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 50
        assert kwargs["top_p"] == 0.9
        assert kwargs["model"] == "gpt-4o"

    @pytest.mark.asyncio
    async def test_reported_model_and_cached_tokens_used_for_pricing(self):
        response = _response(model="gpt-4o-mini-2024-07-18", prompt_tokens=1000, completion_tokens=0, cached_tokens=1000)
        forwarder = _forwarder()
        client = MeteredOpenAI(forwarder, model="gpt-4o-mini", client=_openai_client(response=response))

        await client.chat([{"role": "user", "content": "Hi"}], tenant_id="acme")

        usage, _ = forwarder.log_usage.await_args.args
        assert usage["model"] == "gpt-4o-mini-2024-07-18"
        assert usage["cached_tokens"] == 1000
        assert usage["breakdown"]["resolvedModel"] == "gpt-4o-mini"
        assert float(usage["cost"]) == pytest.approx(0.0009)

    @pytest.mark.asyncio
    async def test_response_without_usage_skips_usage_log(self):
        response = SimpleNamespace(id="chatcmpl-1", model="gpt-4o-mini", usage=None)
        forwarder = _forwarder()
        client = MeteredOpenAI(forwarder, client=_openai_client(response=response))

        await client.chat([{"role": "user", "content": "Hi"}], tenant_id="acme")

        forwarder.log_usage.assert_not_awaited()
        forwarder.log_success.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_provider_error_logged_and_reraised(self):
        error = openai.OpenAIError("rate limited")
        forwarder = _forwarder()
        client = MeteredOpenAI(forwarder, client=_openai_client(error=error))

        with pytest.raises(openai.OpenAIError, match="rate limited"):
            await client.chat([{"role": "user", "content": "Hi"}], tenant_id="acme")

        forwarder.log_error.assert_awaited_once_with("OpenAI", "rate limited", "acme")
        forwarder.log_latency.assert_not_awaited()
        forwarder.log_usage.assert_not_awaited()
        forwarder.log_success.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_tenant_rejected_before_call(self):
        openai_client = _openai_client(response=_response())
        client = MeteredOpenAI(_forwarder(), client=openai_client)

        with pytest.raises(TenantRequiredError):
            await client.chat([{"role": "user", "content": "Hi"}], tenant_id="")

        openai_client.chat.completions.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_messages_rejected(self):
        client = MeteredOpenAI(_forwarder(), client=_openai_client(response=_response()))
        with pytest.raises(ValueError, match="messages is required"):
            await client.chat([], tenant_id="acme")


class TestMeteredOpenAIWithLocalStore:
    """Test the wrapper end to end against a bot-mode forwarder."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.store = SqliteStore(os.path.join(self.temp_dir, "test.db"))
        self.store.initialize()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @pytest.mark.asyncio
    async def test_usage_and_metrics_stored(self):
        config = ForwarderConfig(write_mode=WriteMode.BOT)
        async with TelemetryForwarder(config, self.store) as forwarder:
            client = MeteredOpenAI(forwarder, client=_openai_client(response=_response()))
            await client.chat([{"role": "user", "content": "Hello"}], tenant_id="acme")

        usage_rows = self.store.fetch_rows(EntityKind.USAGE, tenant_id="acme")
        assert len(usage_rows) == 1
        assert usage_rows[0]["cost"] == pytest.approx(0.0018)
        assert usage_rows[0]["breakdown"]["promptUSD"] == pytest.approx(0.0006)

        metric_names = [row["name"] for row in self.store.fetch_rows(EntityKind.METRIC, tenant_id="acme")]
        assert metric_names == ["latency", "success"]

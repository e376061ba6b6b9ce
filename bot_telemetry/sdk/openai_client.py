"""
Metered OpenAI client wrapper.

Reports latency, token usage with cost, success and errors for each chat
completion through the telemetry forwarder, without modifying the response.
"""

import time
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from ..core.pricing import cost_for_usage
from ..core.token_counter import TokenUsage
from ..telemetry.forwarder import TelemetryForwarder, require_tenant

DEFAULT_MODEL = "gpt-4o-mini"


def error_category(error: BaseException) -> str:
    """Classify a failed completion for the error log."""
    if isinstance(error, openai.APIConnectionError):
        return "Network"
    if isinstance(error, openai.OpenAIError):
        return "OpenAI"
    message = str(error)
    if "ENOTFOUND" in message:
        return "Network"
    if "SMTP" in message:
        return "Email"
    return "Server"


class MeteredOpenAI:
    """OpenAI chat client that meters every completion.

    Telemetry is best-effort and never changes the outcome of the call:
    provider errors are logged and then re-raised unchanged.
    """

    def __init__(
        self,
        forwarder: TelemetryForwarder,
        model: str = DEFAULT_MODEL,
        client: Optional[AsyncOpenAI] = None,
    ):
        """Initialize metered OpenAI client.

        Args:
            forwarder: Telemetry forwarder receiving usage and metrics
            model: OpenAI model name
            client: Optional preconfigured AsyncOpenAI client

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.forwarder = forwarder
        self.model = model
        self.client = client or AsyncOpenAI()

    async def chat(
        self,
        messages: List[Dict[str, str]],
        tenant_id: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create a chat completion and report its telemetry.

        Args:
            messages: List of message dictionaries (required)
            tenant_id: Tenant the call is billed to (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            TenantRequiredError: If tenant_id is missing
            ValueError: If messages is empty
            OpenAI API errors: Propagated after being logged
        """
        require_tenant(tenant_id)
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        start = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                **kwargs
            )
        except Exception as e:
            await self.forwarder.log_error(error_category(e), str(e), tenant_id)
            raise

        latency_ms = round((time.perf_counter() - start) * 1000)
        await self.forwarder.log_latency(latency_ms, tenant_id)

        usage = getattr(response, "usage", None)
        if usage is not None:
            await self.forwarder.log_usage(self._usage_payload(response, usage), tenant_id)

        await self.forwarder.log_success(tenant_id)
        return response

    def _usage_payload(self, response: Any, usage: Any) -> Dict[str, Any]:
        reported_model = getattr(response, "model", None)
        model = reported_model if isinstance(reported_model, str) and reported_model else self.model

        token_usage = TokenUsage.from_provider(usage)
        cost = cost_for_usage(model, token_usage)

        return {
            "model": model,
            "prompt_tokens": token_usage.prompt_tokens,
            "completion_tokens": token_usage.completion_tokens,
            "cached_tokens": token_usage.cached_tokens,
            "cost": cost.total,
            "breakdown": cost.to_dict(),
        }

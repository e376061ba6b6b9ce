"""
Remote intake client.

Posts canonical telemetry payloads to the admin intake endpoint and reports
each attempt as a SinkResult instead of raising.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import httpx
import structlog

from ..config.loader import ForwarderConfig

logger = structlog.get_logger(__name__)

TENANT_HEADER = "X-Tenant"
CUSTOMER_KEY_HEADER = "x-customer-key"


class SinkOutcome(Enum):
    """Outcome of one sink attempt."""
    SUCCESS = "success"
    RETRIABLE_FAILURE = "retriable_failure"  # no response received
    TERMINAL_FAILURE = "terminal_failure"


@dataclass(frozen=True)
class SinkResult:
    """Result of delivering one payload to a sink."""
    outcome: SinkOutcome
    status_code: Optional[int] = None
    detail: str = ""
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.outcome is SinkOutcome.SUCCESS


class IntakeClient:
    """Async HTTP client for the admin intake.

    A timeout or connection-level failure is retried once with the same
    payload and timeout; an error response, or a failed retry, is final.
    """

    def __init__(self, config: ForwarderConfig, client: Optional[httpx.AsyncClient] = None):
        """Initialize the intake client.

        Args:
            config: Forwarder settings (endpoint, key, timeout, retry flag)
            client: Optional preconfigured httpx client; one is created and
                owned otherwise
        """
        self.config = config
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._warned_no_key = False

    def headers(self, tenant_id: str) -> Dict[str, str]:
        """Build request headers scoped to ``tenant_id``."""
        headers = {"Content-Type": "application/json", TENANT_HEADER: tenant_id}
        if self.config.admin_key:
            headers[CUSTOMER_KEY_HEADER] = self.config.admin_key
        elif not self._warned_no_key:
            self._warned_no_key = True
            logger.warning("intake_key_missing", detail="admin intake may reject unauthenticated posts")
        return headers

    async def post(self, payload: Dict[str, Any], tenant_id: str) -> SinkResult:
        """POST one payload, retrying once on a transport failure.

        Never raises; failures are logged and returned.
        """
        headers = self.headers(tenant_id)
        result = await self._attempt(payload, headers)
        if result.outcome is SinkOutcome.RETRIABLE_FAILURE:
            if self.config.retry_on_failure:
                logger.info("intake_post_retrying", tenant_id=tenant_id, detail=result.detail)
                retry = await self._attempt(payload, headers)
                outcome = SinkOutcome.SUCCESS if retry.ok else SinkOutcome.TERMINAL_FAILURE
                result = SinkResult(outcome, retry.status_code, retry.detail, attempts=2)
            else:
                result = SinkResult(SinkOutcome.TERMINAL_FAILURE, detail=result.detail)

        if not result.ok:
            logger.warning(
                "intake_post_failed",
                tenant_id=tenant_id,
                type=payload.get("type"),
                status=result.status_code,
                error=result.detail,
                attempts=result.attempts,
            )
        return result

    async def _attempt(self, payload: Dict[str, Any], headers: Dict[str, str]) -> SinkResult:
        try:
            response = await self.client.post(
                self.config.intake_endpoint,
                json=payload,
                headers=headers,
                timeout=self.config.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            return SinkResult(SinkOutcome.RETRIABLE_FAILURE, detail=f"timeout: {e}")
        except httpx.TransportError as e:
            return SinkResult(SinkOutcome.RETRIABLE_FAILURE, detail=f"{type(e).__name__}: {e}")
        except Exception as e:
            return SinkResult(SinkOutcome.TERMINAL_FAILURE, detail=f"{type(e).__name__}: {e}")

        if response.is_success:
            return SinkResult(SinkOutcome.SUCCESS, status_code=response.status_code)
        return SinkResult(
            SinkOutcome.TERMINAL_FAILURE,
            status_code=response.status_code,
            detail=response.reason_phrase,
        )

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()

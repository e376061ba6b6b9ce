"""
Dual-sink telemetry forwarder.

Relays telemetry events to the remote admin intake and, depending on the
write mode, mirrors them into the local store.

Every operation runs the same sequence: validate the tenant, normalize the
input, post to the intake (with at most one retry), then decide on the local
write from the write mode and the remote outcome. Sink failures are logged
and swallowed; the only thing a caller can see is the boolean remote result.
"""

from dataclasses import replace
from typing import Any, Awaitable, Callable, Optional

import structlog

from ..config.loader import ForwarderConfig, WriteMode
from ..core.pricing import cost_for_text
from ..storage.models import ConversationRecord, EntityKind, UsageRecord
from ..storage.repository import LocalStore
from . import codec
from .intake import IntakeClient

logger = structlog.get_logger(__name__)


class TenantRequiredError(ValueError):
    """Raised when a telemetry call is made without a tenant id."""


def require_tenant(tenant_id: Any) -> str:
    """Validate a tenant id before any I/O.

    Raises:
        TenantRequiredError: If the tenant id is missing or blank
    """
    if not isinstance(tenant_id, str) or not tenant_id.strip():
        raise TenantRequiredError("tenant_id is required for telemetry writes")
    return tenant_id


class TelemetryForwarder:
    """Forwards telemetry to the admin intake and the local store."""

    def __init__(
        self,
        config: ForwarderConfig,
        store: LocalStore,
        intake: Optional[IntakeClient] = None,
    ):
        """Initialize the forwarder.

        Args:
            config: Immutable forwarder settings
            store: Local create/upsert collaborator
            intake: Remote intake client; built from ``config`` when omitted
        """
        self.config = config
        self.store = store
        self.intake = intake or IntakeClient(config)

    async def __aenter__(self) -> "TelemetryForwarder":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.intake.aclose()

    # -- public operations -------------------------------------------------

    async def log_event(self, role: Any, message: Any, tenant_id: str) -> bool:
        """Log a role-tagged event such as a user turn or an AI reply."""
        record = codec.decode_event(role, message, require_tenant(tenant_id))
        return await self._forward(record, self._append(record))

    async def log_error(self, source: Any, message: Any, tenant_id: str) -> bool:
        """Log an error reported by ``source`` (stored as ``error:<source>``)."""
        record = codec.decode_error(source, message, require_tenant(tenant_id))
        return await self._forward(record, self._append(record))

    async def log_usage(self, data: Any, tenant_id: str) -> bool:
        """Log token usage, pricing it when the caller supplied no cost.

        Args:
            data: Usage mapping in either snake_case or camelCase
            tenant_id: Tenant the usage belongs to

        Returns:
            True when the intake accepted the event
        """
        record = self._priced(codec.decode_usage(data, require_tenant(tenant_id)))
        return await self._forward(record, self._append(record))

    async def log_metric(self, name: Any, value: Any, tenant_id: str) -> bool:
        """Log a named numeric metric."""
        record = codec.decode_metric(name, value, require_tenant(tenant_id))
        return await self._forward(record, self._append(record))

    async def log_latency(self, milliseconds: Any, tenant_id: str) -> bool:
        return await self.log_metric("latency", milliseconds, tenant_id)

    async def log_success(self, tenant_id: str) -> bool:
        return await self.log_metric("success", 1, tenant_id)

    async def log_lead(self, data: Any, tenant_id: str) -> bool:
        """Log a captured lead; every submission is a new row."""
        record = codec.decode_lead(data, require_tenant(tenant_id))
        return await self._forward(record, self._append(record))

    async def log_conversation(self, session_id: Any, data: Any, tenant_id: str) -> bool:
        """Log a conversation snapshot for one chat session.

        Locally, the conversation row is upserted even when the payload has
        no message text, and a Message row is added per non-empty turn.
        """
        record = codec.decode_conversation(session_id, data, require_tenant(tenant_id))
        return await self._forward(record, lambda: self._write_conversation(record))

    # -- internals ---------------------------------------------------------

    def _priced(self, record: UsageRecord) -> UsageRecord:
        if record.cost_usd is not None:
            return record
        cost = cost_for_text(
            record.model, record.prompt_tokens, record.completion_tokens, record.cached_tokens
        )
        return replace(
            record,
            cost_usd=cost.total,
            breakdown=record.breakdown if record.breakdown is not None else cost.to_dict(),
        )

    def should_write_local(self, remote_ok: bool) -> bool:
        """Decide on the local write once the remote attempt has settled."""
        if self.config.write_mode.writes_local:
            return True
        return self.config.fallback_local_on_fail and not remote_ok

    async def _forward(self, record: codec.Record, write_local: Callable[[], Awaitable[Any]]) -> bool:
        remote_ok = False
        if self.config.write_mode.writes_remote:
            result = await self.intake.post(codec.encode_remote(record), record.tenant_id)
            remote_ok = result.ok

        if self.should_write_local(remote_ok):
            try:
                await write_local()
            except Exception as e:
                logger.error(
                    "local_write_failed",
                    tenant_id=record.tenant_id,
                    record=type(record).__name__,
                    error=str(e),
                )
        elif self.config.write_mode is WriteMode.ADMIN and not remote_ok:
            logger.warning(
                "telemetry_dropped",
                tenant_id=record.tenant_id,
                record=type(record).__name__,
            )
        return remote_ok

    def _append(self, record: codec.Record) -> Callable[[], Awaitable[Any]]:
        entity_kind, fields = codec.store_fields(record)
        return lambda: self.store.create(entity_kind, fields)

    async def _write_conversation(self, record: ConversationRecord) -> None:
        if not record.session_id:
            logger.warning("conversation_session_missing", tenant_id=record.tenant_id)
            return

        key = {"tenant_id": record.tenant_id, "session_id": record.session_id}
        conversation_id = await self.store.upsert(EntityKind.CONVERSATION, key, key, {})
        for turn in record.turns:
            await self.store.create(
                EntityKind.MESSAGE,
                {"conversation_id": conversation_id, "role": turn.role.value, "content": turn.content},
            )

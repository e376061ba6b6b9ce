"""
Event codec.

Normalizes loosely shaped caller input into one canonical record per event
kind, and encodes records for the remote intake and the local store.

Callers have sent usage fields in several spellings over time
(``promptTokens`` and ``prompt_tokens``, cost as ``costUSD`` or ``cost``).
That tolerance lives here and nowhere else. Decoding never raises:
malformed values fall back to their defaults.
"""

import math
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..storage.models import (
    ConversationRecord,
    EntityKind,
    ErrorRecord,
    EventRecord,
    LeadRecord,
    MessageRole,
    MessageTurn,
    MetricRecord,
    UsageRecord,
)

Record = Union[EventRecord, ErrorRecord, UsageRecord, MetricRecord, LeadRecord, ConversationRecord]

_ASSISTANT_ROLES = {"assistant", "ai", "bot"}


def first_present(data: Mapping[str, Any], *keys: str) -> Any:
    """Return the value of the first key present with a non-None value."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def coerce_float(value: Any, default: float = 0.0) -> float:
    """Coerce a number or numeric string to a finite float."""
    if isinstance(value, bool) or value is None:
        return default
    try:
        result = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    return result if math.isfinite(result) else default


def coerce_int(value: Any) -> int:
    """Coerce a count to a non-negative integer, flooring fractions."""
    return max(0, math.floor(coerce_float(value)))


def coerce_str(value: Any) -> str:
    if value is None:
        return ""
    try:
        return str(value)
    except Exception:
        return ""


def coerce_tags(value: Any) -> Tuple[str, ...]:
    """Coerce tags to an ordered sequence of unique, non-empty strings."""
    if value is None:
        return ()
    if isinstance(value, str):
        items: List[Any] = [value]
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
    else:
        return ()

    tags: List[str] = []
    for item in items:
        tag = coerce_str(item).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tuple(tags)


def coerce_cost(value: Any) -> Optional[Decimal]:
    """Coerce a caller-supplied cost; None when absent or not a number."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        cost = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not cost.is_finite():
        return None
    return max(cost, Decimal("0"))


def _mapping(data: Any) -> Mapping[str, Any]:
    return data if isinstance(data, Mapping) else {}


def json_safe(value: Any) -> Any:
    """Convert caller data into plain JSON types.

    Decimals become floats, dates and times become ISO strings, mappings get
    string keys, and sequences become lists. Non-finite numbers become None;
    anything else unrecognized is stringified.
    """
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, Decimal) and not value.is_finite():
        return None
    if isinstance(value, (float, Decimal)):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {coerce_str(key): json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_safe(item) for item in value]
    return coerce_str(value)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def decode_event(role: Any, message: Any, tenant_id: str) -> EventRecord:
    return EventRecord(
        tenant_id=tenant_id,
        role=coerce_str(role).strip() or "info",
        message=coerce_str(message),
    )


def decode_error(source: Any, message: Any, tenant_id: str) -> ErrorRecord:
    return ErrorRecord(tenant_id=tenant_id, source=coerce_str(source), message=coerce_str(message))


def decode_usage(data: Any, tenant_id: str) -> UsageRecord:
    """Decode usage fields in either naming convention.

    Args:
        data: Usage mapping from the caller
        tenant_id: Tenant the usage belongs to

    Returns:
        UsageRecord with a lowercased model; ``cost_usd`` stays None when the
        caller did not price the usage
    """
    data = _mapping(data)
    cost = coerce_cost(data.get("costUSD"))
    if cost is None:
        cost = coerce_cost(data.get("cost"))
    breakdown = data.get("breakdown")

    return UsageRecord(
        tenant_id=tenant_id,
        model=coerce_str(data.get("model")).strip().lower(),
        prompt_tokens=coerce_int(first_present(data, "promptTokens", "prompt_tokens")),
        completion_tokens=coerce_int(first_present(data, "completionTokens", "completion_tokens")),
        cached_tokens=coerce_int(first_present(data, "cachedTokens", "cached_tokens")),
        cost_usd=cost,
        breakdown=json_safe(breakdown) if isinstance(breakdown, Mapping) else None,
    )


def decode_metric(name: Any, value: Any, tenant_id: str) -> MetricRecord:
    return MetricRecord(
        tenant_id=tenant_id,
        name=coerce_str(name).strip() or "custom",
        value=coerce_float(value),
    )


def decode_lead(data: Any, tenant_id: str) -> LeadRecord:
    data = _mapping(data)
    return LeadRecord(
        tenant_id=tenant_id,
        name=coerce_str(data.get("name")),
        email=coerce_str(data.get("email")),
        phone=coerce_str(data.get("phone")),
        snippet=coerce_str(data.get("snippet")),
        tags=coerce_tags(data.get("tags")),
    )


def _message_role(value: Any) -> Optional[MessageRole]:
    role = coerce_str(value).strip().lower()
    if role == MessageRole.USER.value:
        return MessageRole.USER
    if role in _ASSISTANT_ROLES:
        return MessageRole.ASSISTANT
    return None


def _conversation_turns(data: Mapping[str, Any]) -> Tuple[MessageTurn, ...]:
    turns: List[MessageTurn] = []

    messages = data.get("messages")
    if isinstance(messages, (list, tuple)):
        for item in messages:
            item = _mapping(item)
            role = _message_role(item.get("role"))
            content = coerce_str(item.get("content")).strip()
            if role is not None and content:
                turns.append(MessageTurn(role, content))

    user_text = coerce_str(first_present(data, "userMessage", "user_message", "message")).strip()
    if user_text:
        turns.append(MessageTurn(MessageRole.USER, user_text))
    reply_text = coerce_str(first_present(data, "aiReply", "ai_reply", "reply")).strip()
    if reply_text:
        turns.append(MessageTurn(MessageRole.ASSISTANT, reply_text))

    return tuple(turns)


def decode_conversation(session_id: Any, data: Any, tenant_id: str) -> ConversationRecord:
    """Decode a conversation snapshot.

    Turns come from a ``messages`` list of ``{role, content}`` items and from
    the flat user/assistant text fields; empty texts are dropped.
    """
    data = _mapping(data)
    return ConversationRecord(
        tenant_id=tenant_id,
        session_id=coerce_str(session_id).strip(),
        turns=_conversation_turns(data),
        data=json_safe(data),
    )


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def _money(value: Optional[Decimal]) -> float:
    return float(value) if value is not None else 0.0


def encode_remote(record: Record) -> Dict[str, Any]:
    """Encode a record as the JSON body of an intake POST."""
    if isinstance(record, EventRecord):
        return {"type": "event", "role": record.role, "message": record.message}
    if isinstance(record, ErrorRecord):
        return {"type": "error", "user": record.source, "message": record.message}
    if isinstance(record, UsageRecord):
        return {
            "type": "usage",
            "usage": {
                "model": record.model,
                "prompt_tokens": record.prompt_tokens,
                "completion_tokens": record.completion_tokens,
                "cached_tokens": record.cached_tokens,
                "costUSD": _money(record.cost_usd),
                "breakdown": record.breakdown,
            },
        }
    if isinstance(record, MetricRecord):
        return {"type": "metric", "metricType": record.name, "value": record.value}
    if isinstance(record, LeadRecord):
        return {
            "type": "lead",
            "name": record.name,
            "email": record.email,
            "phone": record.phone,
            "snippet": record.snippet,
            "tags": list(record.tags),
        }
    if isinstance(record, ConversationRecord):
        return {"type": "conversation", "sessionId": record.session_id, "data": record.data}
    raise TypeError(f"Unsupported record type: {type(record).__name__}")


def store_fields(record: Record) -> Tuple[EntityKind, Dict[str, Any]]:
    """Map an append-only record to its local entity kind and row fields.

    Conversations are not handled here; they are upserted by key.
    """
    if isinstance(record, EventRecord):
        return EntityKind.EVENT, {
            "tenant_id": record.tenant_id,
            "type": record.role,
            "content": record.message,
        }
    if isinstance(record, ErrorRecord):
        return EntityKind.EVENT, {
            "tenant_id": record.tenant_id,
            "type": record.event_type,
            "content": record.message,
        }
    if isinstance(record, UsageRecord):
        return EntityKind.USAGE, {
            "tenant_id": record.tenant_id,
            "model": record.model,
            "prompt_tokens": record.prompt_tokens,
            "completion_tokens": record.completion_tokens,
            "cached_tokens": record.cached_tokens,
            "cost": _money(record.cost_usd),
            "breakdown": record.breakdown,
        }
    if isinstance(record, MetricRecord):
        return EntityKind.METRIC, {
            "tenant_id": record.tenant_id,
            "name": record.name,
            "value": record.value,
        }
    if isinstance(record, LeadRecord):
        return EntityKind.LEAD, {
            "tenant_id": record.tenant_id,
            "name": record.name,
            "email": record.email,
            "phone": record.phone,
            "snippet": record.snippet,
            "tags": list(record.tags),
        }
    raise TypeError(f"Unsupported record type: {type(record).__name__}")

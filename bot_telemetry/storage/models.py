"""
Data models for storage layer.

Canonical telemetry records, one per event kind. The codec produces them
from caller input; the forwarder sends them to the intake and mirrors them
into the local store. All records are append-only once written.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class EntityKind(Enum):
    """Local store entity kinds."""
    EVENT = "event"
    USAGE = "usage"
    METRIC = "metric"
    LEAD = "lead"
    CONVERSATION = "conversation"
    MESSAGE = "message"


class MessageRole(Enum):
    """Author of a conversation turn."""
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class EventRecord:
    """Role-tagged free-text event (user turn, AI reply, server notice)."""
    tenant_id: str
    role: str
    message: str


@dataclass(frozen=True)
class ErrorRecord:
    """Error reported by a named source such as "Email" or "OpenAI"."""
    tenant_id: str
    source: str
    message: str

    @property
    def event_type(self) -> str:
        """Event type under which the error is stored locally."""
        return f"error:{self.source}"


@dataclass(frozen=True)
class UsageRecord:
    """Token usage of one metered AI call.

    ``cost_usd`` is None until the usage has been priced.
    """
    tenant_id: str
    model: str
    prompt_tokens: int
    completion_tokens: int
    cached_tokens: int
    cost_usd: Optional[Decimal] = None
    breakdown: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class MetricRecord:
    """Named numeric measurement, e.g. latency in milliseconds."""
    tenant_id: str
    name: str
    value: float


@dataclass(frozen=True)
class LeadRecord:
    """Contact details captured from one chat submission."""
    tenant_id: str
    name: str
    email: str
    phone: str
    snippet: str = ""
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MessageTurn:
    """A single non-empty conversation turn."""
    role: MessageRole
    content: str


@dataclass(frozen=True)
class ConversationRecord:
    """Conversation snapshot for one chat session.

    ``data`` is the caller's payload as received, forwarded to the intake
    untouched; ``turns`` holds the message text extracted from it.
    """
    tenant_id: str
    session_id: str
    turns: Tuple[MessageTurn, ...] = ()
    data: Dict[str, Any] = field(default_factory=dict)

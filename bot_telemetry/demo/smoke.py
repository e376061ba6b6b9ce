"""
Smoke scenario for a live admin intake.

Sends one event of every kind for a tenant and reports whether the intake
accepted each of them.
"""

import time
from typing import List, Tuple

from ..telemetry.forwarder import TelemetryForwarder

SMOKE_SESSION_ID = "sess-001"


async def run_smoke(forwarder: TelemetryForwarder, tenant_id: str) -> List[Tuple[str, bool]]:
    """Send the smoke events in order.

    Args:
        forwarder: Forwarder to send through
        tenant_id: Tenant the events are logged for

    Returns:
        (event kind, remote success) pairs in send order
    """
    now_ms = int(time.time() * 1000)
    results = [
        ("event", await forwarder.log_event("sys", "Smoke test event fired", tenant_id)),
        ("error", await forwarder.log_error("tester", "Simulated error", tenant_id)),
        ("usage", await forwarder.log_usage({
            "model": "gpt-4o-mini",
            "prompt_tokens": 123,
            "completion_tokens": 456,
            "cached_tokens": 0,
        }, tenant_id)),
        ("metric", await forwarder.log_latency(123, tenant_id)),
        ("metric", await forwarder.log_success(tenant_id)),
        ("lead", await forwarder.log_lead({
            "name": "Smoke Tester",
            "email": "smoke@example.com",
            "phone": "555-0100",
            "snippet": "Smoke test lead",
            "tags": ["smoke"],
        }, tenant_id)),
        ("conversation", await forwarder.log_conversation(SMOKE_SESSION_ID, {
            "messages": [
                {"role": "user", "content": "Hello!", "at": now_ms},
                {"role": "ai", "content": "Hi, test reply here.", "at": now_ms},
            ],
        }, tenant_id)),
    ]
    return results

"""
Telemetry forwarding for the chatbot backend.

Normalizes telemetry events and relays them to the admin intake and the
local store according to the configured write mode.
"""

from .forwarder import TelemetryForwarder, TenantRequiredError
from .intake import IntakeClient, SinkOutcome, SinkResult

__all__ = [
    "IntakeClient",
    "SinkOutcome",
    "SinkResult",
    "TelemetryForwarder",
    "TenantRequiredError",
]

"""Local telemetry store."""

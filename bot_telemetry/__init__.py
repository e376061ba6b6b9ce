"""
Bot telemetry.

Usage-telemetry forwarding and cost accounting for a multi-tenant chatbot
backend.
"""

__version__ = "0.1.0"

"""
SDK for bot telemetry.

Provides a metered OpenAI client that reports usage and cost through the
telemetry forwarder.
"""

from .openai_client import MeteredOpenAI

__all__ = ["MeteredOpenAI"]

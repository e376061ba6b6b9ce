"""
Token usage as reported by a chat completion.

Provider responses expose usage as loosely typed attribute objects; this
module turns them into exact, non-negative integer counts for pricing.
"""

import math
from dataclasses import dataclass
from typing import Any


def _count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    if not math.isfinite(number) or number < 0:
        return 0
    return int(number)


@dataclass(frozen=True)
class TokenUsage:
    """Token counts for one completion.

    ``cached_tokens`` are prompt tokens served from the provider cache; they
    are billed at the cached rate on top of the prompt tokens.
    """
    prompt_tokens: int
    completion_tokens: int
    cached_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @classmethod
    def from_provider(cls, usage: Any) -> "TokenUsage":
        """Read counts off a provider usage object; missing or malformed counts are 0."""
        details = getattr(usage, "prompt_tokens_details", None)
        return cls(
            prompt_tokens=_count(getattr(usage, "prompt_tokens", 0)),
            completion_tokens=_count(getattr(usage, "completion_tokens", 0)),
            cached_tokens=_count(getattr(details, "cached_tokens", 0)),
        )

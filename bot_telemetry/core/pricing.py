"""
Pricing calculations and rate management.

Handles cost computations for metered AI operations: chat tokens, audio
minutes, synthesized-speech characters and generated images.

Every function here is total. An unrecognized model, size or quality prices
at zero with ``unknown=True`` so a pricing gap never fails the request that
is being metered.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Iterable, Optional

import structlog

from .token_counter import TokenUsage

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
MONEY_QUANTUM = Decimal("0.000001")  # internal precision, 6 places
DISPLAY_QUANTUM = Decimal("0.0001")  # display precision, 4 places
THOUSAND = Decimal("1000")
MILLION = Decimal("1000000")


def round_money(value: Decimal) -> Decimal:
    """Round a money amount to the internal precision."""
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def format_usd(value: Any) -> str:
    """Format a money amount for display with 4 decimal places."""
    amount = _quantity(value).quantize(DISPLAY_QUANTUM, rounding=ROUND_HALF_UP)
    return f"${amount}"


def _quantity(value: Any) -> Decimal:
    """Convert a loosely typed quantity into a non-negative Decimal.

    Malformed, non-finite and negative values all become zero.
    """
    if isinstance(value, bool) or value is None:
        return ZERO
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return ZERO
    if not result.is_finite() or result < 0:
        return ZERO
    return result


def _whole(value: Any) -> int:
    """Floor a loosely typed count to a non-negative integer."""
    return int(_quantity(value).to_integral_value(rounding=ROUND_FLOOR))


def _normalize_model(model: Any) -> str:
    if model is None:
        return ""
    return str(model).strip().lower()


def _longest_prefix(model: str, keys: Iterable[str]) -> Optional[str]:
    """Return the longest key that ``model`` starts with, if any."""
    if not model:
        return None
    matches = [key for key in keys if model.startswith(key)]
    if not matches:
        return None
    return max(matches, key=len)


def _warn_unknown(category: str, **context: Any) -> None:
    logger.warning("pricing_unknown_model", category=category, **context)


# ---------------------------------------------------------------------------
# Text tokens
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    prompt_cost_per_1k: Decimal  # Cost per 1K prompt tokens
    completion_cost_per_1k: Decimal  # Cost per 1K completion tokens
    cached_cost_per_1k: Decimal = ZERO  # Cost per 1K cached prompt tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported text models."""
    prices: Dict[str, ModelPricing]

    def resolve(self, model: str) -> Optional[str]:
        """Resolve a model identifier to its table key.

        Dated or snapshot identifiers resolve to the longest table key they
        start with, so ``gpt-4o-mini-2024-07-18`` bills as ``gpt-4o-mini``.

        Args:
            model: Model identifier, any case

        Returns:
            Matching table key, or None when nothing matches
        """
        return _longest_prefix(_normalize_model(model), self.prices)


def _rate(value: str) -> Decimal:
    return Decimal(value)


# Rates are USD per 1K tokens.
PRICING_TABLE = PricingTable({
    "gpt-5": ModelPricing(_rate("0.00125"), _rate("0.01"), _rate("0.000125")),
    "gpt-5-mini": ModelPricing(_rate("0.00025"), _rate("0.002"), _rate("0.000025")),
    "gpt-5-nano": ModelPricing(_rate("0.00005"), _rate("0.0004"), _rate("0.000005")),
    "gpt-4.1": ModelPricing(_rate("0.002"), _rate("0.008"), _rate("0.0005")),
    "gpt-4.1-mini": ModelPricing(_rate("0.0004"), _rate("0.0016"), _rate("0.0001")),
    "gpt-4.1-nano": ModelPricing(_rate("0.0001"), _rate("0.0004"), _rate("0.000025")),
    "gpt-4o": ModelPricing(_rate("0.0025"), _rate("0.01"), _rate("0.00125")),
    "gpt-4o-mini": ModelPricing(_rate("0.0006"), _rate("0.0024"), _rate("0.0003")),
    "gpt-3.5-turbo": ModelPricing(_rate("0.0005"), _rate("0.0015")),
    "o1": ModelPricing(_rate("0.015"), _rate("0.06"), _rate("0.0075")),
    "o1-pro": ModelPricing(_rate("0.15"), _rate("0.6")),
    "o3": ModelPricing(_rate("0.002"), _rate("0.008"), _rate("0.0005")),
    "o4-mini": ModelPricing(_rate("0.0011"), _rate("0.0044"), _rate("0.000275")),
})


@dataclass(frozen=True)
class TextCost:
    """Cost breakdown for one chat completion."""
    prompt_usd: Decimal
    completion_usd: Decimal
    cached_usd: Decimal
    total: Decimal
    resolved_model: Optional[str]
    unknown: bool

    def to_dict(self) -> Dict[str, Any]:
        """Breakdown in the JSON shape sent with usage events."""
        return {
            "promptUSD": float(self.prompt_usd),
            "completionUSD": float(self.completion_usd),
            "cachedUSD": float(self.cached_usd),
            "total": float(self.total),
            "resolvedModel": self.resolved_model,
            "unknown": self.unknown,
        }


def cost_for_text(
    model: str,
    prompt_tokens: Any,
    completion_tokens: Any,
    cached_tokens: Any = 0,
) -> TextCost:
    """Calculate the cost of a chat completion.

    Each sub-total is rounded to 6 places before summing, so the breakdown
    fields add up exactly to ``total``.

    Args:
        model: Model identifier, matched by longest prefix
        prompt_tokens: Prompt token count
        completion_tokens: Completion token count
        cached_tokens: Cached prompt token count

    Returns:
        TextCost; all zeros with ``unknown=True`` when the model has no rate
    """
    key = PRICING_TABLE.resolve(model)
    if key is None:
        _warn_unknown("text", model=_normalize_model(model))
        return TextCost(ZERO, ZERO, ZERO, ZERO, None, True)

    pricing = PRICING_TABLE.prices[key]

    # (tokens / 1000) * cost_per_1k, rounded per sub-total
    prompt_usd = round_money(Decimal(_whole(prompt_tokens)) / THOUSAND * pricing.prompt_cost_per_1k)
    completion_usd = round_money(
        Decimal(_whole(completion_tokens)) / THOUSAND * pricing.completion_cost_per_1k
    )
    cached_usd = round_money(Decimal(_whole(cached_tokens)) / THOUSAND * pricing.cached_cost_per_1k)

    return TextCost(
        prompt_usd=prompt_usd,
        completion_usd=completion_usd,
        cached_usd=cached_usd,
        total=prompt_usd + completion_usd + cached_usd,
        resolved_model=key,
        unknown=False,
    )


def cost_for_usage(model: str, usage: TokenUsage) -> TextCost:
    """Calculate the cost of a chat completion from a TokenUsage."""
    return cost_for_text(model, usage.prompt_tokens, usage.completion_tokens, usage.cached_tokens)


# ---------------------------------------------------------------------------
# Audio minutes
# ---------------------------------------------------------------------------

class AudioDirection(Enum):
    """Which side of a voice exchange is being billed."""
    INPUT = "input"  # speech recognition
    OUTPUT = "output"  # speech output


@dataclass(frozen=True)
class AudioPricing:
    """Per-minute rates; a direction the model does not offer is None."""
    input_per_minute: Optional[Decimal] = None
    output_per_minute: Optional[Decimal] = None

    def rate_for(self, direction: AudioDirection) -> Decimal:
        if direction is AudioDirection.INPUT:
            rate = self.input_per_minute
        else:
            rate = self.output_per_minute
        return rate if rate is not None else ZERO


AUDIO_PRICING: Dict[str, AudioPricing] = {
    "whisper-1": AudioPricing(input_per_minute=_rate("0.006")),
    "gpt-4o-transcribe": AudioPricing(input_per_minute=_rate("0.006")),
    "gpt-4o-mini-transcribe": AudioPricing(input_per_minute=_rate("0.003")),
    "gpt-4o-mini-tts": AudioPricing(output_per_minute=_rate("0.015")),
    "gpt-4o-audio-preview": AudioPricing(_rate("0.04"), _rate("0.16")),
    "gpt-4o-realtime-preview": AudioPricing(_rate("0.06"), _rate("0.24")),
    "gpt-4o-mini-realtime-preview": AudioPricing(_rate("0.01"), _rate("0.04")),
}


@dataclass(frozen=True)
class AudioCost:
    """Cost of a metered audio duration."""
    total: Decimal
    rate_per_minute: Decimal
    unknown: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": float(self.total),
            "ratePerMinute": float(self.rate_per_minute),
            "unknown": self.unknown,
        }


def _audio_direction(direction: Any) -> Optional[AudioDirection]:
    if isinstance(direction, AudioDirection):
        return direction
    try:
        return AudioDirection(str(direction).strip().lower())
    except ValueError:
        return None


def cost_for_audio_minutes(model: str, minutes: Any, direction: Any) -> AudioCost:
    """Calculate the cost of transcribed or synthesized audio.

    Args:
        model: Audio model identifier, matched by longest prefix
        minutes: Billed duration in minutes, fractions allowed
        direction: AudioDirection or "input"/"output"

    Returns:
        AudioCost; a direction the model does not price costs zero
    """
    key = _longest_prefix(_normalize_model(model), AUDIO_PRICING)
    resolved_direction = _audio_direction(direction)
    if key is None or resolved_direction is None:
        _warn_unknown("audio", model=_normalize_model(model), direction=str(direction))
        return AudioCost(ZERO, ZERO, True)

    rate = AUDIO_PRICING[key].rate_for(resolved_direction)
    return AudioCost(
        total=round_money(_quantity(minutes) * rate),
        rate_per_minute=rate,
        unknown=False,
    )


# ---------------------------------------------------------------------------
# Synthesized speech characters
# ---------------------------------------------------------------------------

# USD per 1M input characters, keyed by quality tier.
TTS_TIERS: Dict[str, Decimal] = {
    "standard": _rate("15.00"),
    "mini": _rate("12.00"),
    "hd": _rate("30.00"),
}


@dataclass(frozen=True)
class TtsCost:
    """Cost of a text-to-speech request."""
    total: Decimal
    rate_per_million_chars: Decimal
    tier: Optional[str]
    unknown: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": float(self.total),
            "ratePerMillionChars": float(self.rate_per_million_chars),
            "tier": self.tier,
            "unknown": self.unknown,
        }


def tts_tier(model: Any) -> Optional[str]:
    """Normalize a speech model name to its quality tier.

    ``hd`` wins over every other keyword; names without ``tts`` are not
    speech models.
    """
    name = _normalize_model(model)
    if "tts" not in name:
        return None
    if "hd" in name:
        return "hd"
    if "mini" in name:
        return "mini"
    return "standard"


def cost_for_tts_characters(model: str, characters: Any) -> TtsCost:
    """Calculate the cost of synthesizing ``characters`` input characters."""
    tier = tts_tier(model)
    if tier is None:
        _warn_unknown("tts", model=_normalize_model(model))
        return TtsCost(ZERO, ZERO, None, True)

    rate = TTS_TIERS[tier]
    total = round_money(Decimal(_whole(characters)) / MILLION * rate)
    return TtsCost(total=total, rate_per_million_chars=rate, tier=tier, unknown=False)


# ---------------------------------------------------------------------------
# Generated images
# ---------------------------------------------------------------------------

# model family -> quality tier -> canonical size -> USD per image
IMAGE_PRICING: Dict[str, Dict[str, Dict[str, Decimal]]] = {
    "dall-e-2": {
        "standard": {
            "256x256": _rate("0.016"),
            "512x512": _rate("0.018"),
            "1024x1024": _rate("0.020"),
        },
    },
    "dall-e-3": {
        "standard": {
            "1024x1024": _rate("0.040"),
            "1024x1792": _rate("0.080"),
            "1792x1024": _rate("0.080"),
        },
        "hd": {
            "1024x1024": _rate("0.080"),
            "1024x1792": _rate("0.120"),
            "1792x1024": _rate("0.120"),
        },
    },
    "gpt-image-1": {
        "low": {
            "1024x1024": _rate("0.011"),
            "1024x1536": _rate("0.016"),
            "1536x1024": _rate("0.016"),
        },
        "medium": {
            "1024x1024": _rate("0.042"),
            "1024x1536": _rate("0.063"),
            "1536x1024": _rate("0.063"),
        },
        "high": {
            "1024x1024": _rate("0.167"),
            "1024x1536": _rate("0.25"),
            "1536x1024": _rate("0.25"),
        },
    },
}

IMAGE_DEFAULT_QUALITY: Dict[str, str] = {
    "dall-e-2": "standard",
    "dall-e-3": "standard",
    "gpt-image-1": "medium",
}

_SIZE_PATTERN = re.compile(r"^\s*(\d+)\s*[x×*]\s*(\d+)\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class ImageCost:
    """Cost of an image generation request."""
    total: Decimal
    unit_price: Decimal
    unknown: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": float(self.total),
            "unitPrice": float(self.unit_price),
            "unknown": self.unknown,
        }


def canonical_size(size: Any) -> str:
    """Canonicalize an image size to ``WxH``; empty string when unparseable."""
    if isinstance(size, (tuple, list)) and len(size) == 2:
        width, height = _whole(size[0]), _whole(size[1])
        return f"{width}x{height}" if width and height else ""
    match = _SIZE_PATTERN.match(str(size or ""))
    if not match:
        return ""
    return f"{int(match.group(1))}x{int(match.group(2))}"


def cost_for_image(model: str, size: Any, quality: Any = None, count: Any = 1) -> ImageCost:
    """Calculate the cost of generating ``count`` images.

    Args:
        model: Image model identifier, matched by longest prefix to a family
        size: Image size such as "1024x1024" or (1024, 1024)
        quality: Quality tier; empty uses the family default
        count: Number of images, floored to a non-negative integer

    Returns:
        ImageCost; any miss in the family/quality/size chain is unknown
    """
    family = _longest_prefix(_normalize_model(model), IMAGE_PRICING)
    tier = _normalize_model(quality) or IMAGE_DEFAULT_QUALITY.get(family or "", "")
    size_key = canonical_size(size)

    unit_price = IMAGE_PRICING.get(family or "", {}).get(tier, {}).get(size_key)
    if unit_price is None:
        _warn_unknown("image", model=_normalize_model(model), quality=tier, size=size_key)
        return ImageCost(ZERO, ZERO, True)

    images = _whole(count)
    return ImageCost(total=round_money(unit_price * images), unit_price=unit_price, unknown=False)


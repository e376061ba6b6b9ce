"""
Unit tests for pricing calculations.

Tests cost accuracy, prefix resolution, rounding behavior and the
zero-cost fallback for unknown inputs.
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from bot_telemetry.core.pricing import (
    AudioDirection,
    PRICING_TABLE,
    canonical_size,
    cost_for_audio_minutes,
    cost_for_image,
    cost_for_text,
    cost_for_tts_characters,
    cost_for_usage,
    format_usd,
    round_money,
    tts_tier,
)
from bot_telemetry.core.token_counter import TokenUsage


class TestTokenUsage:
    """Test TokenUsage dataclass."""

    def test_total_tokens_calculation(self):
        """Verify total_tokens is computed correctly."""
        usage = TokenUsage(prompt_tokens=100, completion_tokens=50)
        assert usage.total_tokens == 150

    def test_cached_tokens_default_to_zero(self):
        """Verify cached tokens are optional."""
        usage = TokenUsage(prompt_tokens=0, completion_tokens=0)
        assert usage.cached_tokens == 0
        assert usage.total_tokens == 0

    def test_from_provider_reads_cached_tokens(self):
        usage = TokenUsage.from_provider(SimpleNamespace(
            prompt_tokens=120,
            completion_tokens=30,
            prompt_tokens_details=SimpleNamespace(cached_tokens=100),
        ))
        assert usage == TokenUsage(120, 30, 100)

    def test_from_provider_malformed_counts_are_zero(self):
        usage = TokenUsage.from_provider(SimpleNamespace(prompt_tokens=None, completion_tokens="-4"))
        assert usage == TokenUsage(0, 0, 0)

    def test_from_provider_huge_counts_are_zero(self):
        usage = TokenUsage.from_provider(SimpleNamespace(prompt_tokens=10 ** 400, completion_tokens=5))
        assert usage == TokenUsage(0, 5, 0)


class TestPricingTable:
    """Test model resolution against the rate table."""

    def test_exact_model_resolves_to_itself(self):
        assert PRICING_TABLE.resolve("gpt-4o-mini") == "gpt-4o-mini"

    def test_dated_model_resolves_to_base_tier(self):
        """Snapshot identifiers bill as their base tier."""
        assert PRICING_TABLE.resolve("gpt-4o-mini-2024-07-18") == "gpt-4o-mini"

    def test_longest_prefix_wins(self):
        """gpt-4o-mini must not resolve to the shorter gpt-4o key."""
        assert PRICING_TABLE.resolve("gpt-4o-2024-08-06") == "gpt-4o"
        assert PRICING_TABLE.resolve("o1-pro-2025-03-19") == "o1-pro"
        assert PRICING_TABLE.resolve("gpt-4.1-nano") == "gpt-4.1-nano"

    def test_resolution_is_case_insensitive(self):
        assert PRICING_TABLE.resolve("GPT-4o-Mini") == "gpt-4o-mini"

    def test_unknown_model_resolves_to_none(self):
        assert PRICING_TABLE.resolve("unknown-model") is None
        assert PRICING_TABLE.resolve("") is None
        assert PRICING_TABLE.resolve(None) is None


class TestTextCost:
    """Test token cost calculation accuracy and rounding."""

    def test_example_gpt4o_mini_usage(self):
        """Verify the documented usage example."""
        cost = cost_for_text("gpt-4o-mini", 1000, 500, 0)
        # Prompt: 1000/1000 * $0.0006 = $0.0006
        # Completion: 500/1000 * $0.0024 = $0.0012
        # Total: $0.0018
        assert cost.prompt_usd == Decimal("0.000600")
        assert cost.completion_usd == Decimal("0.001200")
        assert cost.cached_usd == Decimal("0")
        assert cost.total == Decimal("0.0018")
        assert cost.resolved_model == "gpt-4o-mini"
        assert cost.unknown is False

    def test_prefix_model_bills_like_base_model(self):
        """Verify dated names use the base tier's rates."""
        dated = cost_for_text("gpt-4o-mini-2024-07-18", 1000, 0, 0)
        base = cost_for_text("gpt-4o-mini", 1000, 0, 0)
        assert dated.total == base.total
        assert dated.resolved_model == base.resolved_model

    def test_cached_tokens_billed_separately(self):
        cost = cost_for_text("gpt-4o", 2000, 1000, 1000)
        # Prompt: 2000/1000 * $0.0025 = $0.005
        # Completion: 1000/1000 * $0.01 = $0.01
        # Cached: 1000/1000 * $0.00125 = $0.00125
        assert cost.prompt_usd == Decimal("0.005")
        assert cost.completion_usd == Decimal("0.01")
        assert cost.cached_usd == Decimal("0.00125")
        assert cost.total == Decimal("0.01625")

    @pytest.mark.parametrize("model", ["gpt-5", "gpt-4.1-mini", "o3", "o4-mini", "gpt-3.5-turbo"])
    def test_breakdown_sums_exactly_to_total(self, model):
        """Sub-totals are rounded before summing, so they add up exactly."""
        cost = cost_for_text(model, 333, 667, 111)
        assert cost.total == cost.prompt_usd + cost.completion_usd + cost.cached_usd

    def test_subtotals_rounded_to_six_places(self):
        cost = cost_for_text("gpt-5-nano", 1, 1, 1)
        # Prompt: 1/1000 * $0.00005 = $0.00000005 -> $0.000000
        # Completion: 1/1000 * $0.0004 = $0.0000004 -> $0.000000
        assert cost.prompt_usd == Decimal("0.000000")
        assert cost.completion_usd == Decimal("0.000000")
        assert cost.total.as_tuple().exponent == -6

    def test_unknown_model_is_zero_and_flagged(self):
        """Verify pricing gaps degrade to zero instead of raising."""
        cost = cost_for_text("unknown-model", 100, 50, 10)
        assert cost.total == 0
        assert cost.prompt_usd == cost.completion_usd == cost.cached_usd == 0
        assert cost.resolved_model is None
        assert cost.unknown is True

    def test_malformed_token_counts_bill_as_zero(self):
        cost = cost_for_text("gpt-4o-mini", "abc", -50, None)
        assert cost.total == 0
        assert cost.unknown is False

    def test_string_token_counts_are_accepted(self):
        cost = cost_for_text("gpt-4o-mini", "1000", "500")
        assert cost.total == Decimal("0.0018")

    def test_cost_for_usage_matches_cost_for_text(self):
        usage = TokenUsage(prompt_tokens=1200, completion_tokens=300, cached_tokens=200)
        assert cost_for_usage("gpt-4.1", usage) == cost_for_text("gpt-4.1", 1200, 300, 200)

    def test_to_dict_shape(self):
        breakdown = cost_for_text("gpt-4o-mini", 1000, 500).to_dict()
        assert breakdown == {
            "promptUSD": 0.0006,
            "completionUSD": 0.0012,
            "cachedUSD": 0.0,
            "total": 0.0018,
            "resolvedModel": "gpt-4o-mini",
            "unknown": False,
        }


class TestAudioCost:
    """Test per-minute audio pricing."""

    def test_input_minutes(self):
        cost = cost_for_audio_minutes("whisper-1", 10, AudioDirection.INPUT)
        # 10 * $0.006 = $0.06
        assert cost.total == Decimal("0.06")
        assert cost.rate_per_minute == Decimal("0.006")
        assert cost.unknown is False

    def test_direction_accepts_strings(self):
        cost = cost_for_audio_minutes("gpt-4o-realtime-preview-2024-12-17", 2.5, "OUTPUT")
        # 2.5 * $0.24 = $0.60
        assert cost.total == Decimal("0.6")
        assert cost.rate_per_minute == Decimal("0.24")

    def test_missing_direction_costs_zero(self):
        """A direction the model does not offer is zero, not unknown."""
        cost = cost_for_audio_minutes("whisper-1", 10, "output")
        assert cost.total == 0
        assert cost.rate_per_minute == 0
        assert cost.unknown is False

    def test_unknown_model_is_zero_and_flagged(self):
        cost = cost_for_audio_minutes("not-audio", 10, "input")
        assert cost.total == 0
        assert cost.unknown is True

    def test_invalid_direction_is_flagged(self):
        cost = cost_for_audio_minutes("whisper-1", 10, "sideways")
        assert cost.total == 0
        assert cost.unknown is True

    def test_negative_minutes_cost_zero(self):
        cost = cost_for_audio_minutes("whisper-1", -3, "input")
        assert cost.total == 0


class TestTtsCost:
    """Test per-character speech synthesis pricing."""

    @pytest.mark.parametrize("model,tier", [
        ("tts-1", "standard"),
        ("tts-1-hd", "hd"),
        ("TTS-1-HD-1106", "hd"),
        ("gpt-4o-mini-tts", "mini"),
        ("gpt-4o-mini-tts-hd", "hd"),
        ("whisper-1", None),
    ])
    def test_tier_normalization(self, model, tier):
        assert tts_tier(model) == tier

    def test_standard_tier_cost(self):
        cost = cost_for_tts_characters("tts-1", 100000)
        # 100000 / 1M * $15 = $1.50
        assert cost.total == Decimal("1.5")
        assert cost.rate_per_million_chars == Decimal("15.00")
        assert cost.unknown is False

    def test_characters_floored(self):
        cost = cost_for_tts_characters("tts-1-hd", 1000.9)
        # 1000 / 1M * $30 = $0.03
        assert cost.total == Decimal("0.03")

    def test_negative_characters_cost_zero(self):
        assert cost_for_tts_characters("tts-1", -500).total == 0

    def test_unknown_model_is_zero_and_flagged(self):
        cost = cost_for_tts_characters("gpt-4o", 1000)
        assert cost.total == 0
        assert cost.unknown is True


class TestImageCost:
    """Test per-image pricing lookups."""

    @pytest.mark.parametrize("size,expected", [
        ("1024x1024", "1024x1024"),
        ("1024 X 1792", "1024x1792"),
        ("1792*1024", "1792x1024"),
        ((512, 512), "512x512"),
        ("large", ""),
        (None, ""),
    ])
    def test_canonical_size(self, size, expected):
        assert canonical_size(size) == expected

    def test_dalle3_hd(self):
        cost = cost_for_image("dall-e-3", "1024x1792", "HD", 2)
        # 2 * $0.12 = $0.24
        assert cost.unit_price == Decimal("0.120")
        assert cost.total == Decimal("0.24")
        assert cost.unknown is False

    def test_quality_defaults_per_family(self):
        assert cost_for_image("dall-e-3", "1024x1024", None, 1).unit_price == Decimal("0.040")
        assert cost_for_image("gpt-image-1", "1024x1024", "", 1).unit_price == Decimal("0.042")

    def test_count_floored_and_clamped(self):
        assert cost_for_image("dall-e-2", "256x256", "standard", 2.7).total == Decimal("0.032")
        zero = cost_for_image("dall-e-2", "256x256", "standard", -1)
        assert zero.total == 0
        assert zero.unit_price == Decimal("0.016")

    @pytest.mark.parametrize("model,size,quality", [
        ("midjourney", "1024x1024", "standard"),
        ("dall-e-3", "256x256", "standard"),
        ("dall-e-3", "1024x1024", "ultra"),
        ("dall-e-2", "huge", None),
    ])
    def test_any_miss_is_zero_and_flagged(self, model, size, quality):
        cost = cost_for_image(model, size, quality, 3)
        assert cost.total == 0
        assert cost.unit_price == 0
        assert cost.unknown is True


class TestMoneyFormatting:
    """Test rounding and display helpers."""

    def test_round_money_six_places(self):
        assert round_money(Decimal("0.0000005")) == Decimal("0.000001")
        assert round_money(Decimal("0.00000049")) == Decimal("0.000000")

    def test_format_usd_four_places(self):
        assert format_usd(Decimal("0.0018")) == "$0.0018"
        assert format_usd(Decimal("0.00125")) == "$0.0013"
        assert format_usd(0) == "$0.0000"

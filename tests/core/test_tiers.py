"""Unit tests for testwarden/core/tiers.py."""

import pytest

from testwarden.core.tiers import CapabilityTier, TierLadder, next_tier


class TestTierLadder:
    """Tests for the ordered capability ladder."""

    def test_default_ladder_order(self):
        ladder = TierLadder.default()
        assert [tier.name for tier in ladder] == ["haiku", "sonnet", "opus"]
        assert ladder.lowest().name == "haiku"
        assert ladder.highest().name == "opus"

    def test_next_tier_climbs_then_stops(self):
        ladder = TierLadder.default()
        sonnet = ladder.next_tier(ladder.lowest())
        assert sonnet.name == "sonnet"
        assert ladder.next_tier(sonnet).name == "opus"
        assert ladder.next_tier(ladder.highest()) is None

    def test_module_level_next_tier(self):
        ladder = TierLadder.from_names(["small", "large"])
        assert next_tier(ladder.lowest(), ladder).name == "large"

    def test_get_is_case_insensitive(self):
        assert TierLadder.default().get(" Sonnet ").rank == 2

    def test_get_unknown_tier(self):
        with pytest.raises(ValueError, match="Unknown capability tier"):
            TierLadder.default().get("gpt")

    def test_ranks_must_increase(self):
        with pytest.raises(ValueError, match="strictly increasing"):
            TierLadder([CapabilityTier("a", 2), CapabilityTier("b", 1)])

    def test_names_must_be_unique(self):
        with pytest.raises(ValueError, match="unique"):
            TierLadder([CapabilityTier("a", 1), CapabilityTier("a", 2)])

    def test_empty_ladder_rejected(self):
        with pytest.raises(ValueError):
            TierLadder([])

    def test_model_override_from_env(self, monkeypatch):
        monkeypatch.setenv("TESTWARDEN_OPUS_MODEL", "opus-custom")
        assert TierLadder.default().get("opus").model == "opus-custom"

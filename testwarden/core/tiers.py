"""Capability tiers for executors, fixers and the verifier.

Tiers form an ordered ladder. A fix attempt always moves to a strictly higher
tier than the attempt that was rejected, and the verifier must sit above the
lowest execution tier so it never shares the executor's blind spots.

Model ids can be overridden via environment variables:
- TESTWARDEN_HAIKU_MODEL
- TESTWARDEN_SONNET_MODEL
- TESTWARDEN_OPUS_MODEL
"""

import os
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

# Default model aliases per tier (latest versions automatically)
DEFAULT_HAIKU_MODEL = "claude-haiku-4-5"
DEFAULT_SONNET_MODEL = "claude-sonnet-4-5"
DEFAULT_OPUS_MODEL = "claude-opus-4-5"


@dataclass(frozen=True)
class CapabilityTier:
    """One rung of the capability ladder.

    Attributes:
        name: Short tier name (haiku, sonnet, opus)
        rank: Strictly increasing position on the ladder
        model: Model identifier used when work runs at this tier
    """

    name: str
    rank: int
    model: str = ""

    def __str__(self) -> str:
        return self.name


class TierLadder:
    """Ordered sequence of capability tiers.

    Usage:
        ladder = TierLadder.default()
        tier = ladder.lowest()
        while tier is not None:
            ...
            tier = ladder.next_tier(tier)
    """

    def __init__(self, tiers: Sequence[CapabilityTier]):
        if not tiers:
            raise ValueError("A tier ladder needs at least one tier")
        ranks = [tier.rank for tier in tiers]
        if any(b <= a for a, b in zip(ranks, ranks[1:])):
            raise ValueError(f"Tier ranks must be strictly increasing, got {ranks}")
        names = [tier.name for tier in tiers]
        if len(set(names)) != len(names):
            raise ValueError(f"Tier names must be unique, got {names}")
        self._tiers: Tuple[CapabilityTier, ...] = tuple(tiers)

    @classmethod
    def default(cls) -> "TierLadder":
        """Build the haiku < sonnet < opus ladder, honouring env overrides."""
        return cls(
            [
                CapabilityTier(
                    "haiku", 1, os.getenv("TESTWARDEN_HAIKU_MODEL", DEFAULT_HAIKU_MODEL)
                ),
                CapabilityTier(
                    "sonnet", 2, os.getenv("TESTWARDEN_SONNET_MODEL", DEFAULT_SONNET_MODEL)
                ),
                CapabilityTier(
                    "opus", 3, os.getenv("TESTWARDEN_OPUS_MODEL", DEFAULT_OPUS_MODEL)
                ),
            ]
        )

    @classmethod
    def from_names(cls, names: Sequence[str]) -> "TierLadder":
        """Build a ladder from names in ascending order (rank = position)."""
        return cls([CapabilityTier(name, index + 1, name) for index, name in enumerate(names)])

    @property
    def tiers(self) -> Tuple[CapabilityTier, ...]:
        return self._tiers

    def __iter__(self):
        return iter(self._tiers)

    def __len__(self) -> int:
        return len(self._tiers)

    def lowest(self) -> CapabilityTier:
        return self._tiers[0]

    def highest(self) -> CapabilityTier:
        return self._tiers[-1]

    def get(self, name: str) -> CapabilityTier:
        """Look up a tier by name.

        Raises:
            ValueError: If the name is not on the ladder
        """
        normalized = name.strip().lower()
        for tier in self._tiers:
            if tier.name == normalized:
                return tier
        valid = ", ".join(t.name for t in self._tiers)
        raise ValueError(f"Unknown capability tier '{name}'. Valid tiers: {valid}")

    def next_tier(self, current: CapabilityTier) -> Optional[CapabilityTier]:
        """Return the first tier ranked strictly above ``current``, or None."""
        for tier in self._tiers:
            if tier.rank > current.rank:
                return tier
        return None

    def is_above(self, tier: CapabilityTier, other: CapabilityTier) -> bool:
        return tier.rank > other.rank


DEFAULT_LADDER = TierLadder.default()


def next_tier(
    current: CapabilityTier, ladder: TierLadder = DEFAULT_LADDER
) -> Optional[CapabilityTier]:
    """Pure helper: the next tier up from ``current`` on ``ladder``."""
    return ladder.next_tier(current)

"""Core data model, capability tiers and configuration for testwarden."""

from testwarden.core.models import (
    ArtifactType,
    EvidenceArtifact,
    FlagType,
    PassFail,
    RedFlag,
    Severity,
    TestResult,
    TestType,
    Verdict,
)
from testwarden.core.tiers import CapabilityTier, TierLadder, next_tier

__all__ = [
    "ArtifactType",
    "EvidenceArtifact",
    "FlagType",
    "PassFail",
    "RedFlag",
    "Severity",
    "TestResult",
    "TestType",
    "Verdict",
    "CapabilityTier",
    "TierLadder",
    "next_tier",
]

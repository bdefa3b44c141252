"""Exceptions raised by the independent verifier.

Each error records the test, the epic and the pipeline phase that raised it,
so the workflow can decide between failing, rejecting and escalating.
"""

from typing import List, Optional


class VerificationError(Exception):
    """Base class for verification failures."""

    retryable = True

    def __init__(self, message: str, test_id: str, epic_id: str, phase: str):
        self.test_id = test_id
        self.epic_id = epic_id
        self.phase = phase
        super().__init__(message)


class EvidenceNotFoundError(VerificationError):
    """No evidence was recorded for the test; it must be executed again."""

    retryable = False

    def __init__(self, test_id: str, epic_id: str):
        super().__init__(
            f"No evidence found for test {test_id} in epic {epic_id}",
            test_id,
            epic_id,
            "load",
        )


class IntegrityCheckFailedError(VerificationError):
    """Evidence is structurally broken and cannot be scored."""

    retryable = False

    def __init__(self, test_id: str, epic_id: str, errors: List[str]):
        self.errors = list(errors)
        super().__init__(
            f"Evidence integrity check failed for test {test_id}: {'; '.join(self.errors)}",
            test_id,
            epic_id,
            "integrity",
        )


class CriticalRedFlagError(VerificationError):
    """Unresolved critical red flags fail verification without scoring."""

    def __init__(self, test_id: str, epic_id: str, count: int):
        self.count = count
        super().__init__(
            f"Test {test_id} has {count} unresolved critical red flag(s)",
            test_id,
            epic_id,
            "red_flags",
        )


class VerifierTierError(ValueError):
    """The configured verifier tier cannot verify independently."""

    def __init__(self, tier: str, lowest: Optional[str] = None):
        self.tier = tier
        detail = f" (must rank above the '{lowest}' execution tier)" if lowest else ""
        super().__init__(f"Invalid verifier tier '{tier}'{detail}")

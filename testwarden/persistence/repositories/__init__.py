"""Domain-specific repository exports.

Each repository handles operations for one table family.
"""

from testwarden.persistence.repositories.base import BaseRepository
from testwarden.persistence.repositories.evidence_repository import EvidenceRepository
from testwarden.persistence.repositories.red_flag_repository import RedFlagRepository
from testwarden.persistence.repositories.timing_repository import TimingHistoryRepository
from testwarden.persistence.repositories.workflow_repository import WorkflowRepository
from testwarden.persistence.repositories.verification_repository import (
    VerificationReportRepository,
)

__all__ = [
    "BaseRepository",
    "EvidenceRepository",
    "RedFlagRepository",
    "TimingHistoryRepository",
    "WorkflowRepository",
    "VerificationReportRepository",
]

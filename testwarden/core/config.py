"""Configuration management for testwarden."""

from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DetectionConfig(BaseModel):
    """Which red flag modules run, and how wide batches fan out."""

    enable_missing_evidence: bool = True
    enable_inconsistent_evidence: bool = True
    enable_tool_execution: bool = True
    enable_timing_anomalies: bool = True
    enable_coverage_analysis: bool = True
    batch_concurrency: int = Field(5, ge=1)


class ConfidenceThresholds(BaseModel):
    """Confidence score cut-offs for accept / manual review / reject."""

    auto_pass: int = Field(90, ge=0, le=100)
    manual_review: int = Field(60, ge=0, le=100)

    @model_validator(mode="after")
    def check_order(self) -> "ConfidenceThresholds":
        if self.manual_review > self.auto_pass:
            raise ValueError(
                f"manual_review threshold ({self.manual_review}) cannot exceed "
                f"auto_pass threshold ({self.auto_pass})"
            )
        return self


class VerificationConfig(BaseModel):
    """Independent verifier settings."""

    verifier_tier: str = "sonnet"
    thresholds: ConfidenceThresholds = Field(default_factory=ConfidenceThresholds)
    critical_auto_fail: bool = True
    cross_validation_enabled: bool = True
    skeptical_analysis_enabled: bool = True
    strict_mode: bool = False
    evidence_dir: Optional[str] = None


class WorkflowConfig(BaseModel):
    """Workflow orchestration settings.

    Each fix runs one tier above the last, so a ladder of N tiers allows at
    most N-1 fixes whatever ``max_retries`` says. The default haiku/sonnet/opus
    ladder escalates after 2 fixes; 3 needs a ladder of four tiers or more.
    """

    max_retries: int = Field(
        3, ge=0, le=3, description="Fix attempts before escalation, capped by the tier ladder"
    )
    handoff_dir: str = ".testwarden/handoffs"
    stage_timeouts: Dict[str, float] = Field(default_factory=dict)


class ExecutorConfig(BaseModel):
    """API/tool test executor settings."""

    base_url: str = ""
    timeout: float = Field(30.0, gt=0)
    retries: int = Field(3, ge=1)
    evidence_dir: str = ".testwarden/evidence"
    follow_redirects: bool = True
    verify_ssl: bool = True


class GlobalConfig(BaseSettings):
    """Global testwarden configuration loaded from environment variables."""

    # Storage
    database_path: str = Field(".testwarden/state.db", alias="TESTWARDEN_DATABASE_PATH")
    evidence_dir: str = Field(".testwarden/evidence", alias="TESTWARDEN_EVIDENCE_DIR")
    report_dir: str = Field(".testwarden/reports", alias="TESTWARDEN_REPORT_DIR")
    handoff_dir: str = Field(".testwarden/handoffs", alias="TESTWARDEN_HANDOFF_DIR")

    # Logging configuration
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Verification
    verifier_tier: str = Field("sonnet", alias="TESTWARDEN_VERIFIER_TIER")
    auto_pass_threshold: int = Field(90, alias="TESTWARDEN_AUTO_PASS_THRESHOLD")
    manual_review_threshold: int = Field(60, alias="TESTWARDEN_MANUAL_REVIEW_THRESHOLD")

    # Workflow / detection
    max_fix_retries: int = Field(3, alias="TESTWARDEN_MAX_FIX_RETRIES")
    batch_concurrency: int = Field(5, alias="TESTWARDEN_BATCH_CONCURRENCY")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the allowed values."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}, got: {v}")
        return v_upper

    @field_validator("auto_pass_threshold", "manual_review_threshold")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        if not (0 <= v <= 100):
            raise ValueError(f"Confidence thresholds must be between 0 and 100, got: {v}")
        return v

    @field_validator("max_fix_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if not (0 <= v <= 3):
            raise ValueError(f"TESTWARDEN_MAX_FIX_RETRIES must be between 0 and 3, got: {v}")
        return v

    def detection_config(self) -> DetectionConfig:
        return DetectionConfig(batch_concurrency=max(1, self.batch_concurrency))

    def verification_config(self) -> VerificationConfig:
        return VerificationConfig(
            verifier_tier=self.verifier_tier,
            thresholds=ConfidenceThresholds(
                auto_pass=self.auto_pass_threshold,
                manual_review=self.manual_review_threshold,
            ),
            evidence_dir=self.evidence_dir,
        )

    def workflow_config(self) -> WorkflowConfig:
        return WorkflowConfig(max_retries=self.max_fix_retries, handoff_dir=self.handoff_dir)

    def executor_config(self) -> ExecutorConfig:
        return ExecutorConfig(evidence_dir=self.evidence_dir)

    def ensure_directories(self) -> None:
        """Ensure required directories exist."""
        Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)
        for directory in (self.evidence_dir, self.report_dir, self.handoff_dir):
            Path(directory).mkdir(parents=True, exist_ok=True)


def load_environment(env_file: str = ".env") -> None:
    """Load environment variables from .env file.

    Args:
        env_file: Path to .env file (default: .env in current directory)
    """
    env_path = Path(env_file)
    if env_path.exists():
        load_dotenv(env_path)


_global_config: Optional[GlobalConfig] = None


def get_global_config(reload: bool = False) -> GlobalConfig:
    """Load (and cache) the global configuration from the environment."""
    global _global_config
    if _global_config is None or reload:
        load_environment()
        _global_config = GlobalConfig()
    return _global_config

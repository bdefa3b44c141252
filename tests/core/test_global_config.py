"""Tests for testwarden configuration (pydantic models and GlobalConfig)."""

import pytest
from pydantic import ValidationError

from testwarden.core.config import (
    ConfidenceThresholds,
    DetectionConfig,
    GlobalConfig,
    WorkflowConfig,
    get_global_config,
)


class TestModels:
    """Tests for the nested configuration models."""

    def test_detection_defaults_enable_every_module(self):
        config = DetectionConfig()
        assert all(
            [
                config.enable_missing_evidence,
                config.enable_inconsistent_evidence,
                config.enable_tool_execution,
                config.enable_timing_anomalies,
                config.enable_coverage_analysis,
            ]
        )

    def test_thresholds_must_be_ordered(self):
        with pytest.raises(ValidationError, match="cannot exceed"):
            ConfidenceThresholds(auto_pass=50, manual_review=70)

    def test_workflow_retries_capped_at_three(self):
        with pytest.raises(ValidationError):
            WorkflowConfig(max_retries=4)


class TestGlobalConfig:
    """Tests for environment-driven configuration."""

    def test_reads_environment(self, env_config, monkeypatch):
        monkeypatch.setenv("TESTWARDEN_VERIFIER_TIER", "opus")
        monkeypatch.setenv("TESTWARDEN_AUTO_PASS_THRESHOLD", "85")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        config = get_global_config(reload=True)

        assert config.database_path == str(env_config / "state.db")
        assert config.log_level == "DEBUG"
        verification = config.verification_config()
        assert verification.verifier_tier == "opus"
        assert verification.thresholds.auto_pass == 85
        assert verification.evidence_dir == str(env_config / "evidence")

    def test_invalid_log_level(self, env_config, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "chatty")
        with pytest.raises(ValidationError, match="LOG_LEVEL"):
            GlobalConfig()

    def test_invalid_max_retries(self, env_config, monkeypatch):
        monkeypatch.setenv("TESTWARDEN_MAX_FIX_RETRIES", "5")
        with pytest.raises(ValidationError):
            GlobalConfig()

    def test_workflow_config_carries_retries_and_handoff_dir(self, env_config, monkeypatch):
        monkeypatch.setenv("TESTWARDEN_MAX_FIX_RETRIES", "2")
        workflow = GlobalConfig().workflow_config()
        assert workflow.max_retries == 2
        assert workflow.handoff_dir == str(env_config / "handoffs")

    def test_ensure_directories(self, env_config):
        config = GlobalConfig()
        config.ensure_directories()
        for name in ("evidence", "reports", "handoffs"):
            assert (env_config / name).is_dir()

"""
testwarden: independent verification of reported test outcomes

Coding agents misreport test results. testwarden inspects the evidence captured
while a test ran (screenshots, logs, traces, coverage, tool-call records) and
decides whether a reported "pass" can be trusted. It never re-runs the test.
"""

__version__ = "0.1.0"

from testwarden.detection.red_flag_detector import RedFlagDetector
from testwarden.verification.verifier import IndependentVerifier
from testwarden.workflow.orchestrator import TestWorkflowOrchestrator

__all__ = ["RedFlagDetector", "IndependentVerifier", "TestWorkflowOrchestrator"]

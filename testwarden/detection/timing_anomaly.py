"""Timing anomaly detector.

Tests that finish faster than physically plausible probably did not run.
Checks, all medium unless noted:

- duration below the per-type minimum
- duration below half the historical mean (needs MIN_SAMPLES prior runs);
  medium if also more than STDDEV_MULTIPLIER standard deviations below the
  mean, low otherwise
- UI tests with no recorded network request
- UI tests with no recorded DOM mutation

Historical baselines are queried from a TimingHistoryProvider on every call,
so the detector itself holds no state.
"""

import logging
from typing import List, Optional, Protocol

from testwarden.core.models import (
    ArtifactType,
    EvidenceArtifact,
    FlagType,
    RedFlag,
    Severity,
    TestResult,
    TestType,
    TimingBaseline,
    find_artifact,
)
from testwarden.detection.base import Detector

logger = logging.getLogger(__name__)

MIN_DURATION_MS = {
    TestType.UI: 500,
    TestType.API: 100,
    TestType.UNIT: 50,
    TestType.INTEGRATION: 200,
}

MIN_SAMPLES = 3
DEVIATION_DIVISOR = 2.0
STDDEV_MULTIPLIER = 2.5


class TimingHistoryProvider(Protocol):
    """Source of historical durations (the timing history repository)."""

    async def get_baseline(self, test_name: str) -> Optional[TimingBaseline]: ...


def extract_duration(test: TestResult, evidence: List[EvidenceArtifact]) -> Optional[float]:
    """Duration from test_duration evidence, any artifact metadata, then the result."""
    duration_artifact = find_artifact(evidence, ArtifactType.TEST_DURATION)
    if duration_artifact is not None and duration_artifact.meta("durationMs") is not None:
        return float(duration_artifact.meta("durationMs"))

    for artifact in evidence:
        value = artifact.meta("durationMs", "duration")
        if isinstance(value, (int, float)):
            return float(value)

    if test.duration_ms is not None:
        return float(test.duration_ms)
    return None


def count_network_requests(artifact: EvidenceArtifact) -> int:
    count = artifact.meta("requestCount")
    if isinstance(count, int):
        return count
    requests = artifact.meta("requests")
    if isinstance(requests, list):
        return len(requests)
    # An http_request artifact is itself one request
    if artifact.artifact_type == ArtifactType.HTTP_REQUEST:
        return 1
    return 0


def count_dom_changes(artifact: EvidenceArtifact) -> int:
    changes = artifact.meta("changes", "mutations", default=0)
    if isinstance(changes, list):
        return len(changes)
    if isinstance(changes, (int, float)):
        return int(changes)
    return 0


class TimingAnomalyDetector(Detector):
    """Flags passing tests with implausible timing or activity."""

    name = "timing_anomalies"
    flag_type = FlagType.TIMING

    def __init__(
        self,
        history: Optional[TimingHistoryProvider] = None,
        evidence_dir: Optional[str] = None,
    ):
        super().__init__(evidence_dir)
        self.history = history

    async def _scan(
        self, epic_id: str, test: TestResult, evidence: List[EvidenceArtifact]
    ) -> List[RedFlag]:
        duration = extract_duration(test, evidence)
        if duration is None:
            return []

        flags: List[RedFlag] = []
        minimum = MIN_DURATION_MS[test.test_type]
        if duration < minimum:
            flags.append(
                self._flag(
                    epic_id,
                    test,
                    Severity.MEDIUM,
                    f'Test "{test.name}" completed in {duration:g}ms '
                    f"(expected min {minimum}ms) - likely not run",
                    {
                        "duration": duration,
                        "expectedMinDuration": minimum,
                        "deviation": round((minimum - duration) / minimum * 100, 2),
                    },
                )
            )

        historical = await self._check_history(epic_id, test, duration)
        if historical is not None:
            flags.append(historical)

        if test.test_type == TestType.UI:
            flags.extend(self._check_ui_activity(epic_id, test, evidence, duration))
        return flags

    async def _check_history(
        self, epic_id: str, test: TestResult, duration: float
    ) -> Optional[RedFlag]:
        if self.history is None:
            return None
        try:
            baseline = await self.history.get_baseline(test.name)
        except Exception as e:
            # Baselines are advisory; a store failure must not hide the other checks
            logger.warning(f"Could not load timing baseline for '{test.name}': {e}")
            return None

        if baseline is None or baseline.samples < MIN_SAMPLES or baseline.mean_ms <= 0:
            return None
        if duration >= baseline.mean_ms / DEVIATION_DIVISOR:
            return None

        deviation = (baseline.mean_ms - duration) / baseline.mean_ms * 100
        outlier = duration < baseline.mean_ms - STDDEV_MULTIPLIER * baseline.stddev_ms
        return self._flag(
            epic_id,
            test,
            Severity.MEDIUM if outlier else Severity.LOW,
            f'Test "{test.name}" completed {deviation:.0f}% faster than '
            f"{baseline.mean_ms:.0f}ms average",
            {
                "duration": duration,
                "historicalAvg": baseline.mean_ms,
                "historicalStddev": baseline.stddev_ms,
                "samples": baseline.samples,
                "deviation": round(deviation, 2),
            },
        )

    def _check_ui_activity(
        self,
        epic_id: str,
        test: TestResult,
        evidence: List[EvidenceArtifact],
        duration: float,
    ) -> List[RedFlag]:
        flags: List[RedFlag] = []

        network = find_artifact(evidence, ArtifactType.NETWORK_TRACE, ArtifactType.HTTP_REQUEST)
        if network is None:
            flags.append(
                self._flag(
                    epic_id,
                    test,
                    Severity.MEDIUM,
                    f'UI test "{test.name}" has zero network activity (UI tests should make requests)',
                    {"duration": duration, "networkRequests": 0},
                )
            )
        elif count_network_requests(network) == 0:
            flags.append(
                self._flag(
                    epic_id,
                    test,
                    Severity.MEDIUM,
                    f'UI test "{test.name}" has zero network requests (UI tests should load resources)',
                    {"duration": duration, "networkRequests": 0},
                    network.id,
                )
            )

        dom = find_artifact(evidence, ArtifactType.DOM_SNAPSHOT)
        if dom is None or count_dom_changes(dom) == 0:
            flags.append(
                self._flag(
                    epic_id,
                    test,
                    Severity.MEDIUM,
                    f'UI test "{test.name}" has zero DOM changes (UI tests should modify page)',
                    {"duration": duration, "domChanges": 0},
                    dom.id if dom is not None else None,
                )
            )
        return flags

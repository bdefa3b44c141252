"""Database schema management for testwarden.

Handles schema creation and indexes for the evidence, red flag, timing,
workflow and verification report tables.
"""

import sqlite3
import logging

logger = logging.getLogger(__name__)


class SchemaManager:
    """Manages database schema creation.

    This class is idempotent - every statement uses IF NOT EXISTS.
    """

    def __init__(self, conn: sqlite3.Connection):
        """Initialize schema manager with database connection.

        Args:
            conn: Active sqlite3.Connection
        """
        self.conn = conn

    def create_schema(self) -> None:
        """Create all database tables and indexes."""
        cursor = self.conn.cursor()

        # Test results and their evidence
        self._create_evidence_tables(cursor)

        # Red flags raised by the detectors
        self._create_red_flag_tables(cursor)

        # Duration baselines
        self._create_timing_tables(cursor)

        # Workflow state and verification reports
        self._create_workflow_tables(cursor)

        self._create_indexes(cursor)

        self.conn.commit()
        logger.debug("Schema created")

    def _create_evidence_tables(self, cursor: sqlite3.Cursor) -> None:
        """Create test_results and evidence_artifacts tables."""
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS test_results (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                test_id TEXT NOT NULL,
                epic_id TEXT NOT NULL,
                name TEXT NOT NULL,
                test_type TEXT NOT NULL CHECK(test_type IN ('ui', 'api', 'unit', 'integration')),
                pass_fail TEXT NOT NULL CHECK(pass_fail IN ('pass', 'fail', 'pending')),
                description TEXT,
                duration_ms INTEGER,
                executed_at TIMESTAMP NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS evidence_artifacts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                result_id INTEGER REFERENCES test_results(id) ON DELETE CASCADE,
                test_id TEXT NOT NULL,
                epic_id TEXT NOT NULL,
                artifact_type TEXT NOT NULL,
                path TEXT,
                metadata JSON,
                captured_at TIMESTAMP NOT NULL
            )
        """
        )

    def _create_red_flag_tables(self, cursor: sqlite3.Cursor) -> None:
        """Create red_flags table."""
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS red_flags (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                epic_id TEXT NOT NULL,
                test_id TEXT NOT NULL,
                evidence_id INTEGER,
                flag_type TEXT NOT NULL CHECK(flag_type IN (
                    'missing_evidence', 'inconsistent', 'tool_execution', 'timing', 'coverage'
                )),
                severity TEXT NOT NULL CHECK(severity IN ('critical', 'high', 'medium', 'low')),
                description TEXT NOT NULL,
                proof JSON NOT NULL,
                detected_at TIMESTAMP NOT NULL,
                resolved BOOLEAN NOT NULL DEFAULT FALSE,
                resolution_notes TEXT,
                resolved_at TIMESTAMP
            )
        """
        )

    def _create_timing_tables(self, cursor: sqlite3.Cursor) -> None:
        """Create test_timing_history table."""
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS test_timing_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                test_name TEXT NOT NULL,
                test_type TEXT NOT NULL,
                duration_ms INTEGER NOT NULL CHECK(duration_ms >= 0),
                network_requests INTEGER,
                dom_changes INTEGER,
                executed_at TIMESTAMP NOT NULL,
                epic_id TEXT
            )
        """
        )

    def _create_workflow_tables(self, cursor: sqlite3.Cursor) -> None:
        """Create test_workflows and verification_reports tables."""
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS test_workflows (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                test_id TEXT NOT NULL UNIQUE,
                epic_id TEXT NOT NULL,
                test_type TEXT NOT NULL,
                current_stage TEXT NOT NULL CHECK(current_stage IN (
                    'pending', 'execution', 'detection', 'verification',
                    'fixing', 'learning', 'completed', 'failed'
                )),
                status TEXT NOT NULL CHECK(status IN ('pending', 'in_progress', 'completed', 'failed')),
                execution_result JSON,
                detection_result JSON,
                verification_result JSON,
                fixing_result JSON,
                learning_result JSON,
                history JSON,
                retry_count INTEGER NOT NULL DEFAULT 0 CHECK(retry_count BETWEEN 0 AND 3),
                escalated BOOLEAN NOT NULL DEFAULT FALSE,
                current_tier TEXT,
                error_message TEXT,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                completed_at TIMESTAMP
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS verification_reports (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                test_id TEXT NOT NULL,
                epic_id TEXT NOT NULL,
                verified BOOLEAN NOT NULL,
                confidence_score INTEGER NOT NULL CHECK(confidence_score BETWEEN 0 AND 100),
                recommendation TEXT NOT NULL CHECK(recommendation IN ('accept', 'manual_review', 'reject')),
                verifier_model TEXT NOT NULL,
                report_json JSON NOT NULL,
                report_markdown TEXT,
                created_at TIMESTAMP NOT NULL
            )
        """
        )

    def _create_indexes(self, cursor: sqlite3.Cursor) -> None:
        """Create all database indexes for performance."""
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_test_results_test ON test_results(test_id, epic_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_evidence_result ON evidence_artifacts(result_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_evidence_test ON evidence_artifacts(test_id, epic_id)"
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_red_flags_epic ON red_flags(epic_id)")
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_red_flags_test ON red_flags(test_id, resolved)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_red_flags_severity ON red_flags(severity)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_timing_name ON test_timing_history(test_name, executed_at)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_workflows_epic ON test_workflows(epic_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_workflows_stage ON test_workflows(current_stage)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_verification_test ON verification_reports(test_id, epic_id)"
        )

"""
Migration State Store

This module persists job state in the configuration database, including:
- Job records and their lifecycle status
- Analysis results (superset footprint, table comparison, record analysis)
- Per-step execution log
- Validation check results

The configuration database is separate from the staging database, so the step
log survives a rollback of the migration transaction.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional
import json
import logging

from ee_ce_migration.exceptions import InvalidJobTransitionError
from ee_ce_migration.utils import json_default

logger = logging.getLogger(__name__)

JOB_PIPELINE = ('pending', 'analyzing', 'exporting', 'migrating', 'validating', 'completed')
JOB_STATUSES = JOB_PIPELINE + ('failed', 'cancelled')
TERMINAL_STATUSES = ('completed', 'failed', 'cancelled')
STEP_STATUSES = ('pending', 'running', 'completed', 'failed', 'skipped')


STATE_TABLES_DDL = """
CREATE TABLE IF NOT EXISTS migration_jobs (
    id SERIAL PRIMARY KEY,
    status VARCHAR(50) NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'analyzing', 'exporting', 'migrating',
                          'validating', 'completed', 'failed', 'cancelled')),
    started_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    completed_at TIMESTAMP WITH TIME ZONE,
    config_json JSONB,
    error_message TEXT,
    dry_run BOOLEAN DEFAULT false,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS analysis_results (
    id SERIAL PRIMARY KEY,
    job_id INTEGER REFERENCES migration_jobs(id) ON DELETE CASCADE,
    ee_modules_found JSONB,
    ee_tables_found JSONB,
    foreign_key_dependencies JSONB,
    record_counts JSONB,
    estimated_export_size_mb NUMERIC(12, 2),
    risk_level VARCHAR(50) CHECK (risk_level IN ('low', 'medium', 'high', 'critical')),
    warnings JSONB,
    tables_with_data INTEGER,
    tables_missing_in_target INTEGER,
    tables_with_identical_records INTEGER,
    tables_with_compatible_diff INTEGER,
    tables_with_incompatible_diff INTEGER,
    table_comparison_details JSONB,
    record_analysis JSONB,
    data_loss_analysis JSONB,
    comparison_completed_at TIMESTAMP WITH TIME ZONE,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS export_checkpoints (
    id SERIAL PRIMARY KEY,
    job_id INTEGER REFERENCES migration_jobs(id) ON DELETE CASCADE,
    module_name VARCHAR(100) NOT NULL,
    status VARCHAR(50) NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'in_progress', 'completed', 'failed')),
    records_exported INTEGER DEFAULT 0,
    total_records INTEGER DEFAULT 0,
    file_path TEXT,
    file_size_bytes BIGINT DEFAULT 0,
    started_at TIMESTAMP WITH TIME ZONE,
    completed_at TIMESTAMP WITH TIME ZONE,
    error_message TEXT,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT uq_export_checkpoint UNIQUE (job_id, module_name)
);

CREATE TABLE IF NOT EXISTS migration_steps_log (
    id SERIAL PRIMARY KEY,
    job_id INTEGER REFERENCES migration_jobs(id) ON DELETE CASCADE,
    step_number INTEGER NOT NULL,
    step_name VARCHAR(255) NOT NULL,
    status VARCHAR(50) NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'running', 'completed', 'failed', 'skipped')),
    sql_executed TEXT,
    rows_affected INTEGER DEFAULT 0,
    execution_time_ms INTEGER DEFAULT 0,
    error_message TEXT,
    started_at TIMESTAMP WITH TIME ZONE,
    completed_at TIMESTAMP WITH TIME ZONE,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT uq_migration_step UNIQUE (job_id, step_number)
);

CREATE TABLE IF NOT EXISTS validation_results (
    id SERIAL PRIMARY KEY,
    job_id INTEGER REFERENCES migration_jobs(id) ON DELETE CASCADE,
    check_name VARCHAR(255) NOT NULL,
    check_type VARCHAR(100) NOT NULL,
    status VARCHAR(50) NOT NULL CHECK (status IN ('pass', 'fail', 'warning')),
    details TEXT,
    records_found INTEGER DEFAULT 0,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_migration_jobs_status ON migration_jobs(status);
CREATE INDEX IF NOT EXISTS idx_export_checkpoints_job_id ON export_checkpoints(job_id);
CREATE INDEX IF NOT EXISTS idx_migration_steps_log_job_id ON migration_steps_log(job_id);
CREATE INDEX IF NOT EXISTS idx_analysis_results_job_id ON analysis_results(job_id);
CREATE INDEX IF NOT EXISTS idx_validation_results_job_id ON validation_results(job_id);
"""


def is_allowed_transition(current: str, requested: str) -> bool:
    """
    Job lifecycle rules.

    - Forward along pending -> analyzing -> exporting -> migrating ->
      validating -> completed (phases may be skipped, e.g. by a dry run)
    - Any non-terminal status -> failed or cancelled
    - failed -> pending (retry)
    - Re-entering the current status
    """
    if requested not in JOB_STATUSES:
        return False
    if current == requested:
        return True
    if current == 'failed':
        return requested == 'pending'
    if current in TERMINAL_STATUSES:
        return False
    if requested in ('failed', 'cancelled'):
        return True
    return JOB_PIPELINE.index(requested) > JOB_PIPELINE.index(current)


def _dumps(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=json_default)


class ConfigStoreClient:
    """Base for classes that write to the configuration database."""

    def __init__(self, helper):
        """
        Args:
            helper: PooledPostgresHelper for the configuration database
        """
        self.helper = helper

    @contextmanager
    def _cursor(self, action: str) -> Iterator[Any]:
        """Acquire, execute, commit; on error roll back, log and re-raise."""
        conn = None
        try:
            conn = self.helper.get_conn()
            with conn.cursor() as cursor:
                yield cursor
            conn.commit()
        except Exception as e:
            logger.error(f"Error {action}: {e}")
            if conn:
                conn.rollback()
            raise
        finally:
            self.helper.release_conn(conn)


class MigrationStateStore(ConfigStoreClient):
    """
    Persists job, analysis, step-log and validation state.

    Provides methods for:
    - Creating the state tables
    - Creating jobs and moving them through their lifecycle
    - Saving and loading analysis results
    - Logging step execution
    - Saving and loading validation results
    """

    def ensure_tables(self) -> None:
        """
        Create the state tables if they don't exist.

        Safe to call multiple times (idempotent).
        """
        with self._cursor("creating state tables") as cursor:
            cursor.execute(STATE_TABLES_DDL)
        logger.info("Ensured migration state tables exist")

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(self, dry_run: bool = False, config: Optional[Dict[str, Any]] = None) -> int:
        """
        Create a new job in 'pending' status.

        Returns:
            The new job ID
        """
        with self._cursor("creating job") as cursor:
            cursor.execute(
                """
                INSERT INTO migration_jobs (status, dry_run, config_json)
                VALUES ('pending', %s, %s::jsonb)
                RETURNING id
                """,
                (dry_run, _dumps(config or {})),
            )
            job_id = cursor.fetchone()[0]
        logger.info(f"Created migration job {job_id} (dry_run={dry_run})")
        return job_id

    def get_job(self, job_id: int) -> Optional[Dict[str, Any]]:
        with self._cursor("loading job") as cursor:
            cursor.execute(
                """
                SELECT id, status, dry_run, config_json, error_message,
                       started_at, completed_at, created_at
                FROM migration_jobs
                WHERE id = %s
                """,
                (job_id,),
            )
            row = cursor.fetchone()
        if not row:
            return None
        return {
            'id': row[0],
            'status': row[1],
            'dry_run': row[2],
            'config': row[3] or {},
            'error_message': row[4],
            'started_at': row[5],
            'completed_at': row[6],
            'created_at': row[7],
        }

    def update_job_status(
        self,
        job_id: int,
        status: str,
        error_message: Optional[str] = None,
    ) -> None:
        """
        Move a job to a new status.

        Raises:
            ValueError: If the job does not exist
            InvalidJobTransitionError: If the lifecycle does not allow the change
        """
        with self._cursor(f"updating job {job_id} to {status}") as cursor:
            cursor.execute(
                "SELECT status FROM migration_jobs WHERE id = %s FOR UPDATE",
                (job_id,),
            )
            row = cursor.fetchone()
            if not row:
                raise ValueError(f"Migration job {job_id} not found")

            current = row[0]
            if not is_allowed_transition(current, status):
                raise InvalidJobTransitionError(job_id, current, status)

            cursor.execute(
                """
                UPDATE migration_jobs SET
                    status = %s,
                    error_message = %s,
                    completed_at = CASE WHEN %s THEN CURRENT_TIMESTAMP ELSE NULL END,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = %s
                """,
                (status, error_message, status in TERMINAL_STATUSES, job_id),
            )
        logger.info(f"Job {job_id}: {current} -> {status}")

    # ------------------------------------------------------------------
    # Analysis results
    # ------------------------------------------------------------------

    def save_analysis_results(
        self,
        job_id: int,
        superset_analysis: Optional[Dict[str, Any]] = None,
        comparison: Optional[Dict[str, Any]] = None,
        record_analysis: Optional[Dict[str, Any]] = None,
        data_loss_analysis: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Save one analysis snapshot for a job. Later snapshots supersede earlier ones.

        Args:
            job_id: Job ID
            superset_analysis: SupersetAnalysis.to_dict()
            comparison: TableComparisonResult.to_dict()
            record_analysis: DetailedAnalysisResult.to_dict()
            data_loss_analysis: analyze_incompatible_fields() output

        Returns:
            The analysis record ID
        """
        superset_analysis = superset_analysis or {}
        summary = (comparison or {}).get('summary', {})

        with self._cursor(f"saving analysis results for job {job_id}") as cursor:
            cursor.execute(
                """
                INSERT INTO analysis_results (
                    job_id, ee_modules_found, ee_tables_found, foreign_key_dependencies,
                    record_counts, estimated_export_size_mb, risk_level, warnings,
                    tables_with_data, tables_missing_in_target, tables_with_identical_records,
                    tables_with_compatible_diff, tables_with_incompatible_diff,
                    table_comparison_details, record_analysis, data_loss_analysis,
                    comparison_completed_at
                ) VALUES (
                    %s, %s::jsonb, %s::jsonb, %s::jsonb, %s::jsonb, %s, %s, %s::jsonb,
                    %s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s::jsonb,
                    CASE WHEN %s THEN CURRENT_TIMESTAMP ELSE NULL END
                )
                RETURNING id
                """,
                (
                    job_id,
                    _dumps(superset_analysis.get('modules_found')),
                    _dumps(superset_analysis.get('tables_found')),
                    _dumps(superset_analysis.get('foreign_key_dependencies')),
                    _dumps(superset_analysis.get('record_counts')),
                    superset_analysis.get('estimated_export_size_mb'),
                    superset_analysis.get('risk_level'),
                    _dumps(superset_analysis.get('warnings')),
                    summary.get('total_tables'),
                    summary.get('missing_in_target'),
                    summary.get('identical_records'),
                    summary.get('compatible_diff'),
                    summary.get('incompatible_diff'),
                    _dumps(comparison),
                    _dumps(record_analysis),
                    _dumps(data_loss_analysis),
                    comparison is not None,
                ),
            )
            analysis_id = cursor.fetchone()[0]
        logger.info(f"Saved analysis results for job {job_id} (analysis_id={analysis_id})")
        return analysis_id

    def get_analysis_results(self, job_id: int) -> Optional[Dict[str, Any]]:
        """
        Get the latest analysis snapshot for a job.

        Returns:
            Dict with superset_analysis, comparison, record_analysis and
            data_loss_analysis, or None if nothing was saved
        """
        with self._cursor(f"loading analysis results for job {job_id}") as cursor:
            cursor.execute(
                """
                SELECT ee_modules_found, ee_tables_found, foreign_key_dependencies,
                       record_counts, estimated_export_size_mb, risk_level, warnings,
                       table_comparison_details, record_analysis, data_loss_analysis
                FROM analysis_results
                WHERE job_id = %s
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (job_id,),
            )
            row = cursor.fetchone()
        if not row:
            return None
        return {
            'superset_analysis': {
                'modules_found': row[0] or [],
                'tables_found': row[1] or [],
                'foreign_key_dependencies': row[2] or [],
                'record_counts': row[3] or {},
                'estimated_export_size_mb': float(row[4]) if row[4] is not None else 0.0,
                'risk_level': row[5] or 'low',
                'warnings': row[6] or [],
            },
            'comparison': row[7],
            'record_analysis': row[8],
            'data_loss_analysis': row[9],
        }

    # ------------------------------------------------------------------
    # Step log
    # ------------------------------------------------------------------

    def log_step(
        self,
        job_id: int,
        step_number: int,
        step_name: str,
        status: str,
        sql_executed: Optional[str] = None,
        rows_affected: int = 0,
        execution_time_ms: int = 0,
        error_message: Optional[str] = None,
    ) -> None:
        """
        Record a step's status. One row per (job, step); later calls update it.
        """
        if status not in STEP_STATUSES:
            raise ValueError(f"Unknown step status '{status}'")

        with self._cursor(f"logging step {step_number} for job {job_id}") as cursor:
            cursor.execute(
                """
                INSERT INTO migration_steps_log (
                    job_id, step_number, step_name, status, sql_executed,
                    rows_affected, execution_time_ms, error_message,
                    started_at, completed_at
                ) VALUES (
                    %s, %s, %s, %s, %s, %s, %s, %s,
                    CASE WHEN %s = 'running' THEN CURRENT_TIMESTAMP ELSE NULL END,
                    CASE WHEN %s IN ('completed', 'failed', 'skipped') THEN CURRENT_TIMESTAMP ELSE NULL END
                )
                ON CONFLICT (job_id, step_number)
                DO UPDATE SET
                    step_name = EXCLUDED.step_name,
                    status = EXCLUDED.status,
                    sql_executed = EXCLUDED.sql_executed,
                    rows_affected = EXCLUDED.rows_affected,
                    execution_time_ms = EXCLUDED.execution_time_ms,
                    error_message = EXCLUDED.error_message,
                    started_at = COALESCE(EXCLUDED.started_at, migration_steps_log.started_at),
                    completed_at = EXCLUDED.completed_at
                """,
                (
                    job_id, step_number, step_name, status, sql_executed,
                    rows_affected, execution_time_ms, error_message,
                    status, status,
                ),
            )
        logger.debug(f"Job {job_id} step {step_number} ({step_name}): {status}")

    def get_step_log(self, job_id: int) -> List[Dict[str, Any]]:
        with self._cursor(f"loading step log for job {job_id}") as cursor:
            cursor.execute(
                """
                SELECT step_number, step_name, status, sql_executed, rows_affected,
                       execution_time_ms, error_message, started_at, completed_at
                FROM migration_steps_log
                WHERE job_id = %s
                ORDER BY step_number
                """,
                (job_id,),
            )
            rows = cursor.fetchall()
        keys = ('step_number', 'step_name', 'status', 'sql_executed', 'rows_affected',
                'execution_time_ms', 'error_message', 'started_at', 'completed_at')
        return [dict(zip(keys, row)) for row in rows]

    # ------------------------------------------------------------------
    # Validation results
    # ------------------------------------------------------------------

    def save_validation_results(self, job_id: int, checks: Iterable[Any]) -> None:
        """
        Replace the validation results of a job. One row per (job, check).

        Args:
            checks: ValidationCheck objects
        """
        checks = list(checks)
        with self._cursor(f"saving validation results for job {job_id}") as cursor:
            cursor.execute("DELETE FROM validation_results WHERE job_id = %s", (job_id,))
            for check in checks:
                cursor.execute(
                    """
                    INSERT INTO validation_results
                        (job_id, check_name, check_type, status, details, records_found)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (job_id, check.check_name, check.check_type, check.status,
                     check.details, check.records_found),
                )
        logger.info(f"Saved {len(checks)} validation results for job {job_id}")

    def get_validation_results(self, job_id: int) -> List[Dict[str, Any]]:
        with self._cursor(f"loading validation results for job {job_id}") as cursor:
            cursor.execute(
                """
                SELECT check_name, check_type, status, details, records_found
                FROM validation_results
                WHERE job_id = %s
                ORDER BY id
                """,
                (job_id,),
            )
            rows = cursor.fetchall()
        keys = ('check_name', 'check_type', 'status', 'details', 'records_found')
        return [dict(zip(keys, row)) for row in rows]

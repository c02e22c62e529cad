"""
Transactional Migration Executor

Runs a planned list of MigrationSteps against the staging database.

- Dry run: nothing is sent to the database and no connection is taken; the
  plan comes back with zero rows affected and zero duration per step.
- Live run: one connection, one transaction, steps strictly in plan order.
  The first failing statement rolls back everything executed in the run and
  the remaining steps are not attempted.

Every step outcome is written to the step log in the configuration database
as it happens, so a rolled-back run still leaves a full record.
"""

from dataclasses import replace
from typing import List, Optional, Sequence
import logging
import time

import psycopg2

from ee_ce_migration.exceptions import TransactionalStepError
from ee_ce_migration.models import MigrationResult, MigrationStep

logger = logging.getLogger(__name__)


class MigrationExecutor:
    """
    Executes migration steps atomically, or previews them in dry-run mode.
    """

    def __init__(self, staging_helper=None, state_store=None):
        """
        Initialize the executor.

        Args:
            staging_helper: PooledPostgresHelper for the staging database
                (not needed for dry runs)
            state_store: MigrationStateStore for the step log (optional)
        """
        self.staging_helper = staging_helper
        self.state_store = state_store

    def _log(self, job_id: int, step: MigrationStep, status: str) -> None:
        if self.state_store is None:
            return
        self.state_store.log_step(
            job_id,
            step.step_number,
            step.step_name,
            status,
            sql_executed=step.sql,
            rows_affected=step.rows_affected,
            execution_time_ms=step.execution_time_ms,
            error_message=step.error_message,
        )

    def execute(self, job_id: int, steps: Sequence[MigrationStep], dry_run: bool = False) -> MigrationResult:
        """
        Execute (or preview) a plan.

        Args:
            job_id: Job ID, used for the step log
            steps: Planned steps, in order
            dry_run: Preview only

        Returns:
            MigrationResult; success is False if a step failed and was rolled back

        Raises:
            ConnectivityError: If no staging connection is available
        """
        if dry_run:
            preview = [
                replace(step, rows_affected=0, execution_time_ms=0, status='pending', error_message=None)
                for step in steps
            ]
            logger.info(f"Dry run for job {job_id}: {len(preview)} steps planned, none executed")
            return MigrationResult(success=True, steps=preview, dry_run=True)

        if self.staging_helper is None:
            raise ValueError("A staging connection is required for a live migration")

        result = MigrationResult(success=False, dry_run=False)
        conn = self.staging_helper.get_conn()
        discard = False
        try:
            conn.autocommit = False
            logger.info(f"Executing {len(steps)} migration steps for job {job_id}")

            for index, step in enumerate(steps):
                try:
                    result.steps.append(self._run_step(job_id, conn, step))
                except TransactionalStepError as e:
                    conn.rollback()
                    logger.error(f"✗ {e}; all {index} earlier steps rolled back")
                    result.steps.append(replace(step, status='failed', error_message=e.error_message))
                    for skipped in steps[index + 1:]:
                        skipped = replace(skipped, status='skipped')
                        self._log(job_id, skipped, 'skipped')
                        result.steps.append(skipped)
                    result.errors.append(str(e))
                    return result

            try:
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                discard = True
                message = f"Commit failed, all steps rolled back: {str(e).strip()}"
                logger.error(message)
                result.errors.append(message)
                return result

            result.success = True
            logger.info(f"Migration for job {job_id} committed: {len(steps)} steps")
            return result

        except Exception:
            discard = True
            conn.rollback()
            raise
        finally:
            self.staging_helper.release_conn(conn, discard=discard)

    def _run_step(self, job_id: int, conn, step: MigrationStep) -> MigrationStep:
        """
        Execute one step inside the open transaction.

        Raises:
            TransactionalStepError: If the statement fails (after logging it as failed)
        """
        self._log(job_id, replace(step, status='running'), 'running')
        started = time.monotonic()
        try:
            with conn.cursor() as cursor:
                cursor.execute(step.sql)
                rows_affected = max(cursor.rowcount or 0, 0)
        except psycopg2.Error as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            message = str(e).strip()
            failed = replace(step, status='failed', execution_time_ms=elapsed_ms, error_message=message)
            self._log(job_id, failed, 'failed')
            raise TransactionalStepError(step.step_number, step.step_name, message) from e

        elapsed_ms = int((time.monotonic() - started) * 1000)
        completed = replace(
            step, status='completed', rows_affected=rows_affected, execution_time_ms=elapsed_ms
        )
        self._log(job_id, completed, 'completed')
        logger.info(
            f"✓ Step {step.step_number}: {step.step_name} "
            f"({rows_affected:,} rows, {elapsed_ms} ms)"
        )
        return completed


def execute_migration(
    job_id: int,
    staging_helper,
    plan: Sequence[MigrationStep],
    dry_run: bool = False,
    state_store=None,
) -> MigrationResult:
    """
    Convenience function to execute a migration plan.

    Args:
        job_id: Job ID
        staging_helper: PooledPostgresHelper for staging (ignored for dry runs)
        plan: Ordered MigrationSteps
        dry_run: Preview only
        state_store: MigrationStateStore for the step log

    Returns:
        MigrationResult
    """
    executor = MigrationExecutor(staging_helper=staging_helper, state_store=state_store)
    return executor.execute(job_id, list(plan), dry_run=dry_run)


def summarize_steps(steps: List[MigrationStep]) -> dict:
    return {
        status: sum(1 for s in steps if s.status == status)
        for status in ('completed', 'failed', 'skipped', 'pending')
    }

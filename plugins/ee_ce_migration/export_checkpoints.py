"""
Export Checkpoint Management

One checkpoint row per (job, module) in the configuration database tracks
export progress:

    pending -> in_progress -> completed
                           -> failed

The checkpoint grain is the module. A rerun skips modules that are already
completed and re-exports any other module from its first row; batches inside
a module are not individually resumable.
"""

from typing import Any, Dict, List, Optional, Sequence
import logging

from ee_ce_migration.models import ExportCheckpoint
from ee_ce_migration.state_store import ConfigStoreClient

logger = logging.getLogger(__name__)

CHECKPOINT_COLUMNS = (
    'job_id', 'module_name', 'status', 'records_exported', 'total_records',
    'file_path', 'file_size_bytes', 'started_at', 'completed_at', 'error_message',
)

_SELECT_CHECKPOINTS = f"SELECT {', '.join(CHECKPOINT_COLUMNS)} FROM export_checkpoints"


def _to_checkpoint(row) -> ExportCheckpoint:
    data = dict(zip(CHECKPOINT_COLUMNS, row))
    for key in ('started_at', 'completed_at'):
        if data[key] is not None and hasattr(data[key], 'isoformat'):
            data[key] = data[key].isoformat()
    return ExportCheckpoint(**data)


class ExportCheckpointManager(ConfigStoreClient):
    """
    Tracks per-module export progress for resumable exports.

    Provides methods for:
    - Initializing checkpoints for a job's modules
    - Starting, progressing, completing and failing a module
    - Reporting overall progress
    - Resetting checkpoints to force a re-export
    """

    def initialize(self, job_id: int, module_names: Sequence[str]) -> None:
        """
        Create a pending checkpoint for every module that has none yet.

        Existing checkpoints (including completed ones) are left untouched.
        """
        with self._cursor(f"initializing export checkpoints for job {job_id}") as cursor:
            for module_name in module_names:
                cursor.execute(
                    """
                    INSERT INTO export_checkpoints (job_id, module_name, status)
                    VALUES (%s, %s, 'pending')
                    ON CONFLICT (job_id, module_name) DO NOTHING
                    """,
                    (job_id, module_name),
                )
        logger.info(f"Initialized export checkpoints for job {job_id}: {len(module_names)} modules")

    def get_checkpoints(self, job_id: int) -> List[ExportCheckpoint]:
        with self._cursor(f"loading export checkpoints for job {job_id}") as cursor:
            cursor.execute(
                _SELECT_CHECKPOINTS + " WHERE job_id = %s ORDER BY id",
                (job_id,),
            )
            rows = cursor.fetchall()
        return [_to_checkpoint(row) for row in rows]

    def get_checkpoint(self, job_id: int, module_name: str) -> Optional[ExportCheckpoint]:
        with self._cursor(f"loading export checkpoint {job_id}/{module_name}") as cursor:
            cursor.execute(
                _SELECT_CHECKPOINTS + " WHERE job_id = %s AND module_name = %s",
                (job_id, module_name),
            )
            row = cursor.fetchone()
        return _to_checkpoint(row) if row else None

    def start(self, job_id: int, module_name: str, total_records: int) -> None:
        """
        Begin a fresh export pass for a module.

        Counters, artifact details and the last error are reset.
        """
        with self._cursor(f"starting export of {module_name}") as cursor:
            cursor.execute(
                """
                INSERT INTO export_checkpoints (
                    job_id, module_name, status, records_exported, total_records, started_at
                ) VALUES (%s, %s, 'in_progress', 0, %s, CURRENT_TIMESTAMP)
                ON CONFLICT (job_id, module_name)
                DO UPDATE SET
                    status = 'in_progress',
                    records_exported = 0,
                    total_records = EXCLUDED.total_records,
                    file_path = NULL,
                    file_size_bytes = 0,
                    started_at = CURRENT_TIMESTAMP,
                    completed_at = NULL,
                    error_message = NULL
                """,
                (job_id, module_name, total_records),
            )
        logger.info(f"Started export of module {module_name} for job {job_id} ({total_records:,} records)")

    def update_progress(self, job_id: int, module_name: str, records_exported: int) -> None:
        """
        Record the cumulative number of exported records.

        Progress never moves backwards within a pass. A failed write is
        logged and ignored so it never stops the export.
        """
        conn = None
        try:
            conn = self.helper.get_conn()
            with conn.cursor() as cursor:
                cursor.execute(
                    """
                    UPDATE export_checkpoints SET
                        records_exported = GREATEST(records_exported, %s)
                    WHERE job_id = %s AND module_name = %s AND status = 'in_progress'
                    """,
                    (records_exported, job_id, module_name),
                )
            conn.commit()
            logger.debug(f"Export progress {job_id}/{module_name}: {records_exported:,} records")
        except Exception as e:
            logger.warning(f"Error saving export progress for {module_name}: {e}")
            if conn:
                conn.rollback()
        finally:
            self.helper.release_conn(conn)

    def complete(
        self,
        job_id: int,
        module_name: str,
        file_path: str,
        file_size_bytes: int,
        records_exported: int,
    ) -> None:
        with self._cursor(f"completing export of {module_name}") as cursor:
            cursor.execute(
                """
                UPDATE export_checkpoints SET
                    status = 'completed',
                    records_exported = GREATEST(records_exported, %s),
                    file_path = %s,
                    file_size_bytes = %s,
                    completed_at = CURRENT_TIMESTAMP,
                    error_message = NULL
                WHERE job_id = %s AND module_name = %s
                """,
                (records_exported, file_path, file_size_bytes, job_id, module_name),
            )
        logger.info(f"Completed export of module {module_name} for job {job_id}")

    def fail(self, job_id: int, module_name: str, error_message: str) -> None:
        """Mark a module failed. Progress counters are kept for diagnosis."""
        with self._cursor(f"failing export of {module_name}") as cursor:
            cursor.execute(
                """
                UPDATE export_checkpoints SET
                    status = 'failed',
                    error_message = %s,
                    completed_at = CURRENT_TIMESTAMP
                WHERE job_id = %s AND module_name = %s
                """,
                (error_message, job_id, module_name),
            )
        logger.error(f"Export of module {module_name} for job {job_id} failed: {error_message}")

    def get_progress(self, job_id: int) -> Dict[str, Any]:
        """
        Summarize export progress for a job.

        Returns:
            Dict with total, completed, in_progress, failed, pending and
            percentage (completed modules / total modules)
        """
        checkpoints = self.get_checkpoints(job_id)
        total = len(checkpoints)
        counts = {status: 0 for status in ('completed', 'in_progress', 'failed', 'pending')}
        for checkpoint in checkpoints:
            counts[checkpoint.status] = counts.get(checkpoint.status, 0) + 1
        return {
            'total': total,
            **counts,
            'percentage': round(counts['completed'] * 100.0 / total, 2) if total else 0.0,
        }

    def reset(self, job_id: int, module_name: Optional[str] = None) -> int:
        """
        Return checkpoints to pending so the next run re-exports them.

        Args:
            job_id: Job ID
            module_name: Only reset this module (default: all modules of the job)

        Returns:
            Number of checkpoints reset
        """
        query = """
            UPDATE export_checkpoints SET
                status = 'pending',
                records_exported = 0,
                file_path = NULL,
                file_size_bytes = 0,
                started_at = NULL,
                completed_at = NULL,
                error_message = NULL
            WHERE job_id = %s
        """
        params: List[Any] = [job_id]
        if module_name is not None:
            query += " AND module_name = %s"
            params.append(module_name)

        with self._cursor(f"resetting export checkpoints for job {job_id}") as cursor:
            cursor.execute(query, params)
            count = cursor.rowcount
        logger.info(f"Reset {count} export checkpoints for job {job_id}")
        return count

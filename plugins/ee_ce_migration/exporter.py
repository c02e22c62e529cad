"""
Resumable Export Module

This module exports superset-only data to files, one artifact per module:

1. Checkpoints are initialized for every module of the job
2. Modules already completed are skipped without touching the source
3. Every other module is exported from scratch: each table is paged in
   fixed-size batches ordered by its explicit sort key, and progress is
   written to the checkpoint after every batch
4. The module document is serialized once; if it is larger than the
   compression threshold it is written gzipped
5. The checkpoint records the final path and size, or the error on failure

Artifacts: <export_dir>/job_<job_id>/<module>_<UTC timestamp>.json[.gz]
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
import gzip
import json
import logging
import os

from ee_ce_migration.catalog import ExportTable
from ee_ce_migration.config import (
    get_compression_threshold,
    get_export_batch_size,
    get_export_dir,
)
from ee_ce_migration.exceptions import ExportIOError
from ee_ce_migration.utils import format_bytes, json_default

logger = logging.getLogger(__name__)

GZIP_MAGIC = b'\x1f\x8b'


def job_export_dir(base_dir: str, job_id: int) -> str:
    return os.path.join(base_dir, f"job_{job_id}")


def serialize_export(document: Dict[str, Any]) -> bytes:
    """Serialize an export document to UTF-8 JSON."""
    return json.dumps(document, default=json_default, indent=2, ensure_ascii=False).encode('utf-8')


def write_export_artifact(
    document: Dict[str, Any],
    directory: str,
    module_name: str,
    compression_threshold: int,
    timestamp: Optional[datetime] = None,
) -> Tuple[str, int]:
    """
    Write a module document to disk, gzipped when it exceeds the threshold.

    The file is written under a temporary name and renamed into place, so a
    crash never leaves a truncated artifact behind under the final name.

    Returns:
        (path, size in bytes of the file written)

    Raises:
        ExportIOError: If the directory or file cannot be written
    """
    timestamp = timestamp or datetime.now(timezone.utc)
    payload = serialize_export(document)
    compress = len(payload) > compression_threshold

    file_name = f"{module_name}_{timestamp.strftime('%Y-%m-%dT%H-%M-%S-%fZ')}.json"
    if compress:
        file_name += '.gz'
    path = os.path.join(directory, file_name)
    tmp_path = path + '.tmp'

    try:
        os.makedirs(directory, exist_ok=True)
        if compress:
            with gzip.open(tmp_path, 'wb') as f:
                f.write(payload)
        else:
            with open(tmp_path, 'wb') as f:
                f.write(payload)
        os.replace(tmp_path, path)
        size = os.path.getsize(path)
    except OSError as e:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError as cleanup_error:
                logger.warning(f"Could not remove partial export {tmp_path}: {cleanup_error}")
        raise ExportIOError(module_name, path, str(e)) from e

    logger.info(
        f"Wrote {path} ({format_bytes(size)}"
        f"{', compressed from ' + format_bytes(len(payload)) if compress else ''})"
    )
    return path, size


def read_export_artifact(path: str) -> Dict[str, Any]:
    """
    Load an export artifact, detecting gzip by its magic bytes.
    """
    with open(path, 'rb') as f:
        data = f.read()
    if data[:2] == GZIP_MAGIC:
        data = gzip.decompress(data)
    return json.loads(data.decode('utf-8'))


class ModuleExporter:
    """
    Exports module data from the source database with per-module checkpoints.

    The source is only read. Every source query goes through the inspector,
    so table names and sort keys are checked against the enumerated schema.
    """

    def __init__(
        self,
        source,
        checkpoints,
        export_dir: Optional[str] = None,
        batch_size: Optional[int] = None,
        compression_threshold: Optional[int] = None,
    ):
        """
        Initialize the exporter.

        Args:
            source: SchemaInspector for the source database
            checkpoints: ExportCheckpointManager for the configuration database
            export_dir: Base directory for artifacts (default: EXPORT_DIR)
            batch_size: Rows per page (default: EXPORT_BATCH_SIZE)
            compression_threshold: Bytes above which artifacts are gzipped
        """
        self.source = source
        self.checkpoints = checkpoints
        self.export_dir = export_dir or get_export_dir()
        self.batch_size = batch_size or get_export_batch_size()
        self.compression_threshold = (
            get_compression_threshold() if compression_threshold is None else compression_threshold
        )

    def export_modules(self, job_id: int, module_map: Dict[str, Sequence[ExportTable]]) -> Dict[str, Any]:
        """
        Export every module that is not yet completed.

        Args:
            job_id: Job ID
            module_map: Module name -> ordered tables

        Returns:
            Dict with exported, skipped and the export progress summary

        Raises:
            Exception: The first module failure, after its checkpoint is marked failed
        """
        self.checkpoints.initialize(job_id, list(module_map))
        status_by_module = {
            checkpoint.module_name: checkpoint.status
            for checkpoint in self.checkpoints.get_checkpoints(job_id)
        }

        exported: List[str] = []
        skipped: List[str] = []
        for module_name, tables in module_map.items():
            if status_by_module.get(module_name) == 'completed':
                logger.info(f"Module {module_name} already exported, skipping")
                skipped.append(module_name)
                continue
            self.export_module(job_id, module_name, tables)
            exported.append(module_name)

        progress = self.checkpoints.get_progress(job_id)
        logger.info(
            f"Export for job {job_id} done: {len(exported)} exported, "
            f"{len(skipped)} already complete ({progress['percentage']}%)"
        )
        return {'exported': exported, 'skipped': skipped, 'progress': progress}

    def export_module(self, job_id: int, module_name: str, tables: Sequence[ExportTable]) -> Dict[str, Any]:
        """
        Export one module from scratch.

        Returns:
            Dict with file_path, file_size_bytes and total_records
        """
        try:
            existing = [t for t in tables if self.source.table_exists(t.table_name)]
            total = sum(self.source.get_row_count(t.table_name) for t in existing)
            self.checkpoints.start(job_id, module_name, total)

            exported = 0
            data: Dict[str, List[Dict[str, Any]]] = {}
            for table in tables:
                if table not in existing:
                    logger.info(f"Table {table.table_name} does not exist, skipping")
                    data[table.table_name] = []
                    continue
                data[table.table_name], exported = self._export_table(
                    job_id, module_name, table, exported
                )

            exported_at = datetime.now(timezone.utc)
            document = {
                'module': module_name,
                'exported_at': exported_at.isoformat(),
                'total_records': exported,
                'tables': data,
            }
            path, size = write_export_artifact(
                document,
                job_export_dir(self.export_dir, job_id),
                module_name,
                self.compression_threshold,
                timestamp=exported_at,
            )
            self.checkpoints.complete(job_id, module_name, path, size, exported)
            logger.info(f"✓ Module {module_name}: {exported:,} records -> {path}")
            return {'file_path': path, 'file_size_bytes': size, 'total_records': exported}

        except Exception as e:
            logger.error(f"✗ Module {module_name}: export failed: {e}")
            try:
                self.checkpoints.fail(job_id, module_name, str(e))
            except Exception as mark_error:
                logger.error(f"Could not mark module {module_name} as failed: {mark_error}")
            raise

    def _export_table(
        self,
        job_id: int,
        module_name: str,
        table: ExportTable,
        exported: int,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Page through one table; returns (rows, cumulative exported count)."""
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            columns, batch = self.source.fetch_batch(
                table.table_name, table.order_by, self.batch_size, offset
            )
            rows.extend(dict(zip(columns, row)) for row in batch)
            exported += len(batch)
            offset += len(batch)
            if batch:
                self.checkpoints.update_progress(job_id, module_name, exported)
            if len(batch) < self.batch_size:
                break

        logger.info(f"{module_name}.{table.table_name}: {len(rows):,} records")
        return rows, exported


def export_modules(
    job_id: int,
    source,
    checkpoints,
    module_map: Dict[str, Sequence[ExportTable]],
    output_dir: Optional[str] = None,
    batch_size: Optional[int] = None,
    compression_threshold: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Convenience function for a resumable export run.

    Args:
        job_id: Job ID
        source: SchemaInspector for the source database
        checkpoints: ExportCheckpointManager
        module_map: Module name -> ordered tables
        output_dir: Base directory for artifacts

    Returns:
        Export run summary
    """
    exporter = ModuleExporter(
        source,
        checkpoints,
        export_dir=output_dir,
        batch_size=batch_size,
        compression_threshold=compression_threshold,
    )
    return exporter.export_modules(job_id, module_map)

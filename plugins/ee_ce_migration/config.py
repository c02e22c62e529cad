"""
Runtime Configuration

Tuning knobs for the migration engine, read from environment variables.
Connection credentials are never read here: every database is an Airflow
connection resolved by conn_id.

Environment variables:
- MIGRATION_POOL_MIN_CONN / MIGRATION_POOL_MAX_CONN: pool sizing per conn_id
- MIGRATION_ACQUIRE_TIMEOUT: seconds to wait for a pooled connection
- MIGRATION_CONNECT_TIMEOUT: seconds for a new connection handshake
- MIGRATION_STATEMENT_TIMEOUT_MS: server-side statement timeout (0 = none)
- MIGRATION_SCHEMA: schema holding application tables (default: public)
- COMPARISON_BATCH_SIZE: rows per page when comparing table contents
- EXPORT_BATCH_SIZE: rows per page when exporting
- EXPORT_COMPRESSION_THRESHOLD_BYTES: artifacts larger than this are gzipped
- EXPORT_DIR: base directory for export artifacts
"""

from typing import Any, Dict
import os

DEFAULT_SCHEMA = 'public'
DEFAULT_EXPORT_DIR = './exports'
DEFAULT_EXPORT_BATCH_SIZE = 1000
DEFAULT_COMPARISON_BATCH_SIZE = 5000
DEFAULT_COMPRESSION_THRESHOLD_BYTES = 1024 * 1024

# Sample sizes shown to operators
RECORD_SAMPLE_LIMIT = 5
DISTINCT_VALUE_SAMPLE_LIMIT = 5
DATA_LOSS_SAMPLE_LIMIT = 10
MISSING_TABLE_SAMPLE_LIMIT = 20


def _get_int_env(name: str, default: int, minimum: int = 0) -> int:
    """Read an integer environment variable, falling back to default on bad input."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _get_float_env(name: str, default: float, minimum: float = 0.0) -> float:
    """Read a float environment variable, falling back to default on bad input."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(minimum, value)


def get_pool_config() -> Dict[str, Any]:
    """
    Get connection pool configuration from environment variables.

    Returns:
        Dict with min_conn, max_conn, acquire_timeout, connect_timeout
        and statement_timeout_ms
    """
    max_conn = _get_int_env('MIGRATION_POOL_MAX_CONN', 5, minimum=1)
    min_conn = min(_get_int_env('MIGRATION_POOL_MIN_CONN', 1), max_conn)
    return {
        'min_conn': min_conn,
        'max_conn': max_conn,
        'acquire_timeout': _get_float_env('MIGRATION_ACQUIRE_TIMEOUT', 10.0, minimum=0.1),
        'connect_timeout': _get_int_env('MIGRATION_CONNECT_TIMEOUT', 10, minimum=1),
        'statement_timeout_ms': _get_int_env('MIGRATION_STATEMENT_TIMEOUT_MS', 0),
    }


def get_schema_name() -> str:
    """Schema that holds application tables in every database."""
    return os.environ.get('MIGRATION_SCHEMA', DEFAULT_SCHEMA) or DEFAULT_SCHEMA


def get_export_batch_size() -> int:
    return _get_int_env('EXPORT_BATCH_SIZE', DEFAULT_EXPORT_BATCH_SIZE, minimum=1)


def get_comparison_batch_size() -> int:
    return _get_int_env('COMPARISON_BATCH_SIZE', DEFAULT_COMPARISON_BATCH_SIZE, minimum=1)


def get_compression_threshold() -> int:
    """Serialized size in bytes above which export artifacts are gzipped."""
    return _get_int_env(
        'EXPORT_COMPRESSION_THRESHOLD_BYTES', DEFAULT_COMPRESSION_THRESHOLD_BYTES
    )


def get_export_dir() -> str:
    return os.environ.get('EXPORT_DIR', DEFAULT_EXPORT_DIR) or DEFAULT_EXPORT_DIR

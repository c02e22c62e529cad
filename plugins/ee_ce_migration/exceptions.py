"""
Migration Error Types

Errors raised by the migration engine. Per-table and per-check failures are
normally recovered locally and recorded on the result objects; the types here
are for failures that must reach the job status.
"""

from typing import Optional


class MigrationError(Exception):
    """Base class for all migration engine errors."""


class ConnectivityError(MigrationError):
    """A database could not be reached or no connection was available in time."""

    def __init__(self, message: str, conn_id: Optional[str] = None):
        super().__init__(message)
        self.conn_id = conn_id


class SchemaProbeError(MigrationError):
    """Metadata or data probing failed for a single table."""

    def __init__(self, table_name: str, message: str):
        super().__init__(f"{table_name}: {message}")
        self.table_name = table_name


class TransactionalStepError(MigrationError):
    """A planned statement failed; the surrounding transaction was rolled back."""

    def __init__(self, step_number: int, step_name: str, message: str):
        super().__init__(f"Step {step_number} ({step_name}) failed: {message}")
        self.step_number = step_number
        self.step_name = step_name
        self.error_message = message


class ExportIOError(MigrationError):
    """An export artifact could not be written."""

    def __init__(self, module_name: str, path: str, message: str):
        super().__init__(f"Failed to write export for module {module_name} to {path}: {message}")
        self.module_name = module_name
        self.path = path


class InvalidIdentifierError(ValueError):
    """An identifier failed charset validation or is not in the enumerated schema."""


class InvalidJobTransitionError(MigrationError):
    """A job status change is not allowed by the job lifecycle."""

    def __init__(self, job_id: int, current: str, requested: str):
        super().__init__(
            f"Job {job_id} cannot move from '{current}' to '{requested}'"
        )
        self.job_id = job_id
        self.current = current
        self.requested = requested

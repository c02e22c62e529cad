"""
Odoo Enterprise to Community Migration Utilities

This package provides the engine behind the EE to CE migration DAG: it
compares an Enterprise database against a Community one, measures what
would be lost, exports Enterprise-only data, removes the Enterprise
footprint from a staging copy in one transaction and validates the result.

Modules:
- connection_pool: Caller-owned registry of bounded PostgreSQL pools
- pg_helper: Hook-style query helper over a pool
- schema_inspector: Existence, count and projection queries
- catalog: Injectable catalog of Enterprise-only modules, tables and heuristics
- table_comparator: Per-table classification of source against target
- record_analyzer: Record-level exposure of tables with differences
- data_loss_analyzer: Column-level data-loss detail
- superset_analyzer: Enterprise footprint and risk of one database
- exporter / export_checkpoints: Resumable per-module export
- step_planner / executor: Migration plan and transactional execution
- validation: Post-migration checks and report
- state_store: Jobs, analysis snapshots, step log and validation results
- orchestrator: The operations above expressed over connection IDs

Configuration:
- EXPORT_DIR, EXPORT_BATCH_SIZE, EXPORT_COMPRESSION_THRESHOLD_BYTES
- COMPARISON_BATCH_SIZE, MIGRATION_SCHEMA
- MIGRATION_POOL_MAX_CONN, MIGRATION_ACQUIRE_TIMEOUT, MIGRATION_STATEMENT_TIMEOUT_MS
"""

__version__ = "1.0.0"

# Engine modules
from ee_ce_migration import table_comparator
from ee_ce_migration import record_analyzer
from ee_ce_migration import data_loss_analyzer
from ee_ce_migration import superset_analyzer
from ee_ce_migration import exporter
from ee_ce_migration import step_planner
from ee_ce_migration import executor
from ee_ce_migration import validation

# State and orchestration
from ee_ce_migration import state_store
from ee_ce_migration import export_checkpoints
from ee_ce_migration import orchestrator

__all__ = [
    "table_comparator",
    "record_analyzer",
    "data_loss_analyzer",
    "superset_analyzer",
    "exporter",
    "step_planner",
    "executor",
    "validation",
    "state_store",
    "export_checkpoints",
    "orchestrator",
]

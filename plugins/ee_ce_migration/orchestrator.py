"""
Migration Operations

The operations collaborators call, expressed over logical connection IDs:

    compare_schemas(registry, source_conn_id, target_conn_id)
    analyze_record_compatibility(registry, source_conn_id, target_conn_id, compatible, incompatible)
    export_modules(registry, job_id, source_conn_id, config_conn_id, module_map, output_dir)
    plan_migration_steps(analysis)
    execute_migration(registry, job_id, staging_conn_id, plan, dry_run, config_conn_id)
    validate_migration(registry, job_id, staging_conn_id, config_conn_id)

The registry is passed in and owned by the caller. Source and target
connections are always opened read-only; only the staging connection is
ever written to.
"""

from typing import Any, Dict, List, Optional, Sequence, Union
import logging

from ee_ce_migration import data_loss_analyzer
from ee_ce_migration import executor
from ee_ce_migration import exporter
from ee_ce_migration import record_analyzer
from ee_ce_migration import step_planner
from ee_ce_migration import superset_analyzer
from ee_ce_migration import table_comparator
from ee_ce_migration import validation
from ee_ce_migration.catalog import ExportTable, SupersetCatalog
from ee_ce_migration.connection_pool import PoolRegistry
from ee_ce_migration.export_checkpoints import ExportCheckpointManager
from ee_ce_migration.models import (
    DetailedAnalysisResult,
    MigrationResult,
    MigrationStep,
    SupersetAnalysis,
    TableClassification,
    TableComparisonResult,
    ValidationResult,
)
from ee_ce_migration.schema_inspector import SchemaInspector
from ee_ce_migration.state_store import MigrationStateStore

logger = logging.getLogger(__name__)

generate_migration_report = validation.generate_migration_report


def get_inspector(registry: PoolRegistry, conn_id: str, read_only: bool = True,
                  schema: Optional[str] = None) -> SchemaInspector:
    return SchemaInspector(registry.helper(conn_id, read_only=read_only), schema=schema)


def get_state_store(registry: PoolRegistry, config_conn_id: str) -> MigrationStateStore:
    return MigrationStateStore(registry.helper(config_conn_id))


def _classifications(tables: Sequence[Union[TableClassification, Dict[str, Any]]]) -> List[TableClassification]:
    return [t if isinstance(t, TableClassification) else TableClassification.from_dict(t) for t in tables]


def compare_schemas(
    registry: PoolRegistry,
    source_conn_id: str,
    target_conn_id: str,
    schema: Optional[str] = None,
    batch_size: Optional[int] = None,
) -> TableComparisonResult:
    """
    Classify every populated source table against the target.

    Args:
        registry: PoolRegistry owned by the caller
        source_conn_id: Connection ID of the superset database
        target_conn_id: Connection ID of the subset database
        schema: Schema compared on both sides
        batch_size: Rows per page for the field-level check

    Returns:
        TableComparisonResult
    """
    source = get_inspector(registry, source_conn_id, schema=schema)
    target = get_inspector(registry, target_conn_id, schema=schema)
    return table_comparator.compare_schemas(source, target, batch_size=batch_size)


def analyze_record_compatibility(
    registry: PoolRegistry,
    source_conn_id: str,
    target_conn_id: str,
    compatible_tables: Sequence[Union[TableClassification, Dict[str, Any]]],
    incompatible_tables: Sequence[Union[TableClassification, Dict[str, Any]]],
    schema: Optional[str] = None,
    sample_limit: Optional[int] = None,
) -> DetailedAnalysisResult:
    """
    Refine compatible_diff and incompatible_diff tables into record-level exposure.

    Classifications may be given as objects or in their dict form (as they
    come back from XCom).
    """
    source = get_inspector(registry, source_conn_id, schema=schema)
    target = get_inspector(registry, target_conn_id, schema=schema)
    return record_analyzer.analyze_record_compatibility(
        source,
        target,
        _classifications(compatible_tables),
        _classifications(incompatible_tables),
        sample_limit=sample_limit,
    )


def analyze_data_loss(
    registry: PoolRegistry,
    source_conn_id: str,
    incompatible_tables: Sequence[Union[TableClassification, Dict[str, Any]]],
    catalog: Optional[SupersetCatalog] = None,
    schema: Optional[str] = None,
) -> Dict[str, Any]:
    """Column-level data-loss report for incompatible_diff tables."""
    source = get_inspector(registry, source_conn_id, schema=schema)
    return data_loss_analyzer.analyze_incompatible_fields(
        source, _classifications(incompatible_tables), catalog=catalog
    )


def analyze_superset_footprint(
    registry: PoolRegistry,
    conn_id: str,
    catalog: Optional[SupersetCatalog] = None,
    schema: Optional[str] = None,
) -> SupersetAnalysis:
    """Superset modules, tables and foreign keys present in one database."""
    inspector = get_inspector(registry, conn_id, schema=schema)
    return superset_analyzer.analyze_superset_footprint(inspector, catalog=catalog)


def export_modules(
    registry: PoolRegistry,
    job_id: int,
    source_conn_id: str,
    config_conn_id: str,
    module_map: Optional[Dict[str, Sequence[ExportTable]]] = None,
    output_dir: Optional[str] = None,
    catalog: Optional[SupersetCatalog] = None,
    schema: Optional[str] = None,
    batch_size: Optional[int] = None,
    compression_threshold: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Export superset-only data, one artifact per module, resuming from checkpoints.

    Args:
        module_map: Module name -> ordered tables (default: the catalog's export modules)

    Returns:
        Dict with exported, skipped and progress
    """
    if module_map is None:
        module_map = (catalog or SupersetCatalog()).export_modules
    source = get_inspector(registry, source_conn_id, schema=schema)
    checkpoints = ExportCheckpointManager(registry.helper(config_conn_id))
    return exporter.export_modules(
        job_id,
        source,
        checkpoints,
        module_map,
        output_dir=output_dir,
        batch_size=batch_size,
        compression_threshold=compression_threshold,
    )


def plan_migration_steps(
    analysis: Union[SupersetAnalysis, Dict[str, Any]],
    catalog: Optional[SupersetCatalog] = None,
    schema: Optional[str] = None,
) -> List[MigrationStep]:
    """Build the ordered statement list from a staging footprint analysis."""
    return step_planner.plan_migration_steps(analysis, catalog=catalog, schema=schema)


def execute_migration(
    registry: PoolRegistry,
    job_id: int,
    staging_conn_id: str,
    plan: Sequence[Union[MigrationStep, Dict[str, Any]]],
    dry_run: bool = False,
    config_conn_id: Optional[str] = None,
) -> MigrationResult:
    """
    Run a plan against staging in one transaction, or preview it.

    A dry run takes no staging connection and writes no step log.
    """
    steps = [s if isinstance(s, MigrationStep) else MigrationStep.from_dict(s) for s in plan]
    if dry_run:
        result = executor.execute_migration(job_id, None, steps, dry_run=True)
    else:
        state_store = get_state_store(registry, config_conn_id) if config_conn_id else None
        result = executor.execute_migration(
            job_id,
            registry.helper(staging_conn_id),
            steps,
            dry_run=False,
            state_store=state_store,
        )

    counts = executor.summarize_steps(result.steps)
    logger.info(
        f"Job {job_id} steps: {counts['completed']} completed, {counts['failed']} failed, "
        f"{counts['skipped']} skipped, {counts['pending']} pending"
    )
    return result


def validate_migration(
    registry: PoolRegistry,
    job_id: int,
    staging_conn_id: str,
    config_conn_id: Optional[str] = None,
    catalog: Optional[SupersetCatalog] = None,
    schema: Optional[str] = None,
) -> ValidationResult:
    """Run the post-migration checks against staging and save them when a config store is given."""
    staging = get_inspector(registry, staging_conn_id, read_only=False, schema=schema)
    state_store = get_state_store(registry, config_conn_id) if config_conn_id else None
    return validation.validate_migration(job_id, staging, catalog=catalog, state_store=state_store)

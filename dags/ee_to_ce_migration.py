"""
Odoo Enterprise to Community Migration DAG

This DAG removes the Enterprise Edition from a staging copy of an Odoo
database. It handles:
1. Job creation (or resumption of an existing job) in the configuration database
2. Table-by-table comparison of the Enterprise source against a Community target
3. Record-level and column-level data-loss analysis
4. Enterprise footprint analysis of the staging database
5. Resumable export of Enterprise-only data, one artifact per module
6. Planning and transactional execution of the removal steps on staging
7. Post-migration validation and a final report

With dry_run enabled the plan is only previewed: nothing is executed against
staging and validation is skipped.
"""

from contextlib import contextmanager
from airflow.sdk import dag, task
from airflow.models.param import Param
from pendulum import datetime
from datetime import timedelta
from typing import Any, Dict, Optional
import logging

from ee_ce_migration import orchestrator
from ee_ce_migration.catalog import load_catalog
from ee_ce_migration.connection_pool import PoolRegistry
from ee_ce_migration.exceptions import MigrationError
from ee_ce_migration.models import (
    COMPATIBLE_DIFF,
    INCOMPATIBLE_DIFF,
    MISSING_IN_TARGET,
    MigrationResult,
    TableComparisonResult,
    ValidationResult,
)
from ee_ce_migration.data_loss_analyzer import sample_missing_tables
from ee_ce_migration.utils import to_jsonable

logger = logging.getLogger(__name__)


@contextmanager
def job_phase(registry: PoolRegistry, params: Dict[str, Any], job_id: int, status: Optional[str]):
    """
    Move the job into a phase and mark it failed if the phase raises.

    A job left failed by an earlier attempt is returned to pending first so
    that task retries can resume it.
    """
    store = orchestrator.get_state_store(registry, params["config_conn_id"])
    if status:
        job = store.get_job(job_id)
        if job and job["status"] == "failed":
            store.update_job_status(job_id, "pending")
        store.update_job_status(job_id, status)
    try:
        yield store
    except Exception as e:
        logger.error(f"✗ Job {job_id} failed in phase {status}: {e}")
        try:
            store.update_job_status(job_id, "failed", error_message=str(e))
        except Exception as mark_error:
            logger.error(f"Could not mark job {job_id} as failed: {mark_error}")
        raise


@dag(
    start_date=datetime(2025, 1, 1),
    schedule=None,  # Run manually or trigger via API
    catchup=False,
    max_active_runs=1,
    is_paused_upon_creation=False,
    doc_md=__doc__,
    default_args={
        "owner": "data-team",
        "retries": 1,
        "retry_delay": timedelta(seconds=30),
    },
    params={
        "source_conn_id": Param(
            default="odoo_source",
            type="string",
            description="Enterprise source database connection ID (read only)"
        ),
        "target_conn_id": Param(
            default="odoo_target",
            type="string",
            description="Community reference database connection ID (read only)"
        ),
        "staging_conn_id": Param(
            default="odoo_staging",
            type="string",
            description="Staging copy of the source that the migration modifies"
        ),
        "config_conn_id": Param(
            default="migration_config",
            type="string",
            description="Configuration database holding jobs, checkpoints and logs"
        ),
        "export_dir": Param(
            default="",
            type="string",
            description="Base directory for export artifacts (empty = EXPORT_DIR)"
        ),
        "catalog_path": Param(
            default="",
            type="string",
            description="JSON file replacing the built-in Enterprise catalog (empty = built-in)"
        ),
        "dry_run": Param(
            default=True,
            type="boolean",
            description="Preview the migration plan without executing it"
        ),
        "job_id": Param(
            default=None,
            type=["null", "integer"],
            description="Resume an existing job instead of creating a new one"
        ),
    },
    tags=["migration", "odoo", "postgres", "enterprise", "community"],
)
def ee_to_ce_migration():
    """
    Main DAG for the Enterprise to Community migration.
    """

    @task
    def initialize_job(**context) -> int:
        """
        Ensure the state tables exist and create or resume the job.

        Returns:
            Job ID
        """
        params = context["params"]
        with PoolRegistry() as registry:
            store = orchestrator.get_state_store(registry, params["config_conn_id"])
            store.ensure_tables()

            job_id = params.get("job_id")
            if job_id:
                job = store.get_job(job_id)
                if job is None:
                    raise MigrationError(f"Migration job {job_id} not found")
                if job["status"] == "failed":
                    store.update_job_status(job_id, "pending")
                logger.info(f"Resuming migration job {job_id} (status {job['status']})")
            else:
                job_id = store.create_job(
                    dry_run=params["dry_run"],
                    config={k: v for k, v in params.items() if k != "job_id"},
                )
        return job_id

    @task
    def compare_schemas(job_id: int, **context) -> Dict[str, Any]:
        """
        Classify every populated source table against the Community target.

        Returns:
            TableComparisonResult as a dict
        """
        params = context["params"]
        with PoolRegistry() as registry, job_phase(registry, params, job_id, "analyzing"):
            comparison = orchestrator.compare_schemas(
                registry, params["source_conn_id"], params["target_conn_id"]
            )
            summary = comparison.summary
            logger.info(
                f"Compared {summary['total_tables']} tables: "
                f"{summary[MISSING_IN_TARGET]} missing, {summary[INCOMPATIBLE_DIFF]} incompatible, "
                f"{summary[COMPATIBLE_DIFF]} compatible with differences, {summary['errors']} errors"
            )
            return to_jsonable(comparison.to_dict())

    @task
    def analyze_records(job_id: int, comparison: Dict[str, Any], **context) -> Dict[str, Any]:
        """
        Record-level and column-level exposure of the tables with differences.

        Returns:
            Dict with record_analysis, data_loss_analysis and missing_tables
        """
        params = context["params"]
        catalog = load_catalog(params.get("catalog_path"))
        result = TableComparisonResult.from_dict(comparison)
        compatible = result.tables_in(COMPATIBLE_DIFF)
        incompatible = result.tables_in(INCOMPATIBLE_DIFF)

        with PoolRegistry() as registry, job_phase(registry, params, job_id, "analyzing"):
            records = orchestrator.analyze_record_compatibility(
                registry, params["source_conn_id"], params["target_conn_id"],
                compatible, incompatible,
            )
            data_loss = orchestrator.analyze_data_loss(
                registry, params["source_conn_id"], incompatible, catalog=catalog
            )
            source = orchestrator.get_inspector(registry, params["source_conn_id"])
            missing = sample_missing_tables(source, result.tables_in(MISSING_IN_TARGET), catalog=catalog)

        summary = records.summary
        logger.info(
            f"Record analysis: {summary['ee_only_records']:,} of {summary['total_records']:,} "
            f"records at risk across {summary['tables_analyzed']} tables"
        )
        return to_jsonable({
            "record_analysis": records.to_dict(),
            "data_loss_analysis": data_loss,
            "missing_tables": missing,
        })

    @task
    def analyze_superset_footprint(
        job_id: int,
        comparison: Dict[str, Any],
        record_results: Dict[str, Any],
        **context
    ) -> Dict[str, Any]:
        """
        Find the Enterprise modules, tables and foreign keys in staging and
        save the full analysis snapshot for the job.

        Returns:
            SupersetAnalysis as a dict
        """
        params = context["params"]
        catalog = load_catalog(params.get("catalog_path"))
        with PoolRegistry() as registry, job_phase(registry, params, job_id, "analyzing") as store:
            analysis = orchestrator.analyze_superset_footprint(
                registry, params["staging_conn_id"], catalog=catalog
            )
            analysis_dict = to_jsonable(analysis.to_dict())
            store.save_analysis_results(
                job_id,
                superset_analysis=analysis_dict,
                comparison=comparison,
                record_analysis=record_results["record_analysis"],
                data_loss_analysis=record_results["data_loss_analysis"],
            )
        for warning in analysis.warnings:
            logger.warning(warning)
        logger.info(
            f"Enterprise footprint: {len(analysis.modules_found)} modules, "
            f"{len(analysis.tables_found)} tables, risk {analysis.risk_level}"
        )
        return analysis_dict

    @task
    def export_superset_data(job_id: int, analysis: Dict[str, Any], **context) -> Dict[str, Any]:
        """
        Export Enterprise-only data from the source, skipping modules already
        exported by an earlier attempt of this job.

        Returns:
            Export run summary
        """
        params = context["params"]
        catalog = load_catalog(params.get("catalog_path"))
        with PoolRegistry() as registry, job_phase(registry, params, job_id, "exporting"):
            return orchestrator.export_modules(
                registry,
                job_id,
                params["source_conn_id"],
                params["config_conn_id"],
                output_dir=params.get("export_dir") or None,
                catalog=catalog,
            )

    @task
    def execute_migration(
        job_id: int,
        analysis: Dict[str, Any],
        export_summary: Dict[str, Any],
        **context
    ) -> Dict[str, Any]:
        """
        Plan the removal steps and run them on staging in one transaction
        (or preview them in dry-run mode).

        Returns:
            MigrationResult as a dict

        Raises:
            MigrationError: If a step failed and the transaction was rolled back
        """
        params = context["params"]
        catalog = load_catalog(params.get("catalog_path"))
        dry_run = params["dry_run"]
        logger.info(
            f"Export complete: {len(export_summary['exported'])} exported, "
            f"{len(export_summary['skipped'])} already done"
        )

        with PoolRegistry() as registry, job_phase(registry, params, job_id, "migrating"):
            plan = orchestrator.plan_migration_steps(analysis, catalog=catalog)
            result = orchestrator.execute_migration(
                registry,
                job_id,
                params["staging_conn_id"],
                plan,
                dry_run=dry_run,
                config_conn_id=params["config_conn_id"],
            )
            if not result.success:
                raise MigrationError("; ".join(result.errors) or "Migration failed")

        if dry_run:
            for step in result.steps:
                logger.info(f"[dry run] Step {step.step_number}: {step.step_name}\n{step.sql}")
        return to_jsonable(result.to_dict())

    @task
    def validate_migration(job_id: int, migration: Dict[str, Any], **context) -> Optional[Dict[str, Any]]:
        """
        Run the post-migration checks against staging.

        Returns:
            ValidationResult as a dict, or None for a dry run
        """
        params = context["params"]
        if migration["dry_run"]:
            logger.info("Dry run: validation skipped")
            return None

        catalog = load_catalog(params.get("catalog_path"))
        with PoolRegistry() as registry, job_phase(registry, params, job_id, "validating"):
            result = orchestrator.validate_migration(
                registry,
                job_id,
                params["staging_conn_id"],
                config_conn_id=params["config_conn_id"],
                catalog=catalog,
            )
        return result.to_dict()

    @task
    def finalize_job(
        job_id: int,
        comparison: Dict[str, Any],
        migration: Dict[str, Any],
        validation_results: Optional[Dict[str, Any]],
        **context
    ) -> str:
        """
        Log the final report and close the job.

        Returns:
            Final status message
        """
        params = context["params"]
        migration_result = MigrationResult.from_dict(migration)
        validation_result = ValidationResult.from_dict(validation_results or {})
        report = orchestrator.generate_migration_report(
            validation_result, migration_result, comparison.get("summary")
        )
        logger.info("\n" + report)

        with PoolRegistry() as registry:
            store = orchestrator.get_state_store(registry, params["config_conn_id"])
            if validation_results is not None and validation_result.overall_status == "fail":
                status = f"✗ Migration job {job_id} failed validation"
                store.update_job_status(job_id, "failed", error_message=status)
                logger.error(status)
                raise MigrationError(status)

            store.update_job_status(job_id, "completed")

        if migration_result.dry_run:
            status = f"✓ Dry run for job {job_id} planned {len(migration_result.steps)} steps"
        else:
            status = f"✓ Migration job {job_id} completed ({validation_result.overall_status})"
        logger.info(status)
        return status

    # Define the task flow
    job_id = initialize_job()
    comparison = compare_schemas(job_id)
    record_results = analyze_records(job_id, comparison)
    analysis = analyze_superset_footprint(job_id, comparison, record_results)
    export_summary = export_superset_data(job_id, analysis)
    migration = execute_migration(job_id, analysis, export_summary)
    validation_results = validate_migration(job_id, migration)
    finalize_job(job_id, comparison, migration, validation_results)


ee_to_ce_migration()

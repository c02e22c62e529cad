"""
Post-Migration Validation Module

This module runs a fixed battery of checks against the staging database once
the migration steps have been applied, and renders a human-readable report.

Every check is independent: a failing query turns into a warning or fail
result for that one check (records_found = -1) and the remaining checks still
run.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging

from ee_ce_migration.catalog import SupersetCatalog
from ee_ce_migration.models import MigrationResult, ValidationCheck, ValidationResult
from ee_ce_migration.superset_analyzer import ACTIVE_SUPERSET_CRONS_SQL, OWNED_MODEL_IDS_SQL

logger = logging.getLogger(__name__)

DETAIL_NAME_LIMIT = 10


def _name_list(names: Sequence[str], limit: int = DETAIL_NAME_LIMIT) -> str:
    shown = ', '.join(names[:limit])
    return shown + ('...' if len(names) > limit else '')


class MigrationValidator:
    """Validate that no superset-only assets survive in the staging database."""

    def __init__(self, inspector, catalog: Optional[SupersetCatalog] = None):
        """
        Initialize the migration validator.

        Args:
            inspector: SchemaInspector for the staging database
            catalog: SupersetCatalog describing the superset-only assets
        """
        self.inspector = inspector
        self.helper = inspector.helper
        self.catalog = catalog or SupersetCatalog()

    def _check(
        self,
        check_name: str,
        check_type: str,
        fetch: Callable[[], List[str]],
        found_status: str,
        error_status: str,
        pass_details: str,
        found_details: Callable[[List[str]], str],
    ) -> ValidationCheck:
        try:
            found = fetch()
        except Exception as e:
            logger.warning(f"✗ {check_name} could not run: {e}")
            return ValidationCheck(check_name, check_type, error_status, str(e).strip() or 'Check failed', -1)

        if not found:
            logger.info(f"✓ {check_name}: {pass_details}")
            return ValidationCheck(check_name, check_type, 'pass', pass_details, 0)

        details = found_details(found)
        logger.warning(f"✗ {check_name}: {details}")
        return ValidationCheck(check_name, check_type, found_status, details, len(found))

    def check_modules(self) -> ValidationCheck:
        def fetch():
            rows = self.helper.get_records(
                """
                SELECT name FROM ir_module_module
                WHERE name = ANY(%s::text[]) AND state != 'uninstalled'
                ORDER BY name
                """,
                [list(self.catalog.modules)],
            )
            return [r[0] for r in rows]

        return self._check(
            'EE Modules Check', 'module_registry', fetch, 'fail', 'fail',
            'All Enterprise modules marked as uninstalled',
            lambda found: f"Found {len(found)} Enterprise modules still installed: {', '.join(found)}",
        )

    def check_tables(self) -> ValidationCheck:
        def fetch():
            self.inspector.refresh()
            return self.inspector.list_tables_matching(self.catalog.tables, self.catalog.table_patterns)

        return self._check(
            'EE Tables Check', 'database_schema', fetch, 'fail', 'fail',
            'All Enterprise tables removed',
            lambda found: f"Found {len(found)} Enterprise tables still exist: {_name_list(found)}",
        )

    def check_orphaned_foreign_keys(self) -> ValidationCheck:
        def fetch():
            rows = self.helper.get_records(
                """
                SELECT DISTINCT tc.constraint_name
                FROM information_schema.table_constraints AS tc
                JOIN information_schema.constraint_column_usage AS ccu
                  ON ccu.constraint_name = tc.constraint_name
                 AND ccu.table_schema = tc.table_schema
                WHERE tc.constraint_type = 'FOREIGN KEY'
                  AND tc.table_schema = %s
                  AND (ccu.table_name = ANY(%s::text[]) OR ccu.table_name LIKE ANY(%s::text[]))
                ORDER BY tc.constraint_name
                """,
                [self.inspector.schema, list(self.catalog.tables), list(self.catalog.table_patterns)],
            )
            return [r[0] for r in rows]

        return self._check(
            'Orphaned Foreign Keys Check', 'database_integrity', fetch, 'warning', 'warning',
            'No orphaned foreign key constraints found',
            lambda found: f"Found {len(found)} foreign key constraints referencing dropped tables",
        )

    def check_models(self) -> ValidationCheck:
        def fetch():
            rows = self.helper.get_records(
                f"SELECT model FROM ir_model WHERE id IN ({OWNED_MODEL_IDS_SQL}) ORDER BY model",
                [list(self.catalog.modules)] * 2,
            )
            return [r[0] for r in rows]

        return self._check(
            'EE Models Check', 'model_registry', fetch, 'fail', 'fail',
            'No Enterprise models in ir_model',
            lambda found: f"Found {len(found)} Enterprise models still registered",
        )

    def check_views(self) -> ValidationCheck:
        def fetch():
            rows = self.helper.get_records(
                """
                SELECT COALESCE(key, name) FROM ir_ui_view
                WHERE key LIKE ANY(%s::text[]) OR arch_db::text LIKE ANY(%s::text[])
                ORDER BY id
                """,
                [list(self.catalog.view_key_patterns), list(self.catalog.view_arch_patterns)],
            )
            return [r[0] for r in rows]

        return self._check(
            'EE Views Check', 'ui_elements', fetch, 'warning', 'warning',
            'No Enterprise views found',
            lambda found: f"Found {len(found)} views with Enterprise references",
        )

    def check_actions(self) -> ValidationCheck:
        def fetch():
            rows = self.helper.get_records(
                "SELECT res_model FROM ir_act_window WHERE res_model LIKE ANY(%s::text[]) ORDER BY id",
                [list(self.catalog.action_model_patterns)],
            )
            return [r[0] for r in rows]

        return self._check(
            'EE Actions Check', 'ui_elements', fetch, 'warning', 'warning',
            'No Enterprise actions found',
            lambda found: f"Found {len(found)} actions with Enterprise references",
        )

    def check_crons(self) -> ValidationCheck:
        def fetch():
            rows = self.helper.get_records(
                "SELECT c.id" + ACTIVE_SUPERSET_CRONS_SQL + "ORDER BY c.id",
                [list(self.catalog.modules)] * 3,
            )
            return [str(r[0]) for r in rows]

        return self._check(
            'EE Cron Jobs Check', 'scheduled_actions', fetch, 'warning', 'warning',
            'No active Enterprise cron jobs',
            lambda found: f"Found {len(found)} active cron jobs for Enterprise modules",
        )

    def check_database_integrity(self) -> ValidationCheck:
        """At least one user table must remain in the schema."""
        check_name, check_type = 'Database Integrity Check', 'database_health'
        try:
            row = self.helper.get_first(
                "SELECT COUNT(*) FROM pg_stat_user_tables WHERE schemaname = %s",
                [self.inspector.schema],
            )
            table_count = int(row[0]) if row else 0
        except Exception as e:
            logger.warning(f"✗ {check_name} could not run: {e}")
            return ValidationCheck(check_name, check_type, 'warning', str(e).strip() or 'Check failed', -1)

        if table_count > 0:
            logger.info(f"✓ {check_name}: {table_count} tables")
            return ValidationCheck(
                check_name, check_type, 'pass', f"Database contains {table_count} tables", table_count
            )
        logger.error(f"✗ {check_name}: no user tables left in {self.inspector.schema}")
        return ValidationCheck(
            check_name, check_type, 'fail',
            f"No user tables found in schema {self.inspector.schema}", 0,
        )

    def run_all(self) -> ValidationResult:
        """Run every check in a fixed order."""
        checks = [
            self.check_modules(),
            self.check_tables(),
            self.check_orphaned_foreign_keys(),
            self.check_models(),
            self.check_views(),
            self.check_actions(),
            self.check_crons(),
            self.check_database_integrity(),
        ]
        return ValidationResult(checks=checks)


def generate_migration_report(
    validation_result: ValidationResult,
    migration_result: Optional[MigrationResult] = None,
    comparison_summary: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Generate a human-readable migration report.

    Args:
        validation_result: Post-migration validation
        migration_result: Optional result of the executed (or previewed) plan
        comparison_summary: Optional TableComparisonResult.summary

    Returns:
        Formatted report string
    """
    summary = validation_result.summary
    report_lines = [
        "=" * 80,
        "EE TO CE MIGRATION REPORT",
        "=" * 80,
        f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "SUMMARY",
        "-" * 40,
        f"Overall Status: {validation_result.overall_status.upper()}",
        f"Checks: {summary['total']} total, {summary['passed']} passed, "
        f"{summary['failed']} failed, {summary['warnings']} warnings",
        "",
    ]

    if comparison_summary:
        report_lines.extend(["TABLE COMPARISON", "-" * 40])
        for key, value in comparison_summary.items():
            report_lines.append(f"{key.replace('_', ' ').title()}: {value:,}")
        report_lines.append("")

    if migration_result is not None:
        rows = sum(s.rows_affected for s in migration_result.steps)
        elapsed = sum(s.execution_time_ms for s in migration_result.steps)
        report_lines.extend([
            "MIGRATION STEPS",
            "-" * 40,
            f"Mode: {'dry run' if migration_result.dry_run else 'live'}",
            f"Steps: {len(migration_result.steps)}",
            f"Rows Affected: {rows:,}",
            f"Execution Time: {elapsed:,} ms",
        ])
        for step in migration_result.steps:
            if step.status == 'failed':
                report_lines.append(f"  ✗ Step {step.step_number} {step.step_name}: {step.error_message}")
        report_lines.append("")

    report_lines.extend(["VALIDATION CHECKS", "-" * 40])
    markers = {'pass': "✓ PASS", 'fail': "✗ FAIL", 'warning': "! WARN"}
    for check in validation_result.checks:
        report_lines.append(f"{markers.get(check.status, check.status)} | {check.check_name:<30} | {check.details}")

    report_lines.extend([
        "",
        "=" * 80,
        "END OF REPORT",
        "=" * 80,
    ])
    return "\n".join(report_lines)


def validate_migration(
    job_id: int,
    staging,
    catalog: Optional[SupersetCatalog] = None,
    state_store=None,
) -> ValidationResult:
    """
    Convenience function to validate a migrated staging database.

    Args:
        job_id: Job ID
        staging: SchemaInspector for the staging database
        catalog: SupersetCatalog
        state_store: MigrationStateStore; results are saved when given

    Returns:
        ValidationResult
    """
    result = MigrationValidator(staging, catalog).run_all()
    logger.info(
        f"Validation for job {job_id}: {result.overall_status} "
        f"({result.summary['passed']}/{result.summary['total']} checks passed)"
    )
    if state_store is not None:
        state_store.save_validation_results(job_id, result.checks)
    return result

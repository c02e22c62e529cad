"""
Tests for Migration Operations Module

These tests validate which connections each operation opens and in which
mode, and that XCom dict forms are accepted.
"""

import pytest
from unittest.mock import Mock, call, patch
from ee_ce_migration import orchestrator
from ee_ce_migration.catalog import SupersetCatalog
from ee_ce_migration.models import MigrationResult, MigrationStep, TableClassification
from ee_ce_migration.schema_inspector import SchemaInspector
from ee_ce_migration.state_store import MigrationStateStore


@pytest.fixture
def registry():
    return Mock()


def test_compare_schemas_opens_both_sides_read_only(registry):
    with patch('ee_ce_migration.table_comparator.compare_schemas') as compare:
        orchestrator.compare_schemas(registry, 'odoo_source', 'odoo_target', schema='public', batch_size=100)

    assert registry.helper.call_args_list == [
        call('odoo_source', read_only=True),
        call('odoo_target', read_only=True),
    ]
    source, target = compare.call_args[0]
    assert isinstance(source, SchemaInspector)
    assert target.schema == 'public'
    assert compare.call_args[1] == {'batch_size': 100}


def test_record_analysis_accepts_dict_classifications(registry):
    compatible = [{'table_name': 'res_partner', 'category': 'compatible_diff', 'source_record_count': 9,
                   'target_record_count': 7}]
    incompatible = [TableClassification('sale_order', 'incompatible_diff', 4, 4, ['x_ee_score'])]

    with patch('ee_ce_migration.record_analyzer.analyze_record_compatibility') as analyze:
        orchestrator.analyze_record_compatibility(registry, 'odoo_source', 'odoo_target', compatible, incompatible)

    passed_compatible, passed_incompatible = analyze.call_args[0][2:4]
    assert passed_compatible == [TableClassification('res_partner', 'compatible_diff', 9, 7)]
    assert passed_incompatible == incompatible


def test_export_defaults_to_catalog_modules(registry):
    with patch('ee_ce_migration.exporter.export_modules') as export:
        orchestrator.export_modules(registry, 7, 'odoo_source', 'migration_config', output_dir='/tmp/exports')

    args, kwargs = export.call_args
    assert args[0] == 7
    assert args[3] == SupersetCatalog().export_modules
    assert kwargs['output_dir'] == '/tmp/exports'
    assert registry.helper.call_args_list == [
        call('odoo_source', read_only=True),
        call('migration_config'),
    ]


class TestExecuteMigration:
    """Test connection use of plan execution."""

    def test_dry_run_opens_no_connection(self, registry):
        plan = [MigrationStep(1, 'Refresh planner statistics', 'ANALYZE;').to_dict()]

        result = orchestrator.execute_migration(registry, 7, 'odoo_staging', plan, dry_run=True,
                                                config_conn_id='migration_config')

        registry.helper.assert_not_called()
        assert result.dry_run is True
        assert result.steps[0].sql == 'ANALYZE;'

    def test_live_run_uses_writable_staging_and_step_log(self, registry):
        plan = [MigrationStep(1, 'Refresh planner statistics', 'ANALYZE;')]

        with patch('ee_ce_migration.executor.execute_migration') as execute:
            execute.return_value = MigrationResult(success=True, steps=[plan[0]])
            orchestrator.execute_migration(registry, 7, 'odoo_staging', plan,
                                           config_conn_id='migration_config')

        registry.helper.assert_any_call('odoo_staging')
        kwargs = execute.call_args[1]
        assert kwargs['dry_run'] is False
        assert isinstance(kwargs['state_store'], MigrationStateStore)

    def test_step_status_summary_logged(self, registry, caplog):
        plan = [
            MigrationStep(1, 'Disable crons', 'UPDATE ir_cron SET active = false;', status='completed'),
            MigrationStep(2, 'Drop table a', 'DROP TABLE a;', status='failed'),
            MigrationStep(3, 'Refresh planner statistics', 'ANALYZE;', status='skipped'),
        ]

        with patch('ee_ce_migration.executor.execute_migration') as execute:
            execute.return_value = MigrationResult(success=False, steps=plan)
            with caplog.at_level('INFO', logger='ee_ce_migration.orchestrator'):
                orchestrator.execute_migration(registry, 7, 'odoo_staging', plan,
                                               config_conn_id='migration_config')

        assert 'Job 7 steps: 1 completed, 1 failed, 1 skipped, 0 pending' in caplog.text


def test_validation_opens_staging_writable(registry):
    with patch('ee_ce_migration.validation.validate_migration') as validate:
        orchestrator.validate_migration(registry, 7, 'odoo_staging')

    registry.helper.assert_called_once_with('odoo_staging', read_only=False)
    assert validate.call_args[1]['state_store'] is None


def test_superset_footprint_read_only(registry):
    with patch('ee_ce_migration.superset_analyzer.analyze_superset_footprint') as analyze:
        orchestrator.analyze_superset_footprint(registry, 'odoo_staging')

    registry.helper.assert_called_once_with('odoo_staging', read_only=True)
    analyze.assert_called_once()

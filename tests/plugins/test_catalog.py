"""
Tests for Superset Catalog Module

These tests validate table matching against LIKE patterns, data
classification heuristics and catalog loading.
"""

import json

import pytest
from ee_ce_migration.catalog import ExportTable, SupersetCatalog, load_catalog
from ee_ce_migration.exceptions import InvalidIdentifierError


@pytest.fixture
def catalog():
    return SupersetCatalog()


class TestTableMatching:
    """Test superset table detection."""

    @pytest.mark.parametrize('table', [
        'helpdesk_ticket',
        'helpdesk_custom_queue',
        'sale_subscription_line',
        'documents_share',
        'hr_payroll_structure_type',
    ])
    def test_superset_tables(self, catalog, table):
        assert catalog.is_superset_table(table)

    @pytest.mark.parametrize('table', [
        'res_partner',
        'sale_order',
        'account_move',
        'fleet_vehicle',
        'maintenance_equipment',
        'helpdesk',
    ])
    def test_subset_tables(self, catalog, table):
        assert not catalog.is_superset_table(table)

    def test_underscore_is_single_character_wildcard(self):
        catalog = SupersetCatalog(tables=[], table_patterns=['iot_%'])

        assert catalog.is_superset_table('iotxbox')
        assert not catalog.is_superset_table('iot')

    @pytest.mark.parametrize('module', [
        'fleet',
        'maintenance',
        'spreadsheet',
        'spreadsheet_dashboard',
        'mrp',
    ])
    def test_community_modules_not_listed(self, catalog, module):
        assert module not in catalog.modules

    @pytest.mark.parametrize('table', [
        'spreadsheet_dashboard',
        'spreadsheet_dashboard_share',
        'spreadsheet_dashboard_group',
        'mrp_workorder',
        'mrp_workcenter',
        'fleet_vehicle',
        'maintenance_equipment',
    ])
    def test_community_tables_not_matched(self, catalog, table):
        assert table not in catalog.tables
        assert not catalog.is_superset_table(table)

    def test_enterprise_spreadsheet_kept(self, catalog):
        assert 'spreadsheet_edition' in catalog.modules
        assert 'documents_spreadsheet' in catalog.modules
        assert catalog.is_superset_table('spreadsheet_template')


class TestClassification:
    """Test data classification heuristics."""

    def test_explicit_table_type(self, catalog):
        assert catalog.classify_table('iot_box') == {
            'category': 'system_configuration', 'description': 'IoT box devices',
        }

    @pytest.mark.parametrize('table,category', [
        ('helpdesk_config', 'system_configuration'),
        ('sign_import_wizard', 'technical'),
        ('helpdesk_ticket_tag_rel', 'technical'),
        ('approval_custom_template', 'application_configuration'),
        ('mrp_eco', 'business_data'),
    ])
    def test_name_rules(self, catalog, table, category):
        assert catalog.classify_table(table)['category'] == category

    @pytest.mark.parametrize('column,table,expected', [
        ('amount_total', 'iot_box', True),
        ('partner_id', 'voip_configurator', True),
        ('create_uid', 'sale_order', False),
        ('message_main_attachment_id', 'helpdesk_ticket', False),
        ('x_custom_flag', 'helpdesk_ticket', True),
        ('x_custom_flag', 'iot_box', False),
    ])
    def test_business_critical_field(self, catalog, column, table, expected):
        assert catalog.is_business_critical_field(column, table) is expected

    def test_technical_pattern_wins_over_critical(self, catalog):
        # write_date contains both 'write_' and 'date'
        assert catalog.is_business_critical_field('write_date', 'sale_order') is False


class TestCatalogLoading:
    """Test catalog construction and serialization."""

    def test_default_export_modules(self, catalog):
        helpdesk = catalog.export_modules['helpdesk']

        assert helpdesk[0] == ExportTable('helpdesk_team', ('id',))
        assert ExportTable('helpdesk_stage', ('sequence', 'id')) in helpdesk

    def test_dict_round_trip(self, catalog):
        loaded = SupersetCatalog.from_dict(json.loads(json.dumps(catalog.to_dict())))

        assert loaded == catalog

    def test_missing_keys_keep_defaults(self):
        loaded = SupersetCatalog.from_dict({'modules': ['custom_module']})

        assert loaded.modules == ['custom_module']
        assert loaded.tables == SupersetCatalog().tables

    def test_from_json(self, tmp_path):
        path = tmp_path / 'catalog.json'
        path.write_text(json.dumps({
            'modules': ['crm_custom'],
            'export_modules': {'crm_custom': [{'table_name': 'crm_custom_score'}]},
        }))

        loaded = load_catalog(str(path))

        assert loaded.export_modules == {'crm_custom': [ExportTable('crm_custom_score', ('id',))]}

    def test_empty_path_loads_default(self):
        assert load_catalog('') == SupersetCatalog()

    def test_invalid_table_name_rejected(self):
        with pytest.raises(InvalidIdentifierError):
            SupersetCatalog(tables=['ok', 'bad; name'])

    def test_invalid_sort_column_rejected(self):
        with pytest.raises(InvalidIdentifierError):
            ExportTable('helpdesk_ticket', ('id desc',))

    def test_unknown_category_rejected(self):
        with pytest.raises(ValueError):
            SupersetCatalog(table_data_types={'x': ('secret', 'nope')})

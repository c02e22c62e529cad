"""
Superset Catalog

Static classification data describing what exists only in the superset
(Odoo Enterprise) edition: module names, table names and LIKE patterns, the
module-to-tables export map, UI asset patterns, and the column/table
heuristics used by the data-loss analysis.

The catalog is injected into every component that needs it. The default
catalog targets Odoo 17 Enterprise -> Community; SupersetCatalog.from_json()
loads a replacement for other applications.
"""

from dataclasses import asdict, dataclass, field
from fnmatch import fnmatchcase
from typing import Any, Dict, List, Optional, Tuple
import json
import logging

from ee_ce_migration.utils import validate_sql_identifier

logger = logging.getLogger(__name__)

TABLE_CATEGORIES = (
    'business_data',
    'system_configuration',
    'application_configuration',
    'technical',
)


@dataclass(frozen=True)
class ExportTable:
    """One table of an export module, with the columns that give it a stable order."""

    table_name: str
    order_by: Tuple[str, ...] = ('id',)

    def __post_init__(self):
        validate_sql_identifier(self.table_name, "table name")
        if not self.order_by:
            raise ValueError(f"Export table {self.table_name} needs at least one sort column")
        for column in self.order_by:
            validate_sql_identifier(column, "sort column")


DEFAULT_MODULES = [
    'web_enterprise', 'web_mobile', 'web_studio',
    'account_accountant', 'account_accountant_batch_payment', 'account_asset',
    'account_bank_statement_import_qif', 'account_budget', 'account_consolidation',
    'account_disallowed_expenses', 'account_invoice_extract',
    'account_online_synchronization', 'account_reports', 'account_sepa',
    'account_sepa_direct_debit', 'account_taxcloud', 'account_3way_match',
    'hr_payroll', 'hr_payroll_account', 'hr_payroll_expense',
    'documents', 'documents_account', 'documents_hr', 'documents_hr_contract',
    'documents_hr_recruitment', 'documents_product', 'documents_project',
    'documents_sign', 'documents_spreadsheet',
    'spreadsheet_edition',
    'sign', 'sign_itsme', 'esg',
    'crm_enterprise', 'sale_enterprise', 'sale_subscription',
    'sale_subscription_dashboard', 'sale_amazon', 'sale_ebay',
    'sale_renting', 'sale_renting_sign',
    'website_enterprise', 'website_studio', 'website_sale_dashboard',
    'website_helpdesk', 'website_helpdesk_form', 'website_helpdesk_forum',
    'website_helpdesk_livechat', 'website_helpdesk_slides',
    'im_livechat_enterprise', 'voip', 'voip_crm', 'voip_onsip',
    'stock_enterprise', 'stock_barcode', 'stock_barcode_quality_control',
    'quality_control', 'quality_control_worksheet', 'quality_mrp_workorder',
    'mrp_enterprise', 'mrp_workorder', 'mrp_plm', 'mrp_mps',
    'maintenance_worksheet',
    'hr_recruitment_enterprise', 'hr_referral', 'hr_appraisal', 'hr_appraisal_survey',
    'hr_attendance_enterprise', 'hr_contract_enterprise', 'hr_contract_reports',
    'hr_contract_salary', 'hr_contract_sign',
    'social_facebook', 'social_instagram', 'social_linkedin',
    'social_push_notifications', 'social_twitter', 'social_youtube',
    'mass_mailing_themes', 'marketing_automation', 'marketing_automation_sms',
    'project_enterprise', 'project_forecast',
    'industry_fsm', 'industry_fsm_report', 'industry_fsm_sale', 'industry_fsm_stock',
    'helpdesk', 'helpdesk_account', 'helpdesk_mail_plugin', 'helpdesk_sale',
    'helpdesk_sale_timesheet', 'helpdesk_stock', 'helpdesk_timesheet',
    'planning', 'planning_hr_contract', 'planning_hr_skills',
    'appointment', 'appointment_account_payment', 'appointment_crm',
    'appointment_hr_recruitment',
    'timesheet_grid', 'hr_timesheet_attendance',
    'approvals', 'studio', 'iot', 'pos_iot',
    'hr_expense_extract', 'purchase_enterprise', 'purchase_product_matrix',
    'sale_product_matrix', 'product_matrix',
]

DEFAULT_TABLES = [
    'helpdesk_ticket', 'helpdesk_team', 'helpdesk_sla', 'helpdesk_stage', 'helpdesk_tag',
    'documents_document', 'documents_folder', 'documents_tag', 'documents_facet',
    'documents_workflow_rule', 'documents_workflow_action', 'documents_share',
    'spreadsheet_template', 'spreadsheet_cell_thread',
    'sign_request', 'sign_request_item', 'sign_request_item_value', 'sign_item',
    'sign_item_value', 'sign_template',
    'sale_subscription', 'sale_subscription_line', 'sale_subscription_template',
    'sale_subscription_stage', 'sale_subscription_alert',
    'planning_slot', 'planning_template', 'planning_role', 'planning_recurrency',
    'approval_category', 'approval_request', 'approval_approver', 'approval_product_line',
    'studio_approval_rule', 'studio_approval_entry',
    'voip_phonecall', 'voip_configurator',
    'iot_box', 'iot_device',
    'industry_fsm_order',
    'hr_payroll_structure', 'hr_payroll_structure_type', 'hr_payslip', 'hr_payslip_line',
    'hr_payslip_run',
    'account_asset', 'account_asset_category',
    'crossovered_budget', 'crossovered_budget_lines',
    'marketing_campaign', 'marketing_activity', 'social_post', 'social_account',
    'social_stream',
    'appointment_type', 'appointment_invite',
    'quality_point', 'quality_check', 'quality_alert',
    'mrp_eco', 'mrp_eco_stage',
    'hr_appraisal', 'hr_appraisal_goal',
    'hr_referral_friend', 'hr_referral_level',
]

DEFAULT_TABLE_PATTERNS = [
    'helpdesk_%', 'documents_%', 'sale_subscription%', 'planning_%', 'studio_%',
    'sign_%', 'approvals_%', 'approval_%', 'voip_%', 'iot_%', 'account_asset%',
    'account_budget%', 'account_consolidation%', 'hr_payroll%',
    'social_%', 'marketing_automation%', 'industry_fsm%', 'appointment_%',
    'quality_%', 'mrp_plm%', 'hr_appraisal%', 'hr_referral%',
    'sale_renting%', 'account_disallowed_expenses%', 'web_studio%',
]

DEFAULT_EXPORT_MODULES = {
    'helpdesk': [
        ('helpdesk_team', ('id',)),
        ('helpdesk_stage', ('sequence', 'id')),
        ('helpdesk_sla', ('id',)),
        ('helpdesk_tag', ('id',)),
        ('helpdesk_ticket', ('id',)),
    ],
    'subscriptions': [
        ('sale_subscription_template', ('id',)),
        ('sale_subscription_stage', ('sequence', 'id')),
        ('sale_subscription', ('id',)),
        ('sale_subscription_line', ('id',)),
        ('sale_subscription_alert', ('id',)),
    ],
    'documents': [
        ('documents_folder', ('id',)),
        ('documents_facet', ('id',)),
        ('documents_tag', ('id',)),
        ('documents_document', ('id',)),
        ('documents_workflow_rule', ('id',)),
        ('documents_share', ('id',)),
    ],
    'planning': [
        ('planning_role', ('id',)),
        ('planning_template', ('id',)),
        ('planning_slot', ('id',)),
        ('planning_recurrency', ('id',)),
    ],
    'sign': [
        ('sign_template', ('id',)),
        ('sign_item', ('id',)),
        ('sign_request', ('id',)),
        ('sign_request_item', ('id',)),
        ('sign_request_item_value', ('id',)),
    ],
    'approvals': [
        ('approval_category', ('id',)),
        ('approval_request', ('id',)),
        ('approval_approver', ('id',)),
        ('approval_product_line', ('id',)),
    ],
    'iot': [
        ('iot_box', ('id',)),
        ('iot_device', ('id',)),
    ],
    'voip': [
        ('voip_configurator', ('id',)),
        ('voip_phonecall', ('id',)),
    ],
    'payroll': [
        ('hr_payroll_structure_type', ('id',)),
        ('hr_payroll_structure', ('id',)),
        ('hr_payslip_run', ('id',)),
        ('hr_payslip', ('id',)),
        ('hr_payslip_line', ('id',)),
    ],
}

_BUSINESS = 'business_data'
_APP_CONFIG = 'application_configuration'
_SYS_CONFIG = 'system_configuration'

DEFAULT_TABLE_DATA_TYPES = {
    'res_partner': (_BUSINESS, 'Contacts and customers'),
    'sale_order': (_BUSINESS, 'Sales orders'),
    'sale_order_line': (_BUSINESS, 'Sales order items'),
    'account_move': (_BUSINESS, 'Accounting entries/invoices'),
    'account_move_line': (_BUSINESS, 'Journal entry lines'),
    'purchase_order': (_BUSINESS, 'Purchase orders'),
    'purchase_order_line': (_BUSINESS, 'Purchase order items'),
    'stock_move': (_BUSINESS, 'Inventory movements'),
    'stock_picking': (_BUSINESS, 'Delivery orders'),
    'product_template': (_BUSINESS, 'Product templates'),
    'product_product': (_BUSINESS, 'Product variants'),
    'crm_lead': (_BUSINESS, 'CRM leads and opportunities'),
    'project_project': (_BUSINESS, 'Projects'),
    'project_task': (_BUSINESS, 'Project tasks'),
    'hr_employee': (_BUSINESS, 'Employees'),
    'mrp_production': (_BUSINESS, 'Manufacturing orders'),
    'helpdesk_team': (_BUSINESS, 'Helpdesk teams and configuration'),
    'helpdesk_ticket': (_BUSINESS, 'Customer support tickets'),
    'helpdesk_stage': (_BUSINESS, 'Ticket workflow stages'),
    'helpdesk_sla': (_BUSINESS, 'Service level agreements'),
    'helpdesk_tag': (_BUSINESS, 'Ticket categorization tags'),
    'documents_document': (_BUSINESS, 'Document management files'),
    'documents_folder': (_BUSINESS, 'Document folders structure'),
    'documents_tag': (_BUSINESS, 'Document classification tags'),
    'documents_share': (_BUSINESS, 'Document sharing links'),
    'planning_slot': (_BUSINESS, 'Employee planning schedules'),
    'planning_role': (_BUSINESS, 'Planning roles'),
    'planning_template': (_BUSINESS, 'Planning templates'),
    'sign_request': (_BUSINESS, 'Electronic signature requests'),
    'sign_template': (_BUSINESS, 'Signature templates'),
    'sign_item': (_BUSINESS, 'Signature items'),
    'approval_request': (_BUSINESS, 'Approval requests'),
    'approval_approver': (_BUSINESS, 'Approval workflow participants'),
    'quality_check': (_BUSINESS, 'Quality inspection records'),
    'quality_alert': (_BUSINESS, 'Quality alerts and issues'),
    'sale_subscription': (_BUSINESS, 'Recurring subscriptions'),
    'sale_subscription_line': (_BUSINESS, 'Subscription line items'),
    'voip_phonecall': (_BUSINESS, 'VoIP call records'),
    'documents_workflow_rule': (_APP_CONFIG, 'Document automation rules'),
    'planning_recurrency': (_APP_CONFIG, 'Recurring planning patterns'),
    'approval_category': (_APP_CONFIG, 'Approval categories'),
    'quality_point': (_APP_CONFIG, 'Quality control checkpoints'),
    'sale_subscription_template': (_APP_CONFIG, 'Subscription templates'),
    'iot_box': (_SYS_CONFIG, 'IoT box devices'),
    'iot_device': (_SYS_CONFIG, 'Connected IoT devices'),
    'voip_configurator': (_SYS_CONFIG, 'VoIP configuration'),
}

DEFAULT_BUSINESS_CRITICAL_PATTERNS = [
    'amount', 'price', 'cost', 'total', 'subtotal', 'tax',
    'quantity', 'qty',
    'date', 'deadline',
    'name', 'description', 'note',
    'state', 'stage_id', 'status',
    'partner_id', 'customer_id', 'user_id', 'employee_id',
    'reference', 'ref', 'origin',
]

DEFAULT_TECHNICAL_PATTERNS = [
    '_company_id', '_currency_id',
    'create_', 'write_', '__last_update',
    'display_name', 'access_',
    'message_', 'activity_',
]

# Ordered (substring, category, description); first match wins
DEFAULT_TABLE_NAME_RULES = [
    ('_config', _SYS_CONFIG, 'System configuration table'),
    ('_settings', _SYS_CONFIG, 'System configuration table'),
    ('_wizard', 'technical', 'Temporary/wizard table'),
    ('_import', 'technical', 'Temporary/wizard table'),
    ('_rel', 'technical', 'Many-to-many relation table'),
    ('_template', _APP_CONFIG, 'Application configuration'),
    ('_stage', _APP_CONFIG, 'Application configuration'),
    ('_category', _APP_CONFIG, 'Application configuration'),
]


def _like_to_glob(pattern: str) -> str:
    """Translate a SQL LIKE pattern into an fnmatch pattern."""
    return pattern.replace('*', '[*]').replace('?', '[?]').replace('%', '*').replace('_', '?')


@dataclass
class SupersetCatalog:
    """
    Injectable classification table for superset-only assets.

    Attributes:
        modules: Module names that exist only in the superset edition
        tables: Known superset-only tables
        table_patterns: SQL LIKE patterns for superset-only tables
        export_modules: Module name -> ordered tables to export
        view_key_patterns / view_arch_patterns: LIKE patterns for superset UI views
        action_model_patterns: LIKE patterns on window-action res_model
        business_critical_patterns / technical_patterns: column-name heuristics
        table_data_types: table -> (category, description)
        table_name_rules: ordered (substring, category, description) fallbacks
    """

    modules: List[str] = field(default_factory=lambda: list(DEFAULT_MODULES))
    tables: List[str] = field(default_factory=lambda: list(DEFAULT_TABLES))
    table_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_TABLE_PATTERNS))
    export_modules: Dict[str, List[ExportTable]] = field(
        default_factory=lambda: {
            module: [ExportTable(table, order_by) for table, order_by in tables]
            for module, tables in DEFAULT_EXPORT_MODULES.items()
        }
    )
    view_key_patterns: List[str] = field(default_factory=lambda: ['%enterprise%'])
    view_arch_patterns: List[str] = field(
        default_factory=lambda: ['%web_enterprise%', '%web_studio%']
    )
    action_model_patterns: List[str] = field(default_factory=lambda: ['%enterprise%'])
    business_critical_patterns: List[str] = field(
        default_factory=lambda: list(DEFAULT_BUSINESS_CRITICAL_PATTERNS)
    )
    technical_patterns: List[str] = field(
        default_factory=lambda: list(DEFAULT_TECHNICAL_PATTERNS)
    )
    table_data_types: Dict[str, Tuple[str, str]] = field(
        default_factory=lambda: dict(DEFAULT_TABLE_DATA_TYPES)
    )
    table_name_rules: List[Tuple[str, str, str]] = field(
        default_factory=lambda: list(DEFAULT_TABLE_NAME_RULES)
    )

    def __post_init__(self):
        for table in self.tables:
            validate_sql_identifier(table, "table name")
        for category, _ in self.table_data_types.values():
            if category not in TABLE_CATEGORIES:
                raise ValueError(f"Unknown table category '{category}'")
        self._globs = [_like_to_glob(p) for p in self.table_patterns]

    def is_superset_table(self, table_name: str) -> bool:
        """True if the table is listed explicitly or matches a table pattern."""
        if table_name in self.tables:
            return True
        return any(fnmatchcase(table_name, glob) for glob in self._globs)

    def classify_table(self, table_name: str) -> Dict[str, str]:
        """
        Classify a table by the kind of data it holds.

        Explicit entries win; otherwise the first matching name rule applies;
        anything else is business data.
        """
        if table_name in self.table_data_types:
            category, description = self.table_data_types[table_name]
            return {'category': category, 'description': description}

        for needle, category, description in self.table_name_rules:
            if needle in table_name:
                return {'category': category, 'description': description}

        return {'category': 'business_data', 'description': 'Business data table'}

    def is_business_critical_field(self, column_name: str, table_name: str) -> bool:
        """
        Decide whether losing a column's data matters to the business.

        Technical patterns veto, critical patterns confirm, and otherwise the
        table's category decides.
        """
        lower_column = column_name.lower()
        if any(p in lower_column for p in self.technical_patterns):
            return False
        if any(p in lower_column for p in self.business_critical_patterns):
            return True
        return self.classify_table(table_name)['category'] == 'business_data'

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['export_modules'] = {
            module: [{'table_name': t.table_name, 'order_by': list(t.order_by)} for t in tables]
            for module, tables in self.export_modules.items()
        }
        data['table_data_types'] = {k: list(v) for k, v in self.table_data_types.items()}
        data['table_name_rules'] = [list(rule) for rule in self.table_name_rules]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SupersetCatalog":
        """
        Build a catalog from a dict; keys that are absent keep their defaults.
        """
        kwargs: Dict[str, Any] = {}
        for key in ('modules', 'tables', 'table_patterns', 'view_key_patterns',
                    'view_arch_patterns', 'action_model_patterns',
                    'business_critical_patterns', 'technical_patterns'):
            if key in data:
                kwargs[key] = list(data[key])

        if 'export_modules' in data:
            kwargs['export_modules'] = {
                module: [
                    ExportTable(entry['table_name'], tuple(entry.get('order_by') or ('id',)))
                    for entry in tables
                ]
                for module, tables in data['export_modules'].items()
            }
        if 'table_data_types' in data:
            kwargs['table_data_types'] = {
                table: (value[0], value[1]) for table, value in data['table_data_types'].items()
            }
        if 'table_name_rules' in data:
            kwargs['table_name_rules'] = [tuple(rule) for rule in data['table_name_rules']]

        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: str) -> "SupersetCatalog":
        """Load a catalog from a JSON file."""
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        catalog = cls.from_dict(data)
        logger.info(
            f"Loaded superset catalog from {path}: {len(catalog.modules)} modules, "
            f"{len(catalog.tables)} tables, {len(catalog.export_modules)} export modules"
        )
        return catalog


def load_catalog(path: Optional[str] = None) -> SupersetCatalog:
    """Return the catalog at path, or the default catalog when path is empty."""
    if path:
        return SupersetCatalog.from_json(path)
    return SupersetCatalog()

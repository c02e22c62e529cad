"""
Superset Footprint Analysis

Finds what the superset edition left in a database: installed superset
modules, superset-only tables with their row counts and sizes, and foreign
keys touching those tables. The result drives migration planning and sets a
risk level for the operator.
"""

from typing import Dict, List, Optional
import logging

import psycopg2

from ee_ce_migration.catalog import SupersetCatalog
from ee_ce_migration.exceptions import SchemaProbeError
from ee_ce_migration.models import ForeignKey, SupersetAnalysis

logger = logging.getLogger(__name__)

LARGE_TABLE_ROWS = 100_000

# (dangerous foreign keys above, total records above, level), checked in order
RISK_THRESHOLDS = (
    (10, 1_000_000, 'critical'),
    (5, 500_000, 'high'),
    (0, 100_000, 'medium'),
)

# ir_model ids declared only by the modules in %s; both placeholders take the
# same module name list
OWNED_MODEL_IDS_SQL = """
    SELECT res_id FROM ir_model_data
    WHERE model = 'ir.model' AND module = ANY(%s::text[])
    EXCEPT
    SELECT res_id FROM ir_model_data
    WHERE model = 'ir.model' AND module <> ALL(%s::text[])
"""

# Active scheduled jobs running on a superset model or defined by a superset
# module; parameters are the module name list three times
ACTIVE_SUPERSET_CRONS_SQL = f"""
    FROM ir_cron c
    JOIN ir_act_server s ON s.id = c.ir_actions_server_id
    WHERE c.active = true
      AND (
        s.model_id IN ({OWNED_MODEL_IDS_SQL})
        OR c.id IN (
          SELECT res_id FROM ir_model_data
          WHERE model = 'ir.cron' AND module = ANY(%s::text[])
        )
      )
"""


def assess_risk(dangerous_fk_count: int, total_records: int) -> str:
    """Risk level from cross-edition foreign keys and superset record volume."""
    for fk_limit, record_limit, level in RISK_THRESHOLDS:
        if dangerous_fk_count > fk_limit or total_records > record_limit:
            return level
    return 'low'


def find_dangerous_foreign_keys(foreign_keys: List[ForeignKey], superset_tables: List[str]) -> List[ForeignKey]:
    """Foreign keys from subset tables into superset tables."""
    superset = set(superset_tables)
    return [
        fk for fk in foreign_keys
        if fk.foreign_table_name in superset and fk.table_name not in superset
    ]


def _installed_modules(inspector, catalog: SupersetCatalog) -> List[Dict[str, str]]:
    if not inspector.table_exists('ir_module_module'):
        logger.warning("ir_module_module not found; module registry skipped")
        return []
    rows = inspector.helper.get_records(
        """
        SELECT name, state, latest_version
        FROM ir_module_module
        WHERE state = 'installed'
          AND name = ANY(%s::text[])
        ORDER BY name
        """,
        [list(catalog.modules)],
    )
    return [{'name': r[0], 'state': r[1], 'latest_version': r[2]} for r in rows]


def _active_superset_crons(inspector, modules: List[str]) -> int:
    if not modules or not inspector.table_exists('ir_cron'):
        return 0
    try:
        row = inspector.helper.get_first(
            "SELECT COUNT(*)" + ACTIVE_SUPERSET_CRONS_SQL,
            [list(modules)] * 3,
        )
    except psycopg2.Error as e:
        logger.warning(f"Could not count active superset scheduled jobs: {e}")
        return 0
    return int(row[0]) if row else 0


def analyze_superset_footprint(inspector, catalog: Optional[SupersetCatalog] = None) -> SupersetAnalysis:
    """
    Analyze the superset footprint of one database.

    Args:
        inspector: SchemaInspector for the database to analyze
        catalog: SupersetCatalog (default: Odoo Enterprise catalog)

    Returns:
        SupersetAnalysis
    """
    catalog = catalog or SupersetCatalog()
    analysis = SupersetAnalysis()

    analysis.modules_found = _installed_modules(inspector, catalog)
    if not analysis.modules_found:
        analysis.warnings.append(
            'No Enterprise Edition modules found. Database may already be CE.'
        )

    table_names = inspector.list_tables_matching(catalog.tables, catalog.table_patterns)
    for table_name in table_names:
        try:
            count = inspector.get_row_count(table_name)
            size_mb = inspector.get_table_size_mb(table_name)
        except (SchemaProbeError, ValueError) as e:
            logger.warning(f"✗ {table_name}: count failed, assuming 0 rows: {e}")
            count, size_mb = 0, 0.0

        analysis.record_counts[table_name] = count
        analysis.tables_found.append({
            'table_name': table_name,
            'row_count': count,
            'size_mb': size_mb,
        })
        if count > LARGE_TABLE_ROWS:
            analysis.warnings.append(
                f"Table {table_name} has {count:,} records - export may take significant time"
            )

    analysis.foreign_key_dependencies = (
        inspector.get_foreign_keys(table_names) if table_names else []
    )
    dangerous = find_dangerous_foreign_keys(analysis.foreign_key_dependencies, table_names)
    if dangerous:
        analysis.warnings.append(
            f"Found {len(dangerous)} foreign key constraints from CE tables pointing to EE "
            "tables - these will need cleanup"
        )

    analysis.estimated_export_size_mb = round(
        sum(t['size_mb'] for t in analysis.tables_found), 2
    )
    total_records = sum(analysis.record_counts.values())
    analysis.risk_level = assess_risk(len(dangerous), total_records)

    cron_count = _active_superset_crons(inspector, analysis.module_names)
    if cron_count:
        analysis.warnings.append(f"Found {cron_count} active cron jobs for EE modules")

    logger.info(
        f"Superset footprint: {len(analysis.modules_found)} modules, "
        f"{len(table_names)} tables, {total_records:,} records, "
        f"{len(analysis.foreign_key_dependencies)} foreign keys, risk {analysis.risk_level}"
    )
    return analysis

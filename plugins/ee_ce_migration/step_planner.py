"""
Migration Step Planner

Turns a superset footprint analysis of the staging database into an ordered
list of statements that remove the superset edition:

 1. Deactivate scheduled jobs of superset models
 2. Deactivate automations of superset models
 3. Mark superset modules uninstalled
 4. Remove dependency records of those modules
 5. Remove superset UI views
 6. Remove menus pointing at superset window actions, then those actions
 7. Drop every foreign key that references a superset table
 8. Drop superset tables, dependents first
 9. Remove external IDs of the removed models
10. Remove model registry entries of the removed modules
11. Refresh planner statistics

Every table, constraint and module name is checked before it is placed in a
statement: names must satisfy the identifier charset, and table and
constraint names must come from the enumerated staging schema recorded in
the analysis.
"""

from typing import Dict, List, Optional, Sequence, Set, Union
import heapq
import logging

from ee_ce_migration.catalog import SupersetCatalog
from ee_ce_migration.config import get_schema_name
from ee_ce_migration.models import ForeignKey, MigrationStep, SupersetAnalysis
from ee_ce_migration.utils import (
    IdentifierAllowList,
    quote_identifier,
    quote_sql_literal,
    sql_text_array,
    validate_sql_identifier,
)

logger = logging.getLogger(__name__)


def drop_order(tables: Sequence[str], foreign_keys: Sequence[ForeignKey]) -> List[str]:
    """
    Order tables so that a table comes after every table that references it.

    Ties are broken by name. Tables caught in a reference cycle are appended
    in name order.
    """
    table_set = set(tables)
    referenced_by: Dict[str, Set[str]] = {t: set() for t in table_set}
    references: Dict[str, Set[str]] = {t: set() for t in table_set}
    for fk in foreign_keys:
        src, dst = fk.table_name, fk.foreign_table_name
        if src in table_set and dst in table_set and src != dst:
            referenced_by[dst].add(src)
            references[src].add(dst)

    pending = {t: len(referenced_by[t]) for t in table_set}
    ready = [t for t, count in pending.items() if count == 0]
    heapq.heapify(ready)

    ordered: List[str] = []
    while ready:
        table = heapq.heappop(ready)
        ordered.append(table)
        for target in references[table]:
            pending[target] -= 1
            if pending[target] == 0:
                heapq.heappush(ready, target)

    if len(ordered) < len(table_set):
        cyclic = sorted(table_set - set(ordered))
        logger.warning(f"Reference cycle among tables {cyclic}; dropping them in name order")
        ordered.extend(cyclic)
    return ordered


class MigrationStepPlanner:
    """
    Builds the ordered statement list for one job.

    Planning is deterministic: the same analysis always yields the same steps.
    """

    def __init__(self, catalog: Optional[SupersetCatalog] = None, schema: Optional[str] = None):
        self.catalog = catalog or SupersetCatalog()
        self.schema = validate_sql_identifier(schema or get_schema_name(), "schema name")

    def _table(self, table_name: str) -> str:
        return f"{quote_identifier(self.schema)}.{quote_identifier(table_name)}"

    def _superset_model_ids(self, modules: List[str]) -> str:
        """
        Subquery yielding ir_model ids declared only by the given modules.

        Models that a kept module also declares, such as a core model an
        enterprise module extends, are excluded.
        """
        module_array = sql_text_array(modules)
        return (
            "SELECT res_id FROM ir_model_data\n"
            f"  WHERE model = 'ir.model' AND module = ANY({module_array})\n"
            "  EXCEPT\n"
            "  SELECT res_id FROM ir_model_data\n"
            f"  WHERE model = 'ir.model' AND module <> ALL({module_array})"
        )

    def _superset_models(self, modules: List[str], tables: List[str]) -> str:
        """Subquery yielding the model names owned by superset modules or tables."""
        by_table = f"replace(model, '.', '_') = ANY({sql_text_array(tables)})"
        if not modules:
            return f"SELECT model FROM ir_model WHERE {by_table}"
        return (
            "SELECT model FROM ir_model "
            f"WHERE id IN ({self._superset_model_ids(modules)}) "
            f"OR {by_table}"
        )

    def plan(self, analysis: SupersetAnalysis) -> List[MigrationStep]:
        modules = sorted({validate_sql_identifier(m, "module name") for m in analysis.module_names})

        table_allow_list = IdentifierAllowList(
            list(analysis.table_names)
            + [fk.table_name for fk in analysis.foreign_key_dependencies],
            "table name",
        )
        tables = sorted(set(table_allow_list.check_all(analysis.table_names)))
        constraint_allow_list = IdentifierAllowList(
            [fk.constraint_name for fk in analysis.foreign_key_dependencies], "constraint name"
        )

        planned: List[tuple] = []
        module_list = ', '.join(quote_sql_literal(m) for m in modules)
        superset_models = self._superset_models(modules, tables)

        if modules:
            model_ids = self._superset_model_ids(modules)
            planned.append((
                'Disable Enterprise Edition cron jobs',
                "UPDATE ir_cron SET active = false\n"
                "WHERE active = true AND (\n"
                "  ir_actions_server_id IN (\n"
                f"    SELECT id FROM ir_act_server WHERE model_id IN ({model_ids})\n"
                "  )\n"
                "  OR id IN (\n"
                "    SELECT res_id FROM ir_model_data\n"
                f"    WHERE model = 'ir.cron' AND module IN ({module_list})\n"
                "  )\n"
                ");",
            ))
            planned.append((
                'Disable Enterprise Edition automated actions',
                "DO $$\n"
                "BEGIN\n"
                "  IF to_regclass('base_automation') IS NOT NULL THEN\n"
                "    UPDATE base_automation SET active = false\n"
                f"    WHERE active = true AND model_id IN ({model_ids});\n"
                "  END IF;\n"
                "END $$;",
            ))
            planned.append((
                'Mark Enterprise modules as uninstalled',
                "UPDATE ir_module_module\n"
                "SET state = 'uninstalled', latest_version = NULL\n"
                f"WHERE name IN ({module_list});",
            ))
            planned.append((
                'Remove Enterprise module dependencies',
                "DELETE FROM ir_module_module_dependency\n"
                "WHERE module_id IN (\n"
                f"  SELECT id FROM ir_module_module WHERE name IN ({module_list})\n"
                ");",
            ))

        planned.append((
            'Remove Enterprise Edition views',
            "DELETE FROM ir_ui_view\n"
            f"WHERE key LIKE ANY({sql_text_array(self.catalog.view_key_patterns)})\n"
            f"OR arch_db::text LIKE ANY({sql_text_array(self.catalog.view_arch_patterns)});",
        ))

        action_filter = (
            f"res_model IN ({superset_models})\n"
            f"  OR res_model LIKE ANY({sql_text_array(self.catalog.action_model_patterns)})"
        )
        planned.append((
            'Remove Enterprise Edition menu items',
            "DELETE FROM ir_ui_menu\n"
            "WHERE action IN (\n"
            "  SELECT 'ir.actions.act_window,' || id FROM ir_act_window\n"
            f"  WHERE {action_filter}\n"
            ");",
        ))
        planned.append((
            'Remove Enterprise Edition actions',
            f"DELETE FROM ir_act_window\nWHERE {action_filter};",
        ))

        table_set = set(tables)
        seen = set()
        for fk in sorted(analysis.foreign_key_dependencies,
                         key=lambda f: (f.table_name, f.constraint_name)):
            if fk.foreign_table_name not in table_set:
                continue
            key = (fk.table_name, fk.constraint_name)
            if key in seen:
                continue
            seen.add(key)
            table_allow_list.check(fk.table_name)
            constraint_allow_list.check(fk.constraint_name)
            planned.append((
                f'Drop FK constraint {fk.constraint_name}',
                f"ALTER TABLE {self._table(fk.table_name)} "
                f"DROP CONSTRAINT IF EXISTS {quote_identifier(fk.constraint_name)};",
            ))

        for table_name in drop_order(tables, analysis.foreign_key_dependencies):
            planned.append((
                f'Drop table {table_name}',
                f"DROP TABLE IF EXISTS {self._table(table_name)} CASCADE;",
            ))

        if tables:
            planned.append((
                'Clean ir_model_data for removed tables',
                "DELETE FROM ir_model_data\n"
                "WHERE model IN (\n"
                "  SELECT model FROM ir_model\n"
                f"  WHERE replace(model, '.', '_') = ANY({sql_text_array(tables)})\n"
                ");",
            ))

        if modules:
            planned.append((
                'Remove Enterprise Edition models',
                f"DELETE FROM ir_model\nWHERE id IN (\n  {self._superset_model_ids(modules)}\n);",
            ))

        planned.append(('Refresh planner statistics', 'ANALYZE;'))

        steps = [
            MigrationStep(step_number=number, step_name=name, sql=statement)
            for number, (name, statement) in enumerate(planned, start=1)
        ]
        logger.info(
            f"Planned {len(steps)} migration steps: {len(modules)} modules, "
            f"{len(tables)} tables, {len(seen)} foreign keys"
        )
        return steps


def plan_migration_steps(
    analysis: Union[SupersetAnalysis, Dict],
    catalog: Optional[SupersetCatalog] = None,
    schema: Optional[str] = None,
) -> List[MigrationStep]:
    """
    Convenience function to plan migration steps.

    Args:
        analysis: SupersetAnalysis of the staging database (or its dict form)
        catalog: SupersetCatalog for UI asset patterns
        schema: Schema holding the tables to drop

    Returns:
        Ordered list of MigrationStep

    Raises:
        InvalidIdentifierError: If a name in the analysis fails validation
    """
    if isinstance(analysis, dict):
        analysis = SupersetAnalysis.from_dict(analysis)
    return MigrationStepPlanner(catalog=catalog, schema=schema).plan(analysis)

"""
Data Loss Analysis Module

Column-level detail for tables the comparator flagged:

- analyze_incompatible_fields: for each incompatible_diff table, how many
  rows carry data in each missing column, whether that column looks
  business-critical, and sample values and records.
- sample_missing_tables: for each missing_in_target table, a sample of rows
  and the table's data classification.
"""

from typing import Any, Dict, List, Optional, Sequence
import logging

from ee_ce_migration.catalog import SupersetCatalog
from ee_ce_migration.config import (
    DATA_LOSS_SAMPLE_LIMIT,
    DISTINCT_VALUE_SAMPLE_LIMIT,
    MISSING_TABLE_SAMPLE_LIMIT,
)
from ee_ce_migration.exceptions import SchemaProbeError
from ee_ce_migration.models import ColumnDataLoss, FieldDataLossAnalysis, TableClassification
from ee_ce_migration.utils import to_jsonable

logger = logging.getLogger(__name__)


def _analyze_column(inspector, catalog: SupersetCatalog, table_name: str,
                    column: Dict[str, Any]) -> ColumnDataLoss:
    name = column['name']
    records_with_data = inspector.count_non_null(table_name, name)
    samples: List[Any] = []
    if records_with_data:
        samples = inspector.sample_distinct_values(table_name, name, DISTINCT_VALUE_SAMPLE_LIMIT)
    return ColumnDataLoss(
        column_name=name,
        data_type=column['data_type'],
        records_with_data=records_with_data,
        is_business_critical=catalog.is_business_critical_field(name, table_name),
        sample_values=to_jsonable(samples),
    )


def analyze_table_data_loss(inspector, catalog: SupersetCatalog,
                            classification: TableClassification) -> FieldDataLossAnalysis:
    """
    Analyze the missing columns of one incompatible_diff table.

    Raises:
        SchemaProbeError: If a query fails
    """
    table_name = classification.table_name
    missing = set(classification.missing_columns)
    columns = [c for c in inspector.get_columns(table_name) if c['name'] in missing]

    total = inspector.get_row_count(table_name)
    with_loss = inspector.count_rows_with_any_value(table_name, classification.missing_columns)

    samples: List[Dict[str, Any]] = []
    if with_loss:
        try:
            samples = inspector.sample_rows_with_any_value(
                table_name, classification.missing_columns, DATA_LOSS_SAMPLE_LIMIT
            )
        except SchemaProbeError as e:
            logger.warning(f"Could not sample records for {table_name}: {e}")
        for record in samples:
            record['_missing_in_target'] = list(classification.missing_columns)

    return FieldDataLossAnalysis(
        table_name=table_name,
        data_type=catalog.classify_table(table_name),
        missing_columns=[_analyze_column(inspector, catalog, table_name, c) for c in columns],
        total_records_in_table=total,
        records_with_data_loss=with_loss,
        sample_records=to_jsonable(samples),
    )


def analyze_incompatible_fields(
    inspector,
    incompatible_tables: Sequence[TableClassification],
    catalog: Optional[SupersetCatalog] = None,
) -> Dict[str, Any]:
    """
    Column-level data-loss report over incompatible_diff tables.

    Tables holding business data come first, then tables with the most
    records at risk. A table whose queries fail is reported with its error
    and zero counts.

    Args:
        inspector: SchemaInspector for the source database
        incompatible_tables: incompatible_diff classifications
        catalog: SupersetCatalog with the classification heuristics

    Returns:
        Dict with 'tables' (list of FieldDataLossAnalysis dicts) and 'summary'
    """
    catalog = catalog or SupersetCatalog()
    results: List[FieldDataLossAnalysis] = []

    for classification in incompatible_tables:
        table_name = classification.table_name
        logger.info(f"Analyzing data loss for table: {table_name}")
        try:
            results.append(analyze_table_data_loss(inspector, catalog, classification))
        except (SchemaProbeError, ValueError) as e:
            logger.warning(f"✗ {table_name}: data loss analysis failed: {e}")
            results.append(FieldDataLossAnalysis(
                table_name=table_name,
                data_type=catalog.classify_table(table_name),
                missing_columns=[],
                total_records_in_table=classification.source_record_count,
                records_with_data_loss=0,
                error=str(e),
            ))

    results.sort(key=lambda r: (
        r.data_type['category'] != 'business_data',
        -r.records_with_data_loss,
    ))

    summary = {
        'total_tables': len(results),
        'business_data_tables': sum(
            1 for r in results if r.data_type['category'] == 'business_data'
        ),
        'total_records_at_risk': sum(r.records_with_data_loss for r in results),
        'critical_fields_count': sum(
            1 for r in results for c in r.missing_columns if c.is_business_critical
        ),
        'tables_with_errors': sum(1 for r in results if r.error),
    }

    logger.info(
        f"Data loss analysis: {summary['total_tables']} tables, "
        f"{summary['total_records_at_risk']:,} records at risk, "
        f"{summary['critical_fields_count']} business-critical fields"
    )

    return {
        'tables': [r.to_dict() for r in results],
        'summary': summary,
    }


def sample_missing_tables(
    inspector,
    missing_tables: Sequence[TableClassification],
    catalog: Optional[SupersetCatalog] = None,
    limit: int = MISSING_TABLE_SAMPLE_LIMIT,
) -> Dict[str, Any]:
    """
    Sample rows from tables that do not exist in the target.

    Sample rows are projected to the columns that hold a value in at least
    one sampled row, which keeps wide, sparse tables readable.

    Returns:
        Dict with 'tables' (per-table samples) and 'summary'
    """
    catalog = catalog or SupersetCatalog()
    tables: List[Dict[str, Any]] = []

    for classification in missing_tables:
        table_name = classification.table_name
        entry: Dict[str, Any] = {
            'table_name': table_name,
            'record_count': classification.source_record_count,
            'data_type': catalog.classify_table(table_name),
            'is_superset_table': catalog.is_superset_table(table_name),
            'columns': [],
            'sample_records': [],
            'error': None,
        }
        try:
            rows = inspector.sample_rows(table_name, limit)
            populated = [
                column for column in inspector.column_names(table_name)
                if any(row.get(column) is not None for row in rows)
            ]
            entry['columns'] = populated
            entry['sample_records'] = to_jsonable(
                [{column: row.get(column) for column in populated} for row in rows]
            )
        except (SchemaProbeError, ValueError) as e:
            logger.warning(f"✗ {table_name}: sampling failed: {e}")
            entry['error'] = str(e)
        tables.append(entry)

    tables.sort(key=lambda t: (t['data_type']['category'] != 'business_data', -t['record_count']))

    return {
        'tables': tables,
        'summary': {
            'total_tables': len(tables),
            'total_records': sum(t['record_count'] for t in tables),
            'superset_tables': sum(1 for t in tables if t['is_superset_table']),
            'business_data_tables': sum(
                1 for t in tables if t['data_type']['category'] == 'business_data'
            ),
        },
    }

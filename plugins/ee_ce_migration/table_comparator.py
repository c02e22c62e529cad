"""
Table Comparator Module

This module classifies every populated source table against the target schema:

1. missing_in_target  - the table does not exist in target
2. incompatible_diff  - a source column holding data is absent from target
3. identical_records  - same row count and every row equal on non-null columns
4. compatible_diff    - schema is safe but the data differs

Columns that are entirely null in source carry no risk and are ignored when
deciding compatibility. Row equality is checked field by field over a
deterministic ordering of both sides; equal row counts alone never make a
table identical.
"""

from itertools import zip_longest
from typing import List, Optional
import logging

from ee_ce_migration.config import get_comparison_batch_size
from ee_ce_migration.exceptions import SchemaProbeError
from ee_ce_migration.models import (
    COMPATIBLE_DIFF,
    IDENTICAL_RECORDS,
    INCOMPATIBLE_DIFF,
    MISSING_IN_TARGET,
    TableClassification,
    TableComparisonResult,
)

logger = logging.getLogger(__name__)


class TableComparator:
    """
    Compares a source schema with a target schema table by table.

    A failure while probing one table is logged and recorded in the result's
    errors; the pass carries on with the remaining tables.
    """

    def __init__(self, source, target, batch_size: Optional[int] = None):
        """
        Initialize the comparator.

        Args:
            source: SchemaInspector for the source (read-only) database
            target: SchemaInspector for the target database
            batch_size: Rows per page for the field-level check
        """
        self.source = source
        self.target = target
        self.batch_size = batch_size or get_comparison_batch_size()

    def compare(self, tables: Optional[List[str]] = None) -> TableComparisonResult:
        """
        Run one comparison pass.

        Args:
            tables: Restrict the pass to these source tables (default: all)

        Returns:
            TableComparisonResult with one classification per populated table
        """
        source_tables = self.source.list_tables()
        if tables is not None:
            wanted = set(tables)
            source_tables = [t for t in source_tables if t in wanted]
        self.target.list_tables()

        logger.info(f"Comparing {len(source_tables)} source tables against target")

        result = TableComparisonResult()
        skipped_empty = 0

        for table_name in source_tables:
            try:
                classification = self.classify_table(table_name)
            except (SchemaProbeError, ValueError) as e:
                logger.warning(f"✗ {table_name}: comparison failed: {e}")
                result.errors.append({'table_name': table_name, 'error': str(e)})
                continue

            if classification is None:
                skipped_empty += 1
                continue

            result.tables.append(classification)
            logger.info(f"✓ {table_name}: {classification.category}")

        summary = result.summary
        logger.info(
            f"Comparison complete: {summary['total_tables']} populated tables "
            f"({skipped_empty} empty skipped) - "
            f"{summary[MISSING_IN_TARGET]} missing, "
            f"{summary[INCOMPATIBLE_DIFF]} incompatible, "
            f"{summary[COMPATIBLE_DIFF]} compatible with differences, "
            f"{summary[IDENTICAL_RECORDS]} identical, "
            f"{summary['errors']} errors"
        )
        return result

    def classify_table(self, table_name: str) -> Optional[TableClassification]:
        """
        Classify one source table.

        Returns:
            TableClassification, or None if the source table has no rows

        Raises:
            SchemaProbeError: If a query against either database fails
        """
        source_count = self.source.get_row_count(table_name)
        if source_count == 0:
            return None

        source_columns = self.source.column_names(table_name)
        non_null_columns = self.source.get_non_null_columns(table_name)
        null_only_columns = [c for c in source_columns if c not in non_null_columns]

        if not self.target.table_exists(table_name):
            return TableClassification(
                table_name=table_name,
                category=MISSING_IN_TARGET,
                source_record_count=source_count,
                null_only_columns=null_only_columns,
            )

        target_columns = set(self.target.column_names(table_name))
        target_count = self.target.get_row_count(table_name)

        missing_columns = [c for c in non_null_columns if c not in target_columns]
        if missing_columns:
            return TableClassification(
                table_name=table_name,
                category=INCOMPATIBLE_DIFF,
                source_record_count=source_count,
                target_record_count=target_count,
                missing_columns=missing_columns,
                null_only_columns=null_only_columns,
            )

        identical = (
            source_count == target_count
            and self.rows_match(table_name, non_null_columns)
        )
        return TableClassification(
            table_name=table_name,
            category=IDENTICAL_RECORDS if identical else COMPATIBLE_DIFF,
            source_record_count=source_count,
            target_record_count=target_count,
            null_only_columns=null_only_columns,
        )

    def rows_match(self, table_name: str, columns: List[str]) -> bool:
        """
        Field-level equality of source and target over the given columns.

        Both sides are read in the same deterministic order and compared batch
        by batch; the first differing row (or a length mismatch) stops the scan.
        """
        if not columns:
            return True

        source_batches = self.source.iter_projection(table_name, columns, self.batch_size)
        target_batches = self.target.iter_projection(table_name, columns, self.batch_size)

        rows_compared = 0
        for source_batch, target_batch in zip_longest(source_batches, target_batches):
            if source_batch != target_batch:
                logger.info(
                    f"{table_name}: rows differ within batch starting at row {rows_compared}"
                )
                return False
            rows_compared += len(source_batch)

        logger.debug(f"{table_name}: {rows_compared} rows identical on {len(columns)} columns")
        return True


def compare_schemas(source, target, batch_size: Optional[int] = None,
                    tables: Optional[List[str]] = None) -> TableComparisonResult:
    """
    Convenience function to compare two schemas.

    Args:
        source: SchemaInspector for the source database
        target: SchemaInspector for the target database
        batch_size: Rows per page for the field-level check
        tables: Restrict the pass to these source tables

    Returns:
        TableComparisonResult
    """
    return TableComparator(source, target, batch_size=batch_size).compare(tables)

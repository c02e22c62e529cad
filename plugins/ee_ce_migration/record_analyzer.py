"""
Record Compatibility Analyzer

Refines the comparator's table labels into record-level exposure.

- incompatible_diff tables: exact. A record is at risk when any missing
  column that actually carries data is non-null on that record. When none of
  the missing columns carry data the table is reported 100% compatible.
- compatible_diff tables: estimate. min(source, target) rows are counted as
  compatible and the remainder as at risk, which is an upper bound.

Results are a derived view; the comparator's classifications are never
modified.
"""

from typing import Optional, Sequence
import logging

from ee_ce_migration.config import RECORD_SAMPLE_LIMIT
from ee_ce_migration.exceptions import SchemaProbeError
from ee_ce_migration.models import (
    COMPATIBLE_DIFF,
    INCOMPATIBLE_DIFF,
    DetailedAnalysisResult,
    RecordCompatibilityResult,
    TableClassification,
    percentage,
)
from ee_ce_migration.utils import to_jsonable

logger = logging.getLogger(__name__)


class RecordCompatibilityAnalyzer:
    """Computes per-table record exposure for tables with schema differences."""

    def __init__(self, source, target, sample_limit: int = RECORD_SAMPLE_LIMIT):
        """
        Args:
            source: SchemaInspector for the source database
            target: SchemaInspector for the target database
            sample_limit: At-risk records sampled per table
        """
        self.source = source
        self.target = target
        self.sample_limit = sample_limit

    def analyze(
        self,
        compatible_tables: Sequence[TableClassification],
        incompatible_tables: Sequence[TableClassification],
    ) -> DetailedAnalysisResult:
        result = DetailedAnalysisResult()

        for classification in incompatible_tables:
            result.tables.append(self._guarded(self.analyze_incompatible, classification))
        for classification in compatible_tables:
            result.tables.append(self._guarded(self.analyze_compatible, classification))

        summary = result.summary
        logger.info(
            f"Record analysis complete: {summary['tables_analyzed']} tables, "
            f"{summary['total_records']:,} records, "
            f"{summary['ce_compatible_records']:,} compatible, "
            f"{summary['ee_only_records']:,} at risk"
        )
        return result

    def _guarded(self, analyze, classification: TableClassification) -> RecordCompatibilityResult:
        """Run one table's analysis; a query error reports the whole table at risk."""
        try:
            table_result = analyze(classification)
            logger.info(
                f"✓ {classification.table_name}: {table_result.percentage_compatible}% compatible "
                f"({table_result.ee_only_records:,} of {table_result.total_records:,} at risk)"
            )
            return table_result
        except (SchemaProbeError, ValueError) as e:
            logger.warning(f"✗ {classification.table_name}: record analysis failed: {e}")
            total = classification.source_record_count
            return RecordCompatibilityResult(
                table_name=classification.table_name,
                category=classification.category,
                total_records=total,
                ce_compatible_records=0,
                ee_only_records=total,
                percentage_compatible=0.0,
                exact=False,
                error=str(e),
            )

    def analyze_incompatible(self, classification: TableClassification) -> RecordCompatibilityResult:
        table_name = classification.table_name
        total = self.source.get_row_count(table_name)

        non_null = set(self.source.get_non_null_columns(table_name))
        columns_with_data = [c for c in classification.missing_columns if c in non_null]

        if not columns_with_data:
            return RecordCompatibilityResult(
                table_name=table_name,
                category=INCOMPATIBLE_DIFF,
                total_records=total,
                ce_compatible_records=total,
                ee_only_records=0,
                percentage_compatible=100.0,
            )

        at_risk = self.source.count_rows_with_any_value(table_name, columns_with_data)
        samples = []
        if at_risk and self.sample_limit:
            samples = self.source.sample_rows_with_any_value(
                table_name, columns_with_data, self.sample_limit
            )

        return RecordCompatibilityResult(
            table_name=table_name,
            category=INCOMPATIBLE_DIFF,
            total_records=total,
            ce_compatible_records=total - at_risk,
            ee_only_records=at_risk,
            percentage_compatible=percentage(total - at_risk, total),
            columns_with_data=columns_with_data,
            sample_records=to_jsonable(samples),
        )

    def analyze_compatible(self, classification: TableClassification) -> RecordCompatibilityResult:
        table_name = classification.table_name
        source_count = self.source.get_row_count(table_name)
        target_count = self.target.get_row_count(table_name)

        compatible = min(source_count, target_count)
        return RecordCompatibilityResult(
            table_name=table_name,
            category=COMPATIBLE_DIFF,
            total_records=source_count,
            ce_compatible_records=compatible,
            ee_only_records=source_count - compatible,
            percentage_compatible=percentage(compatible, source_count),
            exact=False,
        )


def analyze_record_compatibility(
    source,
    target,
    compatible_tables: Sequence[TableClassification],
    incompatible_tables: Sequence[TableClassification],
    sample_limit: Optional[int] = None,
) -> DetailedAnalysisResult:
    """
    Convenience function for record-level analysis.

    Args:
        source: SchemaInspector for the source database
        target: SchemaInspector for the target database
        compatible_tables: compatible_diff classifications
        incompatible_tables: incompatible_diff classifications
        sample_limit: At-risk records sampled per table

    Returns:
        DetailedAnalysisResult
    """
    analyzer = RecordCompatibilityAnalyzer(
        source, target,
        sample_limit=RECORD_SAMPLE_LIMIT if sample_limit is None else sample_limit,
    )
    return analyzer.analyze(compatible_tables, incompatible_tables)

"""
Result Models

Dataclasses shared by the comparator, analyzers, exporter, planner, executor
and validator. Every model converts to a JSON-safe dict (to_dict) so results
can travel through XCom and be stored in the config database; the ones that
are read back also have from_dict.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ee_ce_migration.utils import to_jsonable

# Table categories assigned by the comparator
MISSING_IN_TARGET = 'missing_in_target'
IDENTICAL_RECORDS = 'identical_records'
COMPATIBLE_DIFF = 'compatible_diff'
INCOMPATIBLE_DIFF = 'incompatible_diff'

TABLE_CATEGORIES = (MISSING_IN_TARGET, IDENTICAL_RECORDS, COMPATIBLE_DIFF, INCOMPATIBLE_DIFF)


@dataclass(frozen=True)
class TableClassification:
    """Classification of one populated source table against the target schema."""

    table_name: str
    category: str
    source_record_count: int
    target_record_count: Optional[int] = None
    missing_columns: List[str] = field(default_factory=list)
    null_only_columns: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.category not in TABLE_CATEGORIES:
            raise ValueError(f"Unknown table category '{self.category}'")
        if self.category == INCOMPATIBLE_DIFF and not self.missing_columns:
            raise ValueError(f"{self.table_name}: incompatible_diff requires missing columns")
        if self.category != INCOMPATIBLE_DIFF and self.missing_columns:
            raise ValueError(
                f"{self.table_name}: missing columns are only allowed on incompatible_diff"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableClassification":
        return cls(
            table_name=data['table_name'],
            category=data['category'],
            source_record_count=data['source_record_count'],
            target_record_count=data.get('target_record_count'),
            missing_columns=list(data.get('missing_columns') or []),
            null_only_columns=list(data.get('null_only_columns') or []),
        )


@dataclass
class TableComparisonResult:
    """Output of one comparator pass."""

    tables: List[TableClassification] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def total_tables(self) -> int:
        return len(self.tables)

    def count(self, category: str) -> int:
        return sum(1 for t in self.tables if t.category == category)

    def tables_in(self, category: str) -> List[TableClassification]:
        return [t for t in self.tables if t.category == category]

    @property
    def summary(self) -> Dict[str, int]:
        summary = {category: self.count(category) for category in TABLE_CATEGORIES}
        summary['total_tables'] = self.total_tables
        summary['errors'] = len(self.errors)
        return summary

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': self.summary,
            'tables': [t.to_dict() for t in self.tables],
            'errors': list(self.errors),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableComparisonResult":
        return cls(
            tables=[TableClassification.from_dict(t) for t in data.get('tables', [])],
            errors=list(data.get('errors') or []),
        )


@dataclass
class RecordCompatibilityResult:
    """
    Record-level exposure of one table.

    exact is False for compatible_diff tables, where the numbers are the
    min(source, target) estimate and ee_only_records is an upper bound.
    """

    table_name: str
    category: str
    total_records: int
    ce_compatible_records: int
    ee_only_records: int
    percentage_compatible: float
    exact: bool = True
    columns_with_data: List[str] = field(default_factory=list)
    sample_records: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(asdict(self))


@dataclass
class DetailedAnalysisResult:
    """Per-table record compatibility plus aggregate totals."""

    tables: List[RecordCompatibilityResult] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, Any]:
        total = sum(t.total_records for t in self.tables)
        compatible = sum(t.ce_compatible_records for t in self.tables)
        return {
            'tables_analyzed': len(self.tables),
            'total_records': total,
            'ce_compatible_records': compatible,
            'ee_only_records': sum(t.ee_only_records for t in self.tables),
            'percentage_compatible': percentage(compatible, total),
            'tables_with_errors': sum(1 for t in self.tables if t.error),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': self.summary,
            'tables': [t.to_dict() for t in self.tables],
        }


@dataclass
class ColumnDataLoss:
    """Data carried by one source column that the target does not have."""

    column_name: str
    data_type: str
    records_with_data: int
    is_business_critical: bool
    sample_values: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(asdict(self))


@dataclass
class FieldDataLossAnalysis:
    """Column-level data-loss report for one incompatible_diff table."""

    table_name: str
    data_type: Dict[str, str]
    missing_columns: List[ColumnDataLoss]
    total_records_in_table: int
    records_with_data_loss: int
    sample_records: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(asdict(self))


@dataclass
class ForeignKey:
    """A foreign-key constraint: table.column -> foreign_table.foreign_column."""

    constraint_name: str
    table_name: str
    column_name: str
    foreign_table_name: str
    foreign_column_name: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SupersetAnalysis:
    """Footprint of the superset edition in one database."""

    modules_found: List[Dict[str, Any]] = field(default_factory=list)
    tables_found: List[Dict[str, Any]] = field(default_factory=list)
    foreign_key_dependencies: List[ForeignKey] = field(default_factory=list)
    record_counts: Dict[str, int] = field(default_factory=dict)
    estimated_export_size_mb: float = 0.0
    risk_level: str = 'low'
    warnings: List[str] = field(default_factory=list)

    @property
    def module_names(self) -> List[str]:
        return [m['name'] for m in self.modules_found]

    @property
    def table_names(self) -> List[str]:
        return [t['table_name'] for t in self.tables_found]

    def to_dict(self) -> Dict[str, Any]:
        data = to_jsonable(asdict(self))
        data['total_records'] = sum(self.record_counts.values())
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SupersetAnalysis":
        return cls(
            modules_found=list(data.get('modules_found') or []),
            tables_found=list(data.get('tables_found') or []),
            foreign_key_dependencies=[
                ForeignKey(**fk) for fk in data.get('foreign_key_dependencies') or []
            ],
            record_counts=dict(data.get('record_counts') or {}),
            estimated_export_size_mb=data.get('estimated_export_size_mb', 0.0),
            risk_level=data.get('risk_level', 'low'),
            warnings=list(data.get('warnings') or []),
        )


@dataclass
class ExportCheckpoint:
    """Progress of one module export within a job."""

    job_id: int
    module_name: str
    status: str = 'pending'
    records_exported: int = 0
    total_records: int = 0
    file_path: Optional[str] = None
    file_size_bytes: Optional[int] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(asdict(self))


@dataclass(frozen=True)
class MigrationStep:
    """One planned statement. Planned steps are never mutated; execution copies them."""

    step_number: int
    step_name: str
    sql: str
    rows_affected: int = 0
    execution_time_ms: int = 0
    status: str = 'pending'
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationStep":
        return cls(
            step_number=data['step_number'],
            step_name=data['step_name'],
            sql=data['sql'],
            rows_affected=data.get('rows_affected', 0),
            execution_time_ms=data.get('execution_time_ms', 0),
            status=data.get('status', 'pending'),
            error_message=data.get('error_message'),
        )


@dataclass
class MigrationResult:
    success: bool
    steps: List[MigrationStep] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'dry_run': self.dry_run,
            'steps': [s.to_dict() for s in self.steps],
            'errors': list(self.errors),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationResult":
        return cls(
            success=bool(data.get('success')),
            steps=[MigrationStep.from_dict(s) for s in data.get('steps', [])],
            errors=list(data.get('errors') or []),
            dry_run=bool(data.get('dry_run')),
        )


@dataclass
class ValidationCheck:
    check_name: str
    check_type: str
    status: str
    details: str
    records_found: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationResult:
    """Aggregate of validation checks: fail dominates warning dominates pass."""

    checks: List[ValidationCheck] = field(default_factory=list)

    @property
    def overall_status(self) -> str:
        statuses = {c.status for c in self.checks}
        if 'fail' in statuses:
            return 'fail'
        if 'warning' in statuses:
            return 'warning'
        return 'pass'

    @property
    def summary(self) -> Dict[str, int]:
        return {
            'total': len(self.checks),
            'passed': sum(1 for c in self.checks if c.status == 'pass'),
            'failed': sum(1 for c in self.checks if c.status == 'fail'),
            'warnings': sum(1 for c in self.checks if c.status == 'warning'),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'overall_status': self.overall_status,
            'summary': self.summary,
            'checks': [c.to_dict() for c in self.checks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationResult":
        return cls(checks=[ValidationCheck(**c) for c in data.get('checks', [])])


def percentage(part: int, total: int) -> float:
    """part/total as a percentage rounded to two decimals; an empty total is 100%."""
    if total <= 0:
        return 100.0
    return round(part * 100.0 / total, 2)

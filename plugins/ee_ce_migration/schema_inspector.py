"""
Schema Inspection Module

This module provides the existence, count and projection queries shared by
the comparator, the analyzers, the exporter and the validator.

Table and column names are never taken from callers as-is: each one is
checked against the tables and columns enumerated from the live catalog
before being composed into a statement with psycopg2.sql.Identifier.
"""

from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple
import logging

import psycopg2
from psycopg2 import sql

from ee_ce_migration.config import get_schema_name
from ee_ce_migration.exceptions import SchemaProbeError
from ee_ce_migration.models import ForeignKey
from ee_ce_migration.utils import IdentifierAllowList, validate_sql_identifier

logger = logging.getLogger(__name__)


class SchemaInspector:
    """
    Read-side view of one database schema.

    Provides methods for:
    - Enumerating tables and columns (cached per inspector)
    - Row counts and non-null column detection (one scan per table)
    - Batched, deterministically ordered projections for row comparison
    - Foreign key and table size lookups
    """

    def __init__(self, helper, schema: Optional[str] = None):
        """
        Initialize the inspector.

        Args:
            helper: PooledPostgresHelper (or any object with get_records/get_first)
            schema: Schema to inspect (default: MIGRATION_SCHEMA or public)
        """
        self.helper = helper
        self.schema = validate_sql_identifier(schema or get_schema_name(), "schema name")
        self._table_allow_list: Optional[IdentifierAllowList] = None
        self._columns: Dict[str, List[Dict[str, Any]]] = {}

    def refresh(self) -> None:
        """Forget cached tables and columns."""
        self._table_allow_list = None
        self._columns = {}

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def list_tables(self) -> List[str]:
        """List base tables in the schema, sorted by name."""
        rows = self.helper.get_records(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """,
            [self.schema],
        )
        tables = [row[0] for row in rows]
        valid = []
        for table in tables:
            try:
                validate_sql_identifier(table, "table name")
                valid.append(table)
            except ValueError:
                logger.warning(f"Skipping table with unsupported name in {self.schema}: {table!r}")
        self._table_allow_list = IdentifierAllowList(valid, "table name")
        return valid

    def _tables(self) -> IdentifierAllowList:
        if self._table_allow_list is None:
            self.list_tables()
        return self._table_allow_list

    def table_exists(self, table_name: str) -> bool:
        return table_name in self._tables()

    def list_tables_matching(self, names: Sequence[str], like_patterns: Sequence[str]) -> List[str]:
        """List tables whose name is in names or matches any LIKE pattern."""
        rows = self.helper.get_records(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
              AND (table_name = ANY(%s::text[]) OR table_name LIKE ANY(%s::text[]))
            ORDER BY table_name
            """,
            [self.schema, list(names), list(like_patterns)],
        )
        tables = self._tables()
        return [row[0] for row in rows if row[0] in tables]

    def get_columns(self, table_name: str) -> List[Dict[str, Any]]:
        """
        Get column metadata for a table.

        Returns:
            List of dicts with name, data_type, nullable, ordinal (ordinal order)
        """
        self._tables().check(table_name)
        if table_name not in self._columns:
            rows = self._query(
                table_name,
                """
                SELECT column_name, data_type, is_nullable, ordinal_position
                FROM information_schema.columns
                WHERE table_schema = %s AND table_name = %s
                ORDER BY ordinal_position
                """,
                [self.schema, table_name],
            )
            self._columns[table_name] = [
                {
                    'name': row[0],
                    'data_type': row[1],
                    'nullable': row[2] == 'YES',
                    'ordinal': row[3],
                }
                for row in rows
            ]
        return self._columns[table_name]

    def column_names(self, table_name: str) -> List[str]:
        return [c['name'] for c in self.get_columns(table_name)]

    def _column_allow_list(self, table_name: str) -> IdentifierAllowList:
        return IdentifierAllowList(self.column_names(table_name), f"column of {table_name}")

    def _table_ref(self, table_name: str) -> sql.Composed:
        self._tables().check(table_name)
        return sql.SQL('{}.{}').format(sql.Identifier(self.schema), sql.Identifier(table_name))

    def _column_refs(self, table_name: str, columns: Iterable[str]) -> List[sql.Identifier]:
        allowed = self._column_allow_list(table_name)
        return [sql.Identifier(c) for c in allowed.check_all(columns)]

    def _query(self, table_name: str, query, params=None, first: bool = False):
        """Run a table-scoped query, converting database errors to SchemaProbeError."""
        try:
            if first:
                return self.helper.get_first(query, params)
            return self.helper.get_records(query, params)
        except psycopg2.Error as e:
            raise SchemaProbeError(table_name, str(e).strip()) from e

    def _query_dicts(self, table_name: str, query, params=None) -> List[Dict[str, Any]]:
        try:
            columns, rows = self.helper.get_records_with_columns(query, params)
        except psycopg2.Error as e:
            raise SchemaProbeError(table_name, str(e).strip()) from e
        return [dict(zip(columns, row)) for row in rows]

    # ------------------------------------------------------------------
    # Counts
    # ------------------------------------------------------------------

    def get_row_count(self, table_name: str) -> int:
        query = sql.SQL("SELECT COUNT(*) FROM {}").format(self._table_ref(table_name))
        row = self._query(table_name, query, first=True)
        return int(row[0]) if row else 0

    def get_non_null_columns(self, table_name: str) -> List[str]:
        """
        Columns holding at least one non-null value.

        All columns are counted in a single aggregate query, so the table is
        scanned once regardless of its width.
        """
        columns = self.column_names(table_name)
        if not columns:
            return []

        query = sql.SQL("SELECT {} FROM {}").format(
            sql.SQL(', ').join(
                sql.SQL("COUNT({})").format(ref) for ref in self._column_refs(table_name, columns)
            ),
            self._table_ref(table_name),
        )
        row = self._query(table_name, query, first=True)
        if not row:
            return []
        return [column for column, count in zip(columns, row) if count]

    def _any_not_null(self, table_name: str, columns: Sequence[str]) -> sql.Composed:
        if not columns:
            raise ValueError(f"{table_name}: at least one column is required")
        return sql.SQL(' OR ').join(
            sql.SQL("{} IS NOT NULL").format(ref) for ref in self._column_refs(table_name, columns)
        )

    def count_rows_with_any_value(self, table_name: str, columns: Sequence[str]) -> int:
        """Count rows where any of the given columns is non-null."""
        query = sql.SQL("SELECT COUNT(*) FROM {} WHERE {}").format(
            self._table_ref(table_name), self._any_not_null(table_name, columns)
        )
        row = self._query(table_name, query, first=True)
        return int(row[0]) if row else 0

    def sample_rows_with_any_value(
        self,
        table_name: str,
        columns: Sequence[str],
        limit: int,
    ) -> List[Dict[str, Any]]:
        """Sample full rows where any of the given columns is non-null."""
        query = sql.SQL("SELECT {} FROM {} WHERE {} LIMIT %s").format(
            sql.SQL(', ').join(self._column_refs(table_name, self.column_names(table_name))),
            self._table_ref(table_name),
            self._any_not_null(table_name, columns),
        )
        return self._query_dicts(table_name, query, [limit])

    def count_non_null(self, table_name: str, column: str) -> int:
        query = sql.SQL("SELECT COUNT({}) FROM {}").format(
            self._column_refs(table_name, [column])[0], self._table_ref(table_name)
        )
        row = self._query(table_name, query, first=True)
        return int(row[0]) if row else 0

    def sample_distinct_values(self, table_name: str, column: str, limit: int) -> List[Any]:
        ref = self._column_refs(table_name, [column])[0]
        query = sql.SQL("SELECT DISTINCT {} FROM {} WHERE {} IS NOT NULL LIMIT %s").format(
            ref, self._table_ref(table_name), ref
        )
        return [row[0] for row in self._query(table_name, query, [limit])]

    def sample_rows(self, table_name: str, limit: int) -> List[Dict[str, Any]]:
        query = sql.SQL("SELECT * FROM {} LIMIT %s").format(self._table_ref(table_name))
        return self._query_dicts(table_name, query, [limit])

    # ------------------------------------------------------------------
    # Row data
    # ------------------------------------------------------------------

    def iter_projection(
        self,
        table_name: str,
        columns: Sequence[str],
        batch_size: int,
    ) -> Iterator[List[Tuple[Any, ...]]]:
        """
        Yield batches of rows projected to columns, each value cast to text.

        Rows are ordered by every projected column (byte-wise collation, nulls
        first), so two databases holding the same data yield the same sequence.
        """
        refs = self._column_refs(table_name, columns)
        if not refs:
            return
        casts = [sql.SQL("CAST({} AS text)").format(ref) for ref in refs]
        query = sql.SQL("SELECT {} FROM {} ORDER BY {} LIMIT %s OFFSET %s").format(
            sql.SQL(', ').join(casts),
            self._table_ref(table_name),
            sql.SQL(', ').join(
                sql.SQL('{} COLLATE "C" NULLS FIRST').format(cast) for cast in casts
            ),
        )

        offset = 0
        while True:
            rows = self._query(table_name, query, [batch_size, offset])
            if not rows:
                break
            yield [tuple(row) for row in rows]
            if len(rows) < batch_size:
                break
            offset += batch_size

    def fetch_batch(
        self,
        table_name: str,
        order_by: Sequence[str],
        limit: int,
        offset: int,
    ) -> Tuple[List[str], List[Tuple[Any, ...]]]:
        """
        Fetch one page of full rows ordered by an explicit sort key.

        Returns:
            (column_names, rows)
        """
        if not order_by:
            raise ValueError(f"{table_name}: an explicit sort key is required")
        query = sql.SQL("SELECT * FROM {} ORDER BY {} LIMIT %s OFFSET %s").format(
            self._table_ref(table_name),
            sql.SQL(', ').join(self._column_refs(table_name, order_by)),
        )
        try:
            columns, rows = self.helper.get_records_with_columns(query, [limit, offset])
        except psycopg2.Error as e:
            raise SchemaProbeError(table_name, str(e).strip()) from e
        return columns, rows

    # ------------------------------------------------------------------
    # Relationships and size
    # ------------------------------------------------------------------

    def get_foreign_keys(self, tables: Optional[Sequence[str]] = None) -> List[ForeignKey]:
        """
        Get foreign keys defined on, or pointing at, the given tables.

        Args:
            tables: Restrict to constraints touching these tables (None = all)
        """
        query = """
            SELECT
                tc.constraint_name,
                tc.table_name,
                kcu.column_name,
                ccu.table_name AS foreign_table_name,
                ccu.column_name AS foreign_column_name
            FROM information_schema.table_constraints AS tc
            JOIN information_schema.key_column_usage AS kcu
              ON tc.constraint_name = kcu.constraint_name
             AND tc.table_schema = kcu.table_schema
            JOIN information_schema.constraint_column_usage AS ccu
              ON ccu.constraint_name = tc.constraint_name
             AND ccu.table_schema = tc.table_schema
            WHERE tc.constraint_type = 'FOREIGN KEY'
              AND tc.table_schema = %s
        """
        params: List[Any] = [self.schema]
        if tables is not None:
            query += " AND (ccu.table_name = ANY(%s::text[]) OR tc.table_name = ANY(%s::text[]))"
            params.extend([list(tables), list(tables)])
        query += " ORDER BY tc.table_name, tc.constraint_name, kcu.column_name"

        rows = self.helper.get_records(query, params)
        return [
            ForeignKey(
                constraint_name=row[0],
                table_name=row[1],
                column_name=row[2],
                foreign_table_name=row[3],
                foreign_column_name=row[4],
            )
            for row in rows
        ]

    def get_table_size_mb(self, table_name: str) -> float:
        """Total on-disk size of a table (with indexes and toast) in MB."""
        row = self._query(
            table_name,
            """
            SELECT pg_total_relation_size(c.oid)
            FROM pg_class c
            JOIN pg_namespace n ON n.oid = c.relnamespace
            WHERE n.nspname = %s AND c.relname = %s
            """,
            [self.schema, table_name],
            first=True,
        )
        if not row or row[0] is None:
            return 0.0
        return round(row[0] / (1024 * 1024), 2)

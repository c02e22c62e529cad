"""
Pooled PostgreSQL Helper

A hook-like wrapper over a PostgresConnectionPool. It exposes the same
get_records / get_first / run methods as PostgresHook, but every connection
comes from (and goes back to) a caller-owned pool with a bounded acquire
timeout.
"""

from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Tuple, Union
import logging

import psycopg2
from psycopg2 import sql as pgsql

logger = logging.getLogger(__name__)

Query = Union[str, pgsql.Composable]


class PooledPostgresHelper:
    """
    Helper class that mimics the PostgresHook interface on top of a pool.

    Read-only helpers are backed by a pool whose sessions were opened with
    default_transaction_read_only, and run() refuses to execute on them.
    """

    def __init__(self, pool):
        """
        Initialize the helper.

        Args:
            pool: PostgresConnectionPool to draw connections from
        """
        self._pool = pool
        self.conn_id = pool.conn_id

    @property
    def read_only(self) -> bool:
        return self._pool.read_only

    def get_conn(self):
        """
        Acquire a connection from the pool.

        Raises:
            ConnectivityError: If no connection is available in time
        """
        return self._pool.acquire()

    def release_conn(self, conn, discard: bool = False) -> None:
        """Return a connection to the pool (None is ignored)."""
        self._pool.release(conn, discard=discard)

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """
        Context manager that acquires a connection and always releases it.

        Usage:
            with helper.connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute(...)
        """
        conn = self.get_conn()
        try:
            yield conn
        finally:
            self.release_conn(conn)

    def _log_failure(self, kind: str, error: Exception, query: Query,
                     parameters: Optional[Sequence[Any]]) -> None:
        logger.error(f"Error executing {kind} on {self.conn_id}: {error}")
        logger.error(f"Query: {query}")
        if parameters:
            logger.error(f"Parameters: {parameters}")

    def get_records(
        self,
        query: Query,
        parameters: Optional[Sequence[Any]] = None
    ) -> List[Tuple[Any, ...]]:
        """
        Execute a query and return all rows as a list of tuples.

        Args:
            query: SQL text or psycopg2.sql composition
            parameters: Optional query parameters

        Returns:
            List of tuples, one per row
        """
        conn = None
        try:
            conn = self.get_conn()
            with conn.cursor() as cursor:
                cursor.execute(query, parameters)
                rows = cursor.fetchall()
            conn.rollback()
            return rows
        except Exception as e:
            if conn is not None:
                self._log_failure("query", e, query, parameters)
            raise
        finally:
            self.release_conn(conn)

    def get_first(
        self,
        query: Query,
        parameters: Optional[Sequence[Any]] = None
    ) -> Optional[Tuple[Any, ...]]:
        """
        Execute a query and return the first row, or None if there are no rows.
        """
        conn = None
        try:
            conn = self.get_conn()
            with conn.cursor() as cursor:
                cursor.execute(query, parameters)
                row = cursor.fetchone()
            conn.rollback()
            return row
        except Exception as e:
            if conn is not None:
                self._log_failure("query", e, query, parameters)
            raise
        finally:
            self.release_conn(conn)

    def get_records_with_columns(
        self,
        query: Query,
        parameters: Optional[Sequence[Any]] = None
    ) -> Tuple[List[str], List[Tuple[Any, ...]]]:
        """
        Execute a query and return (column_names, rows).
        """
        conn = None
        try:
            conn = self.get_conn()
            with conn.cursor() as cursor:
                cursor.execute(query, parameters)
                columns = [desc[0] for desc in cursor.description or []]
                rows = cursor.fetchall()
            conn.rollback()
            return columns, rows
        except Exception as e:
            if conn is not None:
                self._log_failure("query", e, query, parameters)
            raise
        finally:
            self.release_conn(conn)

    def run(
        self,
        query: Query,
        parameters: Optional[Sequence[Any]] = None
    ) -> int:
        """
        Execute a statement and commit it.

        Returns:
            Number of rows affected

        Raises:
            PermissionError: If this helper is read-only
        """
        if self.read_only:
            raise PermissionError(f"Connection '{self.conn_id}' is read-only")

        conn = None
        discard = False
        try:
            conn = self.get_conn()
            with conn.cursor() as cursor:
                cursor.execute(query, parameters)
                rowcount = cursor.rowcount
            conn.commit()
            return rowcount
        except Exception as e:
            if conn is not None:
                self._log_failure("statement", e, query, parameters)
                try:
                    conn.rollback()
                except psycopg2.Error as rollback_error:
                    discard = True
                    logger.error(f"Rollback failed on {self.conn_id}: {rollback_error}")
            raise
        finally:
            self.release_conn(conn, discard=discard)

"""
Connection Pool Registry

Bounded PostgreSQL connection pools keyed by Airflow connection ID.

A PoolRegistry is an explicit object owned by the caller (a DAG task, a test,
a script). Pools are created on first use and drained by close()/close_all();
nothing is cached at module or class level, so two registries never share
connections.

Usage:
    with PoolRegistry() as registry:
        source = registry.helper('odoo_source', read_only=True)
        rows = source.get_records("SELECT 1")
"""

from typing import Any, Dict, List, Optional
from airflow.providers.postgres.hooks.postgres import PostgresHook
import logging
import queue
import threading

import psycopg2
from psycopg2 import extensions

from ee_ce_migration.config import get_pool_config
from ee_ce_migration.exceptions import ConnectivityError

logger = logging.getLogger(__name__)


class PostgresConnectionPool:
    """
    Thread-safe, bounded pool of psycopg2 connections.

    A semaphore limits total connections and a LIFO queue keeps idle ones
    for reuse. acquire() never blocks longer than acquire_timeout, so a
    stuck phase fails fast instead of hanging a job.

    Usage:
        pool = PostgresConnectionPool(params, max_conn=5)
        conn = pool.acquire()
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
        finally:
            pool.release(conn)
    """

    def __init__(
        self,
        conn_params: Dict[str, Any],
        min_conn: int = 1,
        max_conn: int = 5,
        acquire_timeout: float = 10.0,
        conn_id: str = '',
        read_only: bool = False,
    ):
        """
        Initialize the pool.

        Args:
            conn_params: Keyword arguments for psycopg2.connect
            min_conn: Connections to pre-create (warm start)
            max_conn: Maximum concurrent connections (hard limit)
            acquire_timeout: Seconds to wait when the pool is exhausted
            conn_id: Logical connection ID, for logging and errors
            read_only: Open every session with default_transaction_read_only
        """
        self._params = dict(conn_params)
        self._min_conn = min_conn
        self._max_conn = max_conn
        self._acquire_timeout = acquire_timeout
        self.conn_id = conn_id
        self.read_only = read_only

        self._available: "queue.LifoQueue[Any]" = queue.LifoQueue()
        self._semaphore = threading.BoundedSemaphore(max_conn)
        self._all_connections: List[Any] = []
        self._lock = threading.Lock()
        self._closed = False

        logger.info(
            f"Initializing PostgreSQL pool for {conn_id}: min={min_conn}, max={max_conn}"
            f"{' (read-only)' if read_only else ''}"
        )

        for _ in range(min_conn):
            try:
                self._available.put(self._create_connection())
            except ConnectivityError as e:
                logger.warning(f"Failed to pre-warm pool for {conn_id}: {e}")

    def _create_connection(self):
        """Create a new psycopg2 connection."""
        try:
            conn = psycopg2.connect(**self._params)
        except psycopg2.Error as e:
            raise ConnectivityError(
                f"Could not connect to database for connection '{self.conn_id}': {e}",
                conn_id=self.conn_id,
            ) from e
        with self._lock:
            self._all_connections.append(conn)
        logger.debug(
            f"Created new connection for {self.conn_id} (pool size: {len(self._all_connections)})"
        )
        return conn

    def _validate_connection(self, conn) -> bool:
        """Check if connection is still usable."""
        if conn.closed:
            return False
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
            conn.rollback()
            return True
        except psycopg2.Error:
            return False

    def _close_connection(self, conn) -> None:
        """Close a connection and forget it."""
        try:
            conn.close()
        except psycopg2.Error as e:
            logger.debug(f"Ignoring error while closing connection for {self.conn_id}: {e}")
        with self._lock:
            if conn in self._all_connections:
                self._all_connections.remove(conn)

    def acquire(self):
        """
        Acquire a connection from the pool.

        Returns:
            Open psycopg2 connection

        Raises:
            ConnectivityError: If no connection is available within acquire_timeout
                or a new connection cannot be opened
            RuntimeError: If the pool has been closed
        """
        if self._closed:
            raise RuntimeError(f"Connection pool for '{self.conn_id}' has been closed")

        acquired = self._semaphore.acquire(timeout=self._acquire_timeout)
        if not acquired:
            raise ConnectivityError(
                f"Could not acquire connection for '{self.conn_id}' within "
                f"{self._acquire_timeout}s (pool max: {self._max_conn})",
                conn_id=self.conn_id,
            )

        try:
            try:
                conn = self._available.get_nowait()
                if self._validate_connection(conn):
                    return conn
                self._close_connection(conn)
                return self._create_connection()
            except queue.Empty:
                return self._create_connection()
        except Exception:
            self._semaphore.release()
            raise

    def release(self, conn, discard: bool = False) -> None:
        """
        Return a connection to the pool.

        Any transaction left open is rolled back first.

        Args:
            conn: Connection to return (None is ignored)
            discard: Close the connection instead of reusing it
        """
        if conn is None:
            return

        try:
            if self._closed or discard or conn.closed:
                self._close_connection(conn)
                return

            if conn.get_transaction_status() != extensions.TRANSACTION_STATUS_IDLE:
                try:
                    conn.rollback()
                except psycopg2.Error:
                    self._close_connection(conn)
                    return
            self._available.put(conn)
        finally:
            self._semaphore.release()

    def close(self) -> None:
        """Close all connections and shut down the pool."""
        self._closed = True

        while True:
            try:
                conn = self._available.get_nowait()
                self._close_connection(conn)
            except queue.Empty:
                break

        with self._lock:
            remaining = list(self._all_connections)
        for conn in remaining:
            self._close_connection(conn)

        logger.info(f"PostgreSQL pool for {self.conn_id} closed")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def stats(self) -> Dict[str, int]:
        """Get pool statistics."""
        return {
            "total": len(self._all_connections),
            "available": self._available.qsize(),
            "max": self._max_conn,
        }


def build_connection_params(
    conn_id: str,
    connect_timeout: int = 10,
    statement_timeout_ms: int = 0,
    read_only: bool = False,
) -> Dict[str, Any]:
    """
    Build psycopg2.connect keyword arguments from an Airflow connection.

    Args:
        conn_id: Airflow connection ID
        connect_timeout: Seconds allowed for the connection handshake
        statement_timeout_ms: Server-side statement timeout (0 = none)
        read_only: Force read-only sessions

    Returns:
        Dict of connection keyword arguments
    """
    conn = PostgresHook.get_connection(conn_id)

    params: Dict[str, Any] = {
        'host': conn.host,
        'port': conn.port or 5432,
        'dbname': conn.schema or conn.login,
        'user': conn.login,
        'password': conn.password,
        'connect_timeout': connect_timeout,
        'application_name': 'ee_ce_migration',
    }

    extras = conn.extra_dejson or {}
    for key in ('sslmode', 'sslrootcert', 'sslcert', 'sslkey'):
        if extras.get(key):
            params[key] = extras[key]

    options = []
    if statement_timeout_ms:
        options.append(f"-c statement_timeout={int(statement_timeout_ms)}")
    if read_only:
        options.append("-c default_transaction_read_only=on")
    if options:
        params['options'] = ' '.join(options)

    return params


class PoolRegistry:
    """
    Registry of connection pools keyed by Airflow connection ID.

    Pools are created on first use and reused for the lifetime of the
    registry. Each conn_id gets its own pool; a conn_id registered as
    read-only cannot later be handed out as writable, or the reverse.
    """

    def __init__(self, pool_config: Optional[Dict[str, Any]] = None):
        """
        Initialize the registry.

        Args:
            pool_config: Overrides for get_pool_config() (min_conn, max_conn,
                acquire_timeout, connect_timeout, statement_timeout_ms)
        """
        self._config = get_pool_config()
        if pool_config:
            self._config.update(pool_config)
        self._pools: Dict[str, PostgresConnectionPool] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "PoolRegistry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close_all()

    def get_pool(self, conn_id: str, read_only: bool = False) -> PostgresConnectionPool:
        """
        Get the pool for a connection ID, creating it on first use.

        Raises:
            ValueError: If conn_id already has a pool with a different read_only mode
        """
        with self._lock:
            pool = self._pools.get(conn_id)
            if pool is not None and not pool.closed:
                if pool.read_only != read_only:
                    raise ValueError(
                        f"Connection '{conn_id}' is already registered as "
                        f"{'read-only' if pool.read_only else 'writable'}"
                    )
                return pool

            params = build_connection_params(
                conn_id,
                connect_timeout=self._config['connect_timeout'],
                statement_timeout_ms=self._config['statement_timeout_ms'],
                read_only=read_only,
            )
            pool = PostgresConnectionPool(
                params,
                min_conn=self._config['min_conn'],
                max_conn=self._config['max_conn'],
                acquire_timeout=self._config['acquire_timeout'],
                conn_id=conn_id,
                read_only=read_only,
            )
            self._pools[conn_id] = pool
            return pool

    def helper(self, conn_id: str, read_only: bool = False):
        """Get a PooledPostgresHelper bound to the pool for conn_id."""
        from ee_ce_migration.pg_helper import PooledPostgresHelper

        return PooledPostgresHelper(self.get_pool(conn_id, read_only=read_only))

    def test_connection(self, conn_id: str) -> Dict[str, Any]:
        """
        Test that a connection can be opened and report the server version.

        Returns:
            Dict with success, message and (on success) server_version
        """
        try:
            helper = self.helper(conn_id, read_only=conn_id in self._pools and self._pools[conn_id].read_only)
            row = helper.get_first("SELECT version()")
            return {
                'success': True,
                'message': 'Connection successful',
                'server_version': row[0] if row else None,
            }
        except (ConnectivityError, psycopg2.Error) as e:
            logger.warning(f"Connection test failed for {conn_id}: {e}")
            return {'success': False, 'message': str(e)}

    def close(self, conn_id: str) -> None:
        """Drain and remove the pool for one connection ID."""
        with self._lock:
            pool = self._pools.pop(conn_id, None)
        if pool:
            pool.close()

    def close_all(self) -> None:
        """Drain every pool owned by this registry."""
        with self._lock:
            pools = list(self._pools.values())
            self._pools.clear()
        for pool in pools:
            pool.close()

    @property
    def conn_ids(self) -> List[str]:
        return sorted(self._pools)

"""
PostgreSQL persistence for the Notify entity store.

This module provides:
- ThreadedConnectionPool management with health checks and retry logic
- A DatabaseConnection wrapper with context-managed connections
- PostgresEntityStore, a JSONB document store with version-guarded updates
"""

import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union, cast

import psycopg2
from psycopg2 import pool
from psycopg2.extras import Json, RealDictCursor

from ..utils.logging_config import get_logger, log_store_operation
from .entity_store import EntityStore, StoreUnavailable, _check_kind

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS entities (
        kind VARCHAR(32) NOT NULL,
        entity_id VARCHAR(128) NOT NULL,
        data JSONB NOT NULL DEFAULT '{}'::jsonb,
        version INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (kind, entity_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_entities_data ON entities USING GIN (data jsonb_path_ops)",
    "CREATE INDEX IF NOT EXISTS idx_entities_kind_status ON entities (kind, (data->>'status'))",
    "CREATE INDEX IF NOT EXISTS idx_entities_payment_id ON entities ((data->>'payment_id')) WHERE kind = 'transaction'",
    (
        "CREATE INDEX IF NOT EXISTS idx_entities_messaging_id ON entities ((data->>'messaging_message_id')) "
        "WHERE kind = 'notification'"
    ),
]


class ConnectionPoolManager:
    """
    Manages a ThreadedConnectionPool with health monitoring and retry logic.
    """

    def __init__(
        self,
        connection_params: Dict[str, Any],
        min_connections: int = 2,
        max_connections: int = 20,
        connection_timeout: int = 30,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
    ):
        self.connection_params = connection_params.copy()
        self.connection_params["connect_timeout"] = connection_timeout
        self.min_connections = min_connections
        self.max_connections = max_connections
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._pool: Optional[pool.ThreadedConnectionPool] = None
        self._pool_lock = threading.Lock()
        self._health_check_interval = 300  # 5 minutes
        self._last_health_check: Optional[datetime] = None
        self.logger = get_logger("database.pool")

        self._initialize_pool()

    def _initialize_pool(self):
        try:
            with self._pool_lock:
                if self._pool is not None:
                    self._pool.closeall()

                self._pool = pool.ThreadedConnectionPool(
                    minconn=self.min_connections, maxconn=self.max_connections, **self.connection_params
                )
                self.logger.info(
                    "Connection pool initialized",
                    extra={
                        "event": "pool_initialized",
                        "min_connections": self.min_connections,
                        "max_connections": self.max_connections,
                    },
                )
        except psycopg2.Error as e:
            self.logger.error(
                "Failed to initialize connection pool",
                extra={"event": "pool_init_failed", "error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            raise StoreUnavailable(str(e)) from e

    def _is_connection_healthy(self, conn) -> bool:
        try:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
            return True
        except psycopg2.Error as e:
            self.logger.warning(
                "Connection health check failed",
                extra={"event": "health_check_failed", "error": str(e), "error_type": type(e).__name__},
            )
            return False

    def _perform_health_check(self):
        """Check one pooled connection every few minutes and rebuild the pool if it is stale."""
        current_time = datetime.now()
        if self._last_health_check is not None and current_time - self._last_health_check <= timedelta(
            seconds=self._health_check_interval
        ):
            return

        self._last_health_check = current_time
        conn = self._acquire()
        if conn is None:
            self._initialize_pool()
            return
        healthy = self._is_connection_healthy(conn)
        self.return_connection(conn)
        if not healthy:
            self.logger.warning("Unhealthy connection detected, reinitializing pool", extra={"event": "pool_reinit"})
            self._initialize_pool()

    def _acquire(self):
        for attempt in range(self.retry_attempts):
            try:
                with self._pool_lock:
                    if self._pool is None:
                        raise StoreUnavailable("connection pool is not initialized")
                    conn = self._pool.getconn()
                return conn
            except (psycopg2.Error, pool.PoolError) as e:
                self.logger.warning(
                    "Connection attempt failed",
                    extra={
                        "event": "connection_attempt_failed",
                        "attempt": attempt + 1,
                        "max_attempts": self.retry_attempts,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                if attempt < self.retry_attempts - 1:
                    time.sleep(self.retry_delay * (2**attempt))

        self.logger.error(
            "All connection attempts failed",
            extra={"event": "all_connection_attempts_failed", "attempts": self.retry_attempts},
        )
        return None

    def get_connection(self):
        """Get a connection from the pool, or None if every attempt failed."""
        self._perform_health_check()
        return self._acquire()

    def return_connection(self, conn):
        with self._pool_lock:
            if self._pool and conn:
                self._pool.putconn(conn)

    def close_all_connections(self):
        with self._pool_lock:
            if self._pool:
                self._pool.closeall()
                self._pool = None
                self.logger.info("All connections closed", extra={"event": "all_connections_closed"})


class DatabaseConnection:
    """
    Database access with connection pooling and health monitoring.
    """

    def __init__(
        self,
        host="localhost",
        port=5432,
        database="notify",
        user="postgres",
        password="postgres",
        min_connections=2,
        max_connections=20,
        connection_timeout=30,
    ):
        self.connection_params = {"host": host, "port": port, "database": database, "user": user, "password": password}
        self.pool_manager = ConnectionPoolManager(
            connection_params=self.connection_params,
            min_connections=min_connections,
            max_connections=max_connections,
            connection_timeout=connection_timeout,
        )

        self.logger = get_logger("database.connection")
        self.logger.info(
            "DatabaseConnection initialized",
            extra={"event": "db_connection_init", "database": database, "host": host, "port": port},
        )

    @contextmanager
    def get_connection(self):
        """
        Context manager that borrows a pooled connection.

        Rolls back on error and always returns the connection to the pool.
        """
        conn = self.pool_manager.get_connection()
        if conn is None:
            raise StoreUnavailable("Failed to get connection from pool")
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            self.pool_manager.return_connection(conn)

    def execute_query(
        self, query: str, params: Optional[Union[tuple, dict]] = None, fetch_one: bool = False, fetch_all: bool = True
    ) -> Any:
        """
        Execute a query and commit.

        Args:
            query: SQL query to execute
            params: Query parameters
            fetch_one: Return single row
            fetch_all: Return all rows

        Returns:
            Query results based on fetch parameters
        """
        with self.get_connection() as conn:
            try:
                with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                    cursor.execute(query, params)

                    if fetch_one:
                        result = cursor.fetchone()
                    elif fetch_all:
                        result = cursor.fetchall()
                    else:
                        result = None

                    conn.commit()
                    return result

            except psycopg2.OperationalError as e:
                self.logger.error(
                    "Database unavailable",
                    extra={"event": "query_unavailable", "error": str(e), "error_type": type(e).__name__},
                )
                raise StoreUnavailable(str(e)) from e
            except psycopg2.Error as e:
                self.logger.error(
                    "Database query error",
                    extra={
                        "event": "query_error",
                        "error": str(e),
                        "error_type": type(e).__name__,
                        "query": query[:200] + "..." if len(query) > 200 else query,
                        "params_provided": params is not None,
                    },
                    exc_info=True,
                )
                raise

    def test_connection(self) -> bool:
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute("SELECT 1")
                    return cursor.fetchone() is not None
        except (psycopg2.Error, StoreUnavailable) as e:
            self.logger.error(
                "Connection test failed",
                extra={"event": "connection_test_failed", "error": str(e), "error_type": type(e).__name__},
            )
            return False

    def close_all_connections(self):
        self.pool_manager.close_all_connections()


class PostgresEntityStore(EntityStore):
    """Entity store backed by a single JSONB ``entities`` table."""

    def __init__(self, db: DatabaseConnection):
        self.db = db
        self.logger = get_logger("store.postgres")

    def create_schema(self):
        for statement in SCHEMA_STATEMENTS:
            self.db.execute_query(statement, fetch_all=False)
        self.logger.info("Entity schema ensured", extra={"event": "schema_created"})

    def get(self, kind, entity_id):
        _check_kind(kind)
        row = self.db.execute_query(
            "SELECT data FROM entities WHERE kind = %s AND entity_id = %s", (kind, entity_id), fetch_one=True
        )
        return dict(row["data"]) if row else None

    def put(self, kind, entity_id, partial):
        _check_kind(kind)
        query = """
        INSERT INTO entities (kind, entity_id, data)
        VALUES (%s, %s, %s)
        ON CONFLICT (kind, entity_id) DO UPDATE SET
            data = entities.data || EXCLUDED.data,
            version = entities.version + 1,
            updated_at = CURRENT_TIMESTAMP
        RETURNING data
        """
        row = self.db.execute_query(query, (kind, entity_id, Json(partial)), fetch_one=True)
        log_store_operation("put", kind, entity_id=entity_id)
        return dict(row["data"])

    def query(self, kind, **equals):
        _check_kind(kind)
        rows = self.db.execute_query(
            "SELECT data FROM entities WHERE kind = %s AND data @> %s ORDER BY created_at",
            (kind, Json(equals)),
        )
        return [dict(row["data"]) for row in cast(List[Dict[str, Any]], rows)]

    def delete(self, kind, entity_id):
        _check_kind(kind)
        row = self.db.execute_query(
            "DELETE FROM entities WHERE kind = %s AND entity_id = %s RETURNING entity_id",
            (kind, entity_id),
            fetch_one=True,
        )
        log_store_operation("delete", kind, entity_id=entity_id, removed=row is not None)
        return row is not None

    def _get_versioned(self, kind, entity_id):
        _check_kind(kind)
        row = self.db.execute_query(
            "SELECT data, version FROM entities WHERE kind = %s AND entity_id = %s", (kind, entity_id), fetch_one=True
        )
        return (dict(row["data"]), row["version"]) if row else None

    def _compare_and_set(self, kind, entity_id, expected_version, change):
        query = """
        UPDATE entities
        SET data = data || %s, version = version + 1, updated_at = CURRENT_TIMESTAMP
        WHERE kind = %s AND entity_id = %s AND version = %s
        RETURNING data
        """
        row = self.db.execute_query(query, (Json(change), kind, entity_id, expected_version), fetch_one=True)
        return dict(row["data"]) if row else None

    def health_check(self) -> bool:
        return self.db.test_connection()

    def close(self):
        self.db.close_all_connections()


def create_database_connection(config_class=None, **kwargs) -> DatabaseConnection:
    """
    Create a DatabaseConnection from a configuration class.

    Args:
        config_class: Configuration class with database settings
        **kwargs: Override parameters
    """
    if config_class:
        db_config = config_class.get_database_config()
        db_config.update(kwargs)
    else:
        db_config = kwargs

    return DatabaseConnection(**db_config)


def create_postgres_store(config_class=None, **kwargs) -> PostgresEntityStore:
    return PostgresEntityStore(create_database_connection(config_class, **kwargs))

"""
PostgreSQL client with connection pooling and per-request user context.

Uses psycopg2 with ThreadedConnectionPool. The acting user ID is read from
the contextvar and written to `app.current_user_id` on each checkout of a
connection, so row-level policies and triggers can attribute changes.

Single statements go through execute*() and commit immediately. Multi-step
units (checkout, redemption) go through transaction(), which commits once at
the end and rolls back on any exception.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple
from uuid import UUID, uuid4

import psycopg2
import psycopg2.extras
import psycopg2.pool

from utils.user_context import peek_current_user_id

logger = logging.getLogger(__name__)

# Global JSONB registration flag
_jsonb_registered = False


def _convert_params(params: Tuple | Dict | None) -> Tuple | Dict | None:
    """Convert UUID objects to strings."""
    if params is None:
        return None

    def convert(value: Any) -> Any:
        if isinstance(value, UUID):
            return str(value)
        if isinstance(value, list):
            return [convert(v) for v in value]
        if isinstance(value, tuple):
            return tuple(convert(v) for v in value)
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        return value

    return convert(params)


class Transaction:
    """
    Query methods bound to one open connection.

    Nothing is committed until the owning transaction() block exits cleanly.
    """

    def __init__(self, conn):
        self._conn = conn

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        with self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            cur.execute(query, _convert_params(params))
            if cur.description:
                return [dict(row) for row in cur.fetchall()]
            return []

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute INSERT/UPDATE with RETURNING, return results."""
        return self.execute(query, params)

    def execute_rowcount(self, query: str, params: Tuple | Dict | None = None) -> int:
        """Execute a write and return the number of affected rows."""
        with self._conn.cursor() as cur:
            cur.execute(query, _convert_params(params))
            return cur.rowcount

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """
        Run a block under a SAVEPOINT.

        A failing statement inside the block is rolled back to the savepoint
        and the exception re-raised, leaving the outer transaction usable.
        """
        name = f"sp_{uuid4().hex}"
        with self._conn.cursor() as cur:
            cur.execute(f"SAVEPOINT {name}")
        try:
            yield
        except Exception:
            with self._conn.cursor() as cur:
                cur.execute(f"ROLLBACK TO SAVEPOINT {name}")
            raise
        with self._conn.cursor() as cur:
            cur.execute(f"RELEASE SAVEPOINT {name}")


class PostgresClient:
    """
    Pooled client; one pool per database URL, shared by every instance.

    Usage:
        db = PostgresClient(database_url)

        coupon = db.execute_single("SELECT * FROM coupons WHERE code = %s", (code,))

        with db.transaction() as tx:
            tx.execute_returning("INSERT INTO orders (...) VALUES (...) RETURNING *", ...)
            tx.execute_rowcount("UPDATE coupons SET used_count = used_count + 1 ...", ...)
    """

    _pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, minconn: int = 2, maxconn: int = 20):
        self._database_url = database_url
        self._minconn = minconn
        self._maxconn = maxconn
        self._pool()

    def _pool(self) -> psycopg2.pool.ThreadedConnectionPool:
        global _jsonb_registered
        with self._pools_lock:
            pool = self._pools.get(self._database_url)
            if pool is None:
                pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self._minconn,
                    maxconn=self._maxconn,
                    dsn=self._database_url,
                    connect_timeout=30,
                )
                if not _jsonb_registered:
                    psycopg2.extras.register_default_jsonb(globally=True)
                    _jsonb_registered = True
                self._pools[self._database_url] = pool
                logger.info(f"Connection pool created ({self._minconn}-{self._maxconn} connections)")
            return pool

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """
        Borrow a connection for a multi-statement unit of work.

        The acting user is stamped on the session as app.current_user_id
        ('' when nobody is acting). Commits when the block exits normally,
        rolls back on any exception, and always returns the connection.
        """
        pool = self._pool()
        conn = pool.getconn()
        if conn is None:
            raise RuntimeError("Could not get connection from pool")

        try:
            user_id = peek_current_user_id()
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT set_config('app.current_user_id', %s, false)",
                    (str(user_id) if user_id is not None else "",)
                )
            try:
                yield Transaction(conn)
            except Exception:
                conn.rollback()
                raise
            conn.commit()
        finally:
            pool.putconn(conn)

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Run one statement in its own transaction; row dicts, [] if none."""
        with self.transaction() as tx:
            return tx.execute(query, params)

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        with self.transaction() as tx:
            return tx.execute_single(query, params)

    def execute_returning(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """INSERT/UPDATE ... RETURNING in its own transaction."""
        with self.transaction() as tx:
            return tx.execute_returning(query, params)

    def execute_rowcount(self, query: str, params: Tuple | Dict | None = None) -> int:
        with self.transaction() as tx:
            return tx.execute_rowcount(query, params)

    def close(self) -> None:
        """Close this URL's pool."""
        with self._pools_lock:
            pool = self._pools.pop(self._database_url, None)
        if pool is not None:
            pool.closeall()

    @classmethod
    def close_all_pools(cls) -> None:
        with cls._pools_lock:
            pools = list(cls._pools.values())
            cls._pools.clear()
        for pool in pools:
            pool.closeall()

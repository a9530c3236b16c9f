import logging
from contextlib import contextmanager

from psycopg import Error as PsycopgError
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from budgetbuddy.core.config import settings

logger = logging.getLogger(__name__)

DB_POOL = ConnectionPool(
    settings.database_url,
    min_size=settings.db_pool_min,
    max_size=settings.db_pool_max,
    timeout=settings.db_pool_timeout,
    max_waiting=settings.db_pool_max_waiting,
    open=False,
    kwargs={"row_factory": dict_row},
)


def open_db_pool() -> None:
    DB_POOL.open()
    logger.info("Database pool opened (min=%d max=%d)", settings.db_pool_min, settings.db_pool_max)


def close_db_pool() -> None:
    DB_POOL.close()
    logger.info("Database pool closed")


@contextmanager
def db_conn():
    with DB_POOL.connection() as conn:
        yield conn


@contextmanager
def db_transaction():
    """Yield a cursor whose work is committed on exit or rolled back on error."""
    with db_conn() as conn, conn.cursor() as cur:
        try:
            yield cur
        except Exception:
            conn.rollback()
            raise
        conn.commit()


def db_ready() -> bool:
    try:
        with db_conn() as conn, conn.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
        return True
    except (PsycopgError, PoolTimeout) as exc:
        logger.warning("Database health check failed: %s", exc)
        return False

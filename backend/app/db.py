import os
from psycopg.rows import dict_row
from contextlib import contextmanager

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

DATABASE_URL = os.getenv("APP_DATABASE_URL") or os.getenv("DATABASE_URL") or "postgresql://localhost/backoffice"

def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default

# Pool sizing defaults are conservative for local/dev. Override in prod via env:
# - DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE
_POOL_MIN = _env_int("DB_POOL_MIN_SIZE", 1)
_POOL_MAX = _env_int("DB_POOL_MAX_SIZE", 10)

# Opened lazily on first use so importing the app does not require a database.
_pool = ConnectionPool(
    conninfo=DATABASE_URL,
    min_size=_POOL_MIN,
    max_size=_POOL_MAX,
    kwargs={"row_factory": dict_row},
    open=False,
)


@contextmanager
def _pooled_conn(pool: ConnectionPool):
    # `with get_conn() as conn:` commits on success, rolls back on exception
    # and returns the connection to the pool.
    if pool.closed:
        pool.open()
    with pool.connection() as conn:
        with conn:
            yield conn


def get_conn():
    return _pooled_conn(_pool)


def close_pool() -> None:
    if not _pool.closed:
        _pool.close()


def set_org_context(conn, organization_id: str):
    with conn.cursor() as cur:
        # `SET ... = %s` is not valid with the extended query protocol; use set_config().
        cur.execute(
            "SELECT set_config('app.current_organization_id', %s::text, true)",
            (organization_id,),
        )

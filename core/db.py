"""
core/db.py -- Shared SQLAlchemy engine construction.

Both repositories (auth/store.py and records/store.py) build their engine
here so SQLite gets the same connection settings everywhere.

Layer rule: core/ is the kernel. No imports from api/, auth/, records/,
media/, or offline/.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases ignore it.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine for db_url.

    check_same_thread=False lets FastAPI run sync handlers in its threadpool
    against the same SQLite connection pool.
    """
    if not db_url.startswith("sqlite"):
        return create_engine(db_url)
    engine = create_engine(db_url, connect_args={"check_same_thread": False})
    event.listen(engine, "connect", _set_wal_mode)
    return engine

import os

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    """Configure SQLite for concurrent merge workers writing snapshots."""
    cursor = dbapi_connection.cursor()
    # Wait for locks instead of failing immediately.
    cursor.execute("PRAGMA busy_timeout=5000")
    # Better concurrency (readers not blocked by writers).
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


DB_PATH = os.getenv(
    "REGISTRY_SYNC_DB_PATH",
    os.path.join(os.path.dirname(__file__), "data", "registry.db"),
)
SQLALCHEMY_DATABASE_URL = f"sqlite:///{DB_PATH}"


def make_engine(database_url: str = SQLALCHEMY_DATABASE_URL):
    """Create an engine with the SQLite pragmas attached."""

    eng = create_engine(
        database_url,
        connect_args={"check_same_thread": False, "timeout": 30},
        pool_pre_ping=True,
    )
    event.listen(eng, "connect", _set_sqlite_pragmas)
    return eng


engine = make_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

"""
Database Initialization Script

Creates the SQLite purchase log table for IAP Ledger.
Table: log_table (id, order_id, json, signature, status)
"""
import logging
import sqlite3
from pathlib import Path

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker

from ..config import settings
from .models import STATUS_VALUES

logger = logging.getLogger(__name__)


def create_tables(conn: sqlite3.Connection) -> None:
    """
    Create the purchase log table with indexes.

    Also enables WAL mode so the scheduler's reconciliation pass and API
    requests can read while another writer holds the log.
    """
    cursor = conn.cursor()

    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")  # 30 second timeout
    cursor.execute("PRAGMA synchronous=NORMAL")

    cursor.execute(f"""
        CREATE TABLE IF NOT EXISTS log_table (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            order_id TEXT NOT NULL UNIQUE,
            json TEXT NOT NULL,
            signature TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL CHECK(status IN ({STATUS_VALUES}))
        )
    """)

    cursor.execute("CREATE INDEX IF NOT EXISTS idx_log_table_status ON log_table(status)")

    conn.commit()
    logger.info("Purchase log table created")


def initialize_database(database_path: str = None) -> None:
    """
    Initialize the database with the purchase log table.

    This function is called during FastAPI startup.
    """
    db_path = Path(database_path or settings.database_path)

    logger.info(f"Initializing database at: {db_path}")

    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        create_tables(conn)
        logger.info(f"Database initialized successfully at {db_path}")
    finally:
        conn.close()


# ============================================================================
# SQLAlchemy Async Session Setup
# ============================================================================

def build_engine(database_path: str) -> AsyncEngine:
    """
    Create an async engine for a SQLite file.

    aiosqlite runs every statement on its own worker thread, so log reads and
    writes never block the event loop.
    """
    return create_async_engine(
        f"sqlite+aiosqlite:///{database_path}",
        echo=False,
        connect_args={
            "timeout": 30,  # 30 second timeout for lock acquisition
            "check_same_thread": False
        },
        pool_pre_ping=True,
        pool_recycle=3600
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Create a session factory that keeps loaded rows usable after commit."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


engine = build_engine(settings.database_path)
AsyncSessionLocal = build_session_factory(engine)


def main():
    """CLI entry point for initializing database."""
    logging.basicConfig(level=getattr(logging, settings.log_level))
    initialize_database()


if __name__ == "__main__":
    main()

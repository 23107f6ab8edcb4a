from collections.abc import Iterator
import logging

from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy import event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import QueuePool

from markpress.config import DB_CONNECT_ARGS, DB_URL

# Configure engine with connection pooling parameters to handle long-running processes
engine = create_engine(
    DB_URL,
    connect_args=DB_CONNECT_ARGS,
    poolclass=QueuePool,
    pool_size=5,
    max_overflow=10,
    pool_pre_ping=True,  # Verify connections before use
    pool_recycle=3600,   # Recycle connections after 1 hour
    echo=False           # Set to True for debugging SQL queries
)

if DB_URL.startswith("sqlite"):
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):  # noqa: ARG001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def init_db() -> None:
    import markpress.models  # noqa: F401 - registers tables on SQLModel.metadata

    SQLModel.metadata.create_all(engine)
    logging.getLogger("markpress.db").info("Database schema is up to date")


def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session


def ensure_connection() -> bool:
    """
    Verify that the database connection is alive.
    Used by the health endpoint to report database reachability.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except OperationalError:
        return False

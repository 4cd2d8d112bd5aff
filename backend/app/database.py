from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from app.config import get_settings
import logging
import os

logger = logging.getLogger(__name__)
settings = get_settings()

db_url = settings.database_url
is_sqlite = db_url.startswith("sqlite")

engine = create_engine(
    db_url,
    connect_args={"check_same_thread": False} if is_sqlite else {}
)

# Enable foreign key constraints for SQLite
# Without this, ON DELETE CASCADE doesn't work!
if is_sqlite:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_sqlite_schema():
    """Create missing tables for SQLite deployments.

    Non-SQLite databases are expected to be migrated out of band.
    """
    if not is_sqlite:
        return

    path = db_url.replace("sqlite:///", "", 1)
    if path and path != ":memory:":
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    Base.metadata.create_all(bind=engine)
    logger.info(f"SQLite schema ready ({len(Base.metadata.sorted_tables)} tables)")

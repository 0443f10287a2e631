# packages/botrunner_core/data/database.py
from sqlmodel import create_engine, SQLModel, Session
from typing import Generator

from botrunner_core.config import get_settings
import botrunner_core.data.models  # noqa: F401  (registers the tables)
from botrunner_core.utils import get_logger

logger = get_logger("database")

database_url = get_settings().DATABASE_URL
connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
engine = create_engine(database_url, echo=False, connect_args=connect_args)


def init_db():
    """
    initialize the database tables
    """
    SQLModel.metadata.create_all(engine)
    logger.info("✅ Database tables ready")


def get_session() -> Generator[Session, None, None]:
    """
    get the database session
    """
    with Session(engine) as session:
        yield session


def SessionLocal() -> Session:
    """
    Create a new database session
    """
    return Session(engine)

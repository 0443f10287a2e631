# packages/botrunner_core/data/__init__.py
from .database import engine, init_db, get_session, SessionLocal

__all__ = ["engine", "init_db", "get_session", "SessionLocal"]

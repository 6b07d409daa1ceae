# oracle_bridge/db.py
import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.exc import SQLAlchemyError

from oracle_bridge import monitoring

# Default dev DB: on Vercel api/index.py sets DATABASE_URL to /tmp before import
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./oracle_bridge.db")

def _make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)

engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def reconfigure(url: str):
    """Reconfigure the DB engine and session factory at runtime (for tests)."""
    global engine, SessionLocal
    engine.dispose()
    engine = _make_engine(url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    # Create tables if they don't exist
    try:
        # import models lazily so Base metadata has them
        import oracle_bridge.models as models  # noqa: F841
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError:
        # Surface in logs; don't crash the app at import time
        monitoring.logger.exception("DB init failed")


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Yield a session bound to the current engine. Commits when the block exits
    normally, rolls back and re-raises otherwise.
    """
    db: Session = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

"""Database connection and session management"""
from contextlib import contextmanager
from typing import Callable, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from app.core.config import settings

engine_kwargs = {
    "echo": settings.DEBUG,  # Log SQL queries in debug mode
}

# SQLite requires check_same_thread=False since detections are processed
# from the event loop while API requests run in the threadpool
if settings.DATABASE_URL.startswith("sqlite"):
    engine_kwargs["connect_args"] = {"check_same_thread": False}

# Create SQLAlchemy engine
engine = create_engine(settings.DATABASE_URL, **engine_kwargs)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models
Base = declarative_base()

SessionFactory = Callable[[], Session]


def get_db():
    """Dependency for FastAPI routes to get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session(
    session_factory: Optional[SessionFactory] = None,
) -> Generator[Session, None, None]:
    """
    Context manager for database sessions in non-request contexts.

    The detection pipeline opens one session per detection through this
    helper so that concurrent detections never share a session.

    Usage:
        with get_db_session() as db:
            result = db.query(Model).all()
            db.commit()  # If modifications made

    Args:
        session_factory: Optional factory (tests inject one bound to an
            in-memory engine). Defaults to SessionLocal.
    """
    db = (session_factory or SessionLocal)()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

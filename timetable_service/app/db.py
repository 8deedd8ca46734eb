from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Callable, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from timetable_service.app.settings import settings

SessionFactory = Callable[[], Session]


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    kwargs = {"echo": settings.DB_ECHO, "pool_pre_ping": True}
    if not settings.TIMETABLE_DATABASE_URL.startswith("sqlite"):
        kwargs["pool_size"] = settings.DB_POOL_SIZE
    return create_engine(settings.TIMETABLE_DATABASE_URL, **kwargs)


@lru_cache(maxsize=1)
def get_session_factory() -> SessionFactory:
    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: Optional[SessionFactory] = None) -> Iterator[Session]:
    """Commit on success, roll back on any error; one unit of work."""
    db = (factory or get_session_factory())()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

"""Database engine helpers using SQLModel."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.engine import Engine, make_url
from sqlmodel import Session, SQLModel, create_engine

from fulfillment_service.config import get_settings

_engine: Engine | None = None


def build_engine(url: str, *, echo: bool = False, pool_size: int = 10) -> Engine:
    options: dict = {"echo": echo, "pool_pre_ping": True}
    if make_url(url).get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_size"] = pool_size
    return create_engine(url, **options)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(
            settings.database.url,
            echo=settings.database.echo,
            pool_size=settings.database.pool_size,
        )
    return _engine


def reset_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


def init_db(engine: Engine | None = None) -> None:
    # Import registers every table on SQLModel.metadata.
    from fulfillment_service import models  # noqa: F401

    SQLModel.metadata.create_all(engine or get_engine())


@contextmanager
def session_scope() -> Iterator[Session]:
    session = Session(get_engine())
    try:
        yield session
        session.commit()
    except Exception:  # pragma: no cover - re-raised upstream
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Run one unit of work: commit on success, roll everything back on error."""
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise

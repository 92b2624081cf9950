# Database engine + session factory. Every API route gets a session via
# get_db(); background jobs open SessionLocal() directly.

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from settlement.core.config import settings
from settlement.core.errors import StoreUnavailable


def _engine_kwargs(url: str) -> dict:
    kwargs: dict = {"echo": settings.DB_ECHO, "future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": settings.DB_POOL_TIMEOUT_SECONDS,
        }
        return kwargs
    kwargs["pool_pre_ping"] = True
    kwargs["pool_timeout"] = settings.DB_POOL_TIMEOUT_SECONDS
    if url.startswith("postgresql") and settings.DB_STATEMENT_TIMEOUT_MS:
        kwargs["connect_args"] = {
            "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
        }
    return kwargs


engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session, *, commit: bool = True) -> Iterator[Session]:
    """Run a block of writes as one atomic unit.

    Commits when the block finishes and rolls back on any error, so a
    failure never leaves money-affecting rows half written. With
    ``commit=False`` the caller owns the transaction: nothing is committed
    or rolled back here. Connection level failures surface as
    ``StoreUnavailable``.
    """
    try:
        yield db
        if commit:
            db.commit()
    except OperationalError as exc:
        if commit:
            db.rollback()
        raise StoreUnavailable() from exc
    except Exception:
        if commit:
            db.rollback()
        raise

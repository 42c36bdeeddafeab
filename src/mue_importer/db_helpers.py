"""Catalog URL normalisation and dialect-specific upsert statements."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.orm import Session

_POSTGRES_ALIASES = {"postgres", "postgresql"}
_UPSERT_DIALECTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


def _absolute_sqlite(url: URL) -> URL:
    database = url.database or ""
    if database in {"", ":memory:"}:
        return url
    return url.set(database=str((Path.cwd() / database).resolve()))


def normalize_database_url(target: str | Path) -> str:
    """Return an absolute SQLAlchemy URL for a catalog target.

    Accepts a filesystem path (treated as SQLite), a SQLite URL with a
    relative path, or a PostgreSQL URL. Bare ``postgres://`` URLs are mapped
    onto the psycopg driver.
    """

    if isinstance(target, Path):
        return f"sqlite:///{target.resolve()}"

    raw = str(target).strip()
    if not raw:
        raise ValueError("catalog url cannot be empty")
    if "://" not in raw:
        return f"sqlite:///{Path(raw).resolve()}"

    url = make_url(raw)
    if url.drivername.startswith("sqlite"):
        url = _absolute_sqlite(url)
    elif url.drivername in _POSTGRES_ALIASES:
        url = url.set(drivername="postgresql+psycopg")
    return url.render_as_string(hide_password=False)


def dialect_insert(session: Session, table: Any) -> Any:
    """Return an INSERT for ``table`` that supports ``on_conflict_do_update``."""

    bind = session.get_bind()
    factory = _UPSERT_DIALECTS.get(bind.dialect.name)
    if factory is None:
        raise NotImplementedError(f"catalog upsert not supported on {bind.dialect.name}")
    return factory(table)


__all__ = ["normalize_database_url", "dialect_insert"]

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import psycopg2

from ..models.config_models import DatabaseConfig

"""PostgreSQL connection for the optional settlement result sink.

Connection parameter precedence:
    1. DATABASE_URL / PGDSN (whole DSN; .env is loaded with override first)
    2. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
    3. the ``database`` section of the config (dsn first, then fields)
"""

__all__ = ["resolve_dsn", "db_cursor"]


_PG_ENV_VARS = ("PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "PGDATABASE")


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """Build the libpq DSN for ``db_cfg``.

    Args:
        db_cfg: ``database`` section of the run config

    Returns:
        A DSN string; environment variables win over every config field
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN")
    if dsn:
        return dsn
    if db_cfg.dsn and not any(os.getenv(var) for var in _PG_ENV_VARS):
        return db_cfg.dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def db_cursor(db_cfg: DatabaseConfig) -> Iterator[Any]:
    """Yield a cursor inside one transaction: commit on success, rollback on error."""
    conn = psycopg2.connect(resolve_dsn(db_cfg))
    try:
        conn.autocommit = False
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import psycopg2

from ..models.config_models import DatabaseConfig
from .gateway import GatewayError

"""PostgreSQL connection handling.

Connection settings are resolved in this order:
    1. DATABASE_URL / PGDSN (full DSN)
    2. individual PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
    3. the `database` section of config/app.yml (fallback for missing parts)
The CLI and the API load `.env` with python-dotenv before calling in here.
"""


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    dsn_env = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn_env:
        return dsn_env
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
def db_cursor(db_cfg: DatabaseConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """Yield a cursor on an autocommit connection.

    Transaction boundaries are explicit BEGIN / COMMIT / ROLLBACK statements
    issued by the gateway.
    """
    try:
        conn = psycopg2.connect(resolve_dsn(db_cfg))
    except psycopg2.Error as e:
        raise GatewayError(f"connection failed: {e}") from e
    conn.autocommit = True
    cur = conn.cursor()
    try:
        yield cur
    finally:
        try:
            cur.close()
        finally:
            conn.close()

"""Database migration helpers."""

from __future__ import annotations

import logging
import pathlib
import sys
from typing import Iterable

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from cardvault.db.session import create_engine_from_env
from cardvault.logic.quota import QuotaRotator

logger = logging.getLogger(__name__)

SCHEMA_PATH = pathlib.Path(__file__).with_name("schema.sql")


def run_migrations(engine: Engine) -> None:
    """Apply schema.sql and make sure every configured PSA key has a quota row."""
    statements = list(_load_statements(SCHEMA_PATH.read_text()))
    with engine.begin() as conn:
        for stmt in statements:
            conn.execute(text(stmt))
    QuotaRotator(engine).ensure_rows()
    logger.info("Applied %s schema statements", len(statements))


def _load_statements(sql: str) -> Iterable[str]:
    buffer: list[str] = []
    for line in sql.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("--"):
            continue
        buffer.append(line)
        if stripped.endswith(";"):
            yield "\n".join(buffer)
            buffer.clear()
    if buffer:
        yield "\n".join(buffer)


def main() -> None:
    load_dotenv()
    engine = create_engine_from_env()
    try:
        run_migrations(engine)
    except SQLAlchemyError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()

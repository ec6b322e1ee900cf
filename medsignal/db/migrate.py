"""Apply ``schema.sql`` to the configured database."""

from __future__ import annotations

import logging
import pathlib
import sys
from typing import Iterable

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from medsignal.db.session import create_engine_from_env

logger = logging.getLogger(__name__)

SCHEMA_PATH = pathlib.Path(__file__).with_name("schema.sql")


def run_migrations(engine: Engine, schema_path: pathlib.Path = SCHEMA_PATH) -> int:
    """Run every statement in one transaction; returns how many ran."""
    statements = list(split_statements(schema_path.read_text(encoding="utf-8")))
    with engine.begin() as conn:
        for stmt in statements:
            conn.execute(text(stmt))
    return len(statements)


def split_statements(sql: str) -> Iterable[str]:
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
    logging.basicConfig(level=logging.INFO)
    engine = create_engine_from_env()
    try:
        count = run_migrations(engine)
    except SQLAlchemyError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        sys.exit(2)
    logger.info("Applied %s schema statements to %s", count, engine.url.render_as_string(hide_password=True))


if __name__ == "__main__":
    main()

"""Store value snapshots."""

from __future__ import annotations

from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from cardvault.utils.dates import utcnow

SNAPSHOT_LIMIT = 30


def save_snapshot(engine: Engine, value: float) -> int:
    with engine.begin() as conn:
        result = conn.execute(
            text("INSERT INTO analytics (value, created_at) VALUES (:value, :now) RETURNING id"),
            {"value": round(value, 2), "now": utcnow()},
        )
        return int(result.scalar_one())


def recent_snapshots(engine: Engine, limit: int = SNAPSHOT_LIMIT) -> list[dict[str, Any]]:
    """Newest first."""
    with engine.connect() as conn:
        rows = conn.execute(
            text("SELECT id, value, created_at FROM analytics ORDER BY created_at DESC, id DESC LIMIT :limit"),
            {"limit": limit},
        ).mappings()
        return [{"id": row["id"], "value": float(row["value"]), "created_at": row["created_at"]} for row in rows]

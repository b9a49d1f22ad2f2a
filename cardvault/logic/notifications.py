"""Admin notification records."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from cardvault.utils.dates import start_of_today_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_LENGTH = 3000
NOTIFICATION_TYPES = {"PSA", "TROLL"}


def create_notification(engine: Engine, title: str, kind: str, *, length: int = DEFAULT_LENGTH) -> int:
    with engine.begin() as conn:
        result = conn.execute(
            text(
                """
                INSERT INTO notifications (title, length, type, shown, created_at)
                VALUES (:title, :length, :type, FALSE, :created_at)
                RETURNING id
                """
            ),
            {"title": title, "length": length, "type": kind, "created_at": utcnow()},
        )
        notification_id = int(result.scalar_one())
    logger.info("Notification %s (%s): %s", notification_id, kind, title)
    return notification_id


def fetch_notifications(engine: Engine, kind: str) -> list[dict[str, Any]]:
    """Unacknowledged notifications of a type created today."""
    with engine.connect() as conn:
        rows = conn.execute(
            text(
                """
                SELECT id, title, length, type, created_at
                FROM notifications
                WHERE type = :type AND shown = FALSE AND created_at >= :since
                ORDER BY created_at
                """
            ),
            {"type": kind, "since": start_of_today_utc()},
        ).mappings()
        return [dict(row) for row in rows]


def clear_notification(engine: Engine, notification_id: int) -> bool:
    with engine.begin() as conn:
        result = conn.execute(
            text("UPDATE notifications SET shown = TRUE WHERE id = :id"), {"id": notification_id}
        )
    return result.rowcount == 1

"""Persisted leases that keep one import job in flight per external id."""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from cardvault.utils.dates import utcnow

logger = logging.getLogger(__name__)

DEFAULT_LEASE = timedelta(hours=1)


def claim(engine: Engine, external_id: str, kind: str, *, lease: timedelta = DEFAULT_LEASE) -> bool:
    """Claim the lease for external_id. False while another unexpired lease holds it."""
    now = utcnow()
    with engine.begin() as conn:
        row = conn.execute(
            text(
                """
                INSERT INTO import_locks (external_id, kind, lease_expires_at)
                VALUES (:external_id, :kind, :expires)
                ON CONFLICT (external_id) DO UPDATE SET
                  kind = excluded.kind,
                  lease_expires_at = excluded.lease_expires_at
                WHERE import_locks.lease_expires_at < :now
                RETURNING external_id
                """
            ),
            {"external_id": external_id, "kind": kind, "expires": now + lease, "now": now},
        ).first()
    if row is None:
        logger.info("Import of %s %s already in flight", kind, external_id)
        return False
    return True


def release(engine: Engine, external_id: str) -> None:
    with engine.begin() as conn:
        conn.execute(text("DELETE FROM import_locks WHERE external_id = :external_id"), {"external_id": external_id})


def active(engine: Engine, kind: str) -> list[str]:
    with engine.connect() as conn:
        rows = conn.execute(
            text(
                """
                SELECT external_id FROM import_locks
                WHERE kind = :kind AND lease_expires_at >= :now
                ORDER BY external_id
                """
            ),
            {"kind": kind, "now": utcnow()},
        )
        return [row[0] for row in rows]

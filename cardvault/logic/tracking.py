"""Apply carrier tracking results to lots."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from cardvault.ingest.models import TrackingInfo
from cardvault.ingest.ups import TERMINAL_STATUSES, UPSClient
from cardvault.utils.dates import utcnow
from cardvault.utils.errors import PipelineError
from cardvault.utils.rate_limit import in_batches

logger = logging.getLogger(__name__)

BATCH_SIZE = 10
BATCH_PAUSE_SECONDS = 2.0


@dataclass(slots=True)
class RefreshOutcome:
    lot_id: int
    success: bool
    message: str
    status: str | None = None
    new_events: int = 0


def pending_lots(engine: Engine) -> list[tuple[int, str]]:
    """Lots with a tracking number that have not reached a terminal status."""
    with engine.connect() as conn:
        rows = conn.execute(
            text(
                """
                SELECT id, ups_tracking_number FROM lots
                WHERE ups_tracking_number IS NOT NULL AND ups_tracking_number <> ''
                  AND (tracking_status IS NULL OR tracking_status NOT IN ('delivered', 'exception'))
                ORDER BY id
                """
            )
        ).all()
    return [(row[0], row[1]) for row in rows]


def apply_tracking(engine: Engine, lot_id: int, info: TrackingInfo) -> int:
    """Store the lot's status and any activity not already recorded. Returns the number of new events."""
    inserted = 0
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                UPDATE lots SET tracking_status = :status,
                  estimated_delivery_date = COALESCE(:estimated, estimated_delivery_date),
                  updated_at = :now
                WHERE id = :id
                """
            ),
            {"status": info.status, "estimated": info.estimated_delivery, "now": utcnow(), "id": lot_id},
        )
        for activity in info.activities:
            result = conn.execute(
                text(
                    """
                    INSERT INTO tracking_events (lot_id, event_type, event_description, event_date, location, created_at)
                    VALUES (:lot_id, :event_type, :description, :event_date, :location, :now)
                    ON CONFLICT (lot_id, event_type, event_date) DO NOTHING
                    """
                ),
                {
                    "lot_id": lot_id,
                    "event_type": activity.status_type,
                    "description": activity.description,
                    "event_date": activity.occurred_at,
                    "location": activity.location,
                    "now": utcnow(),
                },
            )
            inserted += result.rowcount or 0
    return inserted


async def refresh_lot(engine: Engine, client: UPSClient, lot_id: int) -> RefreshOutcome:
    with engine.connect() as conn:
        number = conn.execute(
            text("SELECT ups_tracking_number FROM lots WHERE id = :id"), {"id": lot_id}
        ).scalar_one_or_none()
    if not number:
        return RefreshOutcome(lot_id=lot_id, success=False, message="Lot not found or no tracking number")
    try:
        info = await client.tracking_info(number)
    except PipelineError as exc:
        logger.warning("Tracking refresh for lot %s failed: %s", lot_id, exc)
        return RefreshOutcome(lot_id=lot_id, success=False, message=str(exc))
    new_events = apply_tracking(engine, lot_id, info)
    return RefreshOutcome(
        lot_id=lot_id, success=True, message="Tracking updated", status=info.status, new_events=new_events
    )


async def update_all(engine: Engine, client: UPSClient, *, pause: float = BATCH_PAUSE_SECONDS) -> list[RefreshOutcome]:
    lots = pending_lots(engine)
    if not lots:
        logger.info("No lots awaiting delivery")
        return []

    async def handle(entry: tuple[int, str]) -> RefreshOutcome:
        return await refresh_lot(engine, client, entry[0])

    outcomes = await in_batches(lots, handle, batch_size=BATCH_SIZE, pause=pause)
    delivered = sum(1 for outcome in outcomes if outcome.status in TERMINAL_STATUSES)
    failed = sum(1 for outcome in outcomes if not outcome.success)
    logger.info("Tracking update: %s lots, %s finished, %s failed", len(outcomes), delivered, failed)
    return outcomes

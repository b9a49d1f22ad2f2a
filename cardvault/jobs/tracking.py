"""Daily carrier tracking refresh."""

from __future__ import annotations

import asyncio

from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from cardvault.db.session import shared_engine
from cardvault.ingest.ups import UPSClient
from cardvault.jobs.celery_app import celery_app
from cardvault.logic.tracking import RefreshOutcome, update_all


async def run_tracking_update(engine: Engine, client: UPSClient | None = None) -> list[RefreshOutcome]:
    owned = client is None
    client = client or UPSClient()
    try:
        return await update_all(engine, client)
    finally:
        if owned:
            await client.close()


@celery_app.task(name="cardvault.jobs.tracking.update_tracking")
def update_tracking_task():  # pragma: no cover - executed by worker
    load_dotenv()
    outcomes = asyncio.run(run_tracking_update(shared_engine()))
    return {"processed": len(outcomes), "failed": sum(1 for outcome in outcomes if not outcome.success)}

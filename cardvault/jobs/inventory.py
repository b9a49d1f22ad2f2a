"""Inventory compliance, draft sweep and store value jobs."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

import httpx
from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from cardvault.db.session import shared_engine
from cardvault.email.render import render_email
from cardvault.ingest.images import ImageStore
from cardvault.ingest.shopify import ShopifyAdminClient
from cardvault.jobs.celery_app import celery_app
from cardvault.logic.analytics import recent_snapshots, save_snapshot
from cardvault.logic.charts import store_value_chart
from cardvault.logic.compliance import ReconcileResult, reconcile
from cardvault.logic.inventory import check_all_products, total_store_value
from cardvault.logic.wishlist import notify_wishlists
from cardvault.utils.dates import format_date, today_in_tz
from cardvault.utils.esp import EmailMessage, EmailProvider

logger = logging.getLogger(__name__)


def default_shop() -> str:
    return os.environ.get("DEFAULT_SHOP", "")


async def run_reconcile(
    engine: Engine,
    shop: str,
    *,
    product_ref: Any = None,
    inventory_item_ref: Any = None,
    admin: ShopifyAdminClient | None = None,
) -> ReconcileResult:
    owned = admin is None
    admin = admin or ShopifyAdminClient.for_shop(engine, shop)
    try:
        result = await reconcile(admin, product_ref=product_ref, inventory_item_ref=inventory_item_ref)
    finally:
        if owned:
            await admin.close()
    if result.activated and result.title:
        product_url = f"https://{shop}/products/{result.handle}" if result.handle else None
        notify_wishlist_task.delay(product_id=result.product_id, title=result.title, product_url=product_url)
    return result


async def run_draft_sweep(engine: Engine, shop: str, *, admin: ShopifyAdminClient | None = None) -> list[str]:
    owned = admin is None
    admin = admin or ShopifyAdminClient.for_shop(engine, shop)
    try:
        location = await admin.default_location()
        if location is None:
            logger.warning("No location found for %s; skipping draft sweep", shop)
            return []
        return await check_all_products(admin, location.id)
    finally:
        if owned:
            await admin.close()


async def run_store_value(
    engine: Engine,
    shop: str,
    *,
    admin: ShopifyAdminClient | None = None,
    session: httpx.AsyncClient | None = None,
    provider: EmailProvider | None = None,
    store: ImageStore | None = None,
    poll_seconds: float = 5.0,
) -> float:
    """Compute the store value, save a snapshot and email it when a recipient is configured."""
    owned = admin is None
    admin = admin or ShopifyAdminClient.for_shop(engine, shop)
    try:
        location = await admin.default_location()
        if location is None:
            raise LookupError(f"No location found for {shop}")
        value = await total_store_value(admin, location.id, session=session, poll_seconds=poll_seconds)
    finally:
        if owned:
            await admin.close()

    previous = recent_snapshots(engine, limit=1)
    save_snapshot(engine, value)
    logger.info("Store value for %s: %.2f", shop, value)

    recipient = os.environ.get("STORE_VALUE_NOTIFY")
    if recipient:
        chart_url = _chart_url(engine, store)
        subject, html = render_email(
            "store_value",
            {
                "subject": f"Store value for {format_date(today_in_tz())}",
                "shop": shop,
                "value": value,
                "previous": previous[0]["value"] if previous else None,
                "chart_url": chart_url,
            },
        )
        await (provider or EmailProvider()).send(EmailMessage(to=recipient, subject=subject, html=html))
    return value


def _chart_url(engine: Engine, store: ImageStore | None) -> str | None:
    try:
        chart = store_value_chart(engine)
        return (store or ImageStore()).upload(chart.path.read_bytes())
    except Exception:
        logger.warning("Store value chart unavailable", exc_info=True)
        return None


@celery_app.task(name="cardvault.jobs.inventory.reconcile_product")
def reconcile_product_task(shop: str, product_ref: Any = None, inventory_item_ref: Any = None):  # pragma: no cover - executed by worker
    load_dotenv()
    asyncio.run(run_reconcile(shared_engine(), shop, product_ref=product_ref, inventory_item_ref=inventory_item_ref))


@celery_app.task(name="cardvault.jobs.inventory.notify_wishlist")
def notify_wishlist_task(product_id: str, title: str, product_url: str | None = None):  # pragma: no cover - executed by worker
    load_dotenv()
    asyncio.run(notify_wishlists(shared_engine(), product_id, title, product_url=product_url))


@celery_app.task(name="cardvault.jobs.inventory.draft_sweep")
def draft_sweep_task(shop: str | None = None):  # pragma: no cover - executed by worker
    load_dotenv()
    asyncio.run(run_draft_sweep(shared_engine(), shop or default_shop()))


@celery_app.task(name="cardvault.jobs.inventory.store_value")
def store_value_task(shop: str | None = None):  # pragma: no cover - executed by worker
    load_dotenv()
    return asyncio.run(run_store_value(shared_engine(), shop or default_shop()))

"""PSA certificate import job."""

from __future__ import annotations

import logging

from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from cardvault.db.session import shared_engine
from cardvault.ingest.images import ImageRelay
from cardvault.ingest.psa import PSAClient
from cardvault.ingest.shopify import ShopifyAdminClient
from cardvault.jobs.base import ImportTask
from cardvault.jobs.celery_app import celery_app
from cardvault.logic.notifications import create_notification
from cardvault.logic.products import build_product_input
from cardvault.logic.quota import QuotaRotator
from cardvault.utils.errors import ErrorKind, PipelineError

logger = logging.getLogger(__name__)

NOTIFICATION_TYPE = "PSA"
MAX_RETRIES = 3


async def run_psa_import(
    engine: Engine,
    shop: str,
    cert_number: str,
    price: float,
    *,
    psa: PSAClient | None = None,
    relay: ImageRelay | None = None,
    admin: ShopifyAdminClient | None = None,
) -> str:
    """Turn one PSA certificate into an active Shopify product. Returns the product gid."""
    owned = []
    if psa is None:
        psa = PSAClient(QuotaRotator(engine))
        owned.append(psa)
    if relay is None:
        relay = ImageRelay()
        owned.append(relay)
    try:
        record = await psa.fetch_record(cert_number)
        logger.info("PSA cert %s: %s", cert_number, record.subject)

        try:
            images = await psa.fetch_images(cert_number)
        except PipelineError as exc:
            logger.warning("No images for cert %s: %s", cert_number, exc)
            images = []
        hosted = await relay.relay_all(image.url for image in images)

        if admin is None:
            admin = ShopifyAdminClient.for_shop(engine, shop)
            owned.append(admin)
        if not await admin.probe():
            raise PipelineError(ErrorKind.PERMANENT_AUTH, f"Shopify session for {shop} was rejected")
        location = await admin.default_location()
        if location is None:
            raise PipelineError(ErrorKind.VALIDATION, f"No location found for {shop}")

        plan = build_product_input(record, price, location.id, hosted)
        product_id = await admin.create_product(plan)
        await admin.publish_to_all(product_id)
    finally:
        for client in owned:
            await client.close()

    create_notification(engine, f"Product has been created for cert {cert_number}", NOTIFICATION_TYPE)
    return product_id


async def _import(engine: Engine, *, shop: str, cert_number: str, price: float) -> str:
    return await run_psa_import(engine, shop, cert_number, price)


@celery_app.task(
    bind=True,
    base=ImportTask,
    name="cardvault.jobs.psa.import_cert",
    max_retries=MAX_RETRIES,
    notification_type=NOTIFICATION_TYPE,
    lock_argument="cert_number",
)
def import_cert_task(self, *, shop: str, cert_number: str, price: float):  # pragma: no cover - executed by worker
    load_dotenv()
    return self.run_pipeline(_import, shop=shop, cert_number=cert_number, price=price)


@celery_app.task(name="cardvault.jobs.psa.reset_quota")
def reset_quota_task():  # pragma: no cover - executed by worker
    load_dotenv()
    rotator = QuotaRotator(shared_engine())
    rotator.ensure_rows()
    rotator.reset_daily()

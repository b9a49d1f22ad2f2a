"""Troll & Toad import job."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from cardvault.ingest.images import ImageRelay
from cardvault.ingest.models import ScrapedProduct
from cardvault.ingest.shopify import ShopifyAdminClient
from cardvault.jobs.base import ImportTask
from cardvault.jobs.celery_app import celery_app
from cardvault.logic.compliance import normalize_gid
from cardvault.logic.notifications import create_notification
from cardvault.logic.products import ProductPlan, build_scraped_product
from cardvault.utils.errors import ErrorKind, PipelineError

logger = logging.getLogger(__name__)

NOTIFICATION_TYPE = "TROLL"
MAX_RETRIES = 5
OPTION_NAMES = {"Title", "Condition"}


def option_slug(node: Mapping[str, Any]) -> str | None:
    """The Title/Condition value of a variant as a condition slug ("Near Mint" -> "near-mint")."""
    for option in node.get("selectedOptions") or []:
        if option.get("name") in OPTION_NAMES:
            return str(option.get("value") or "").lower().replace(" ", "-")
    return None


async def update_existing(
    admin: ShopifyAdminClient,
    product: Mapping[str, Any],
    plan: ProductPlan,
    condition: str,
) -> bool:
    """Add stock to the matching variant and reprice it, or create it. True when a variant matched."""
    variant = plan.variants[0]
    matched = False
    for node in (product.get("variants") or {}).get("nodes") or []:
        if option_slug(node) not in {condition, "default-title"}:
            continue
        matched = True
        await admin.adjust_inventory(node["inventoryItem"]["id"], plan.location_id, variant.quantity)
        await admin.update_variant_prices(product["id"], {node["id"]: variant.price})
    if not matched:
        await admin.add_variants(product["id"], plan)
    return matched


async def run_troll_import(
    engine: Engine,
    shop: str,
    item: Mapping[str, Any],
    *,
    price: float,
    quantity: int,
    condition: str,
    existing_product_id: str | None = None,
    relay: ImageRelay | None = None,
    admin: ShopifyAdminClient | None = None,
) -> str:
    """Create a draft product from a scraped listing, or add stock to an existing one."""
    scraped = ScrapedProduct(**item)
    if not scraped.image_url:
        raise PipelineError(ErrorKind.VALIDATION, f"No image for {scraped.title}")
    owned = []
    if relay is None:
        relay = ImageRelay()
        owned.append(relay)
    try:
        try:
            image_url = await relay.relay_without_background(scraped.image_url)
        except PipelineError:
            raise
        except Exception as exc:
            raise PipelineError(ErrorKind.NETWORK_ERROR, f"Image processing failed: {exc}") from exc

        if admin is None:
            admin = ShopifyAdminClient.for_shop(engine, shop)
            owned.append(admin)
        location = await admin.default_location()
        if location is None:
            raise PipelineError(ErrorKind.VALIDATION, f"No location found for {shop}")
        plan = build_scraped_product(
            scraped,
            price=price,
            quantity=quantity,
            condition=condition,
            location_id=location.id,
            image_url=image_url,
        )

        if existing_product_id:
            product = await admin.product(normalize_gid(existing_product_id))
            if product is not None:
                await update_existing(admin, product, plan, condition)
                create_notification(engine, "Product has been updated", NOTIFICATION_TYPE)
                return product["id"]
            logger.info("Product %s no longer exists; creating a new one", existing_product_id)

        product_id = await admin.create_product(plan)
    finally:
        for client in owned:
            await client.close()
    create_notification(engine, "Product had been created", NOTIFICATION_TYPE)
    return product_id


async def _import(engine: Engine, **kwargs: Any) -> str:
    shop = kwargs.pop("shop")
    item = kwargs.pop("item")
    return await run_troll_import(engine, shop, item, **kwargs)


@celery_app.task(
    bind=True,
    base=ImportTask,
    name="cardvault.jobs.troll.import_item",
    max_retries=MAX_RETRIES,
    notification_type=NOTIFICATION_TYPE,
    lock_argument="lock_id",
)
def import_item_task(
    self,
    *,
    shop: str,
    item: dict[str, Any],
    price: float,
    quantity: int,
    condition: str,
    existing_product_id: str | None = None,
    lock_id: str | None = None,
):  # pragma: no cover - executed by worker
    load_dotenv()
    return self.run_pipeline(
        _import,
        shop=shop,
        item=item,
        price=price,
        quantity=quantity,
        condition=condition,
        existing_product_id=existing_product_id,
    )

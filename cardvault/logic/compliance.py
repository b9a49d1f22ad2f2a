"""Keep product status and "new arrivals" placement in line with inventory."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Any

from cardvault.ingest import queries
from cardvault.ingest.shopify import ShopifyAdminClient, ShopifyError, user_errors

logger = logging.getLogger(__name__)

RAW_CARD_OPTION = "Condition"
DEFAULT_COLLECTION_HANDLE = "new-arrivals"

_collection_cache: dict[str, str | None] = {}


@dataclass(slots=True)
class ReconcileResult:
    product_id: str | None
    previous_status: str | None = None
    desired_status: str | None = None
    total_inventory: int = 0
    status_changed: bool = False
    published: bool = False
    added_to_collection: bool = False
    title: str | None = None
    handle: str | None = None

    @property
    def activated(self) -> bool:
        return self.status_changed and self.desired_status == "ACTIVE" and self.total_inventory > 0


def normalize_gid(value: Any, resource: str = "Product") -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return f"gid://shopify/{resource}/{value}"
    trimmed = str(value).strip()
    if not trimmed:
        return None
    if re.fullmatch(r"\d+", trimmed):
        return f"gid://shopify/{resource}/{trimmed}"
    return trimmed


def numeric_id(gid: str) -> str | None:
    match = re.search(r"/(\d+)$", gid)
    return match.group(1) if match else None


def bypass_ids(raw: str | None = None) -> set[str]:
    """Product ids that stay active regardless of inventory, as both gids and numeric ids."""
    raw = os.environ.get("PRODUCT_STATUS_BYPASS_IDS", "") if raw is None else raw
    ids: set[str] = set()
    for token in raw.split(","):
        token = token.strip()
        if not token:
            continue
        ids.add(token)
        gid = normalize_gid(token)
        if gid:
            ids.add(gid)
            number = numeric_id(gid)
            if number:
                ids.add(number)
    return ids


def is_bypassed(product_id: str, allow_list: set[str] | None = None) -> bool:
    allow_list = bypass_ids() if allow_list is None else allow_list
    number = numeric_id(product_id)
    return product_id in allow_list or (number is not None and number in allow_list)


def is_raw_card(product: dict[str, Any]) -> bool:
    for variant in (product.get("variants") or {}).get("nodes", []):
        for option in variant.get("selectedOptions") or []:
            if option.get("name") == RAW_CARD_OPTION:
                return True
    return False


def collection_overrides(raw: str | None = None) -> dict[str, str]:
    """Parse NEW_ARRIVALS_COLLECTION_OVERRIDES, formatted as shop=id pairs separated by commas."""
    raw = os.environ.get("NEW_ARRIVALS_COLLECTION_OVERRIDES", "") if raw is None else raw
    overrides: dict[str, str] = {}
    for pair in raw.split(","):
        shop, _, collection = pair.partition("=")
        gid = normalize_gid(collection, "Collection")
        if shop.strip() and gid:
            overrides[shop.strip()] = gid
    return overrides


async def resolve_new_arrivals(admin: ShopifyAdminClient) -> str | None:
    if admin.shop in _collection_cache:
        return _collection_cache[admin.shop]
    collection_id = collection_overrides().get(admin.shop) or normalize_gid(
        os.environ.get("NEW_ARRIVALS_COLLECTION_ID"), "Collection"
    )
    if collection_id is None:
        handle = os.environ.get("NEW_ARRIVALS_COLLECTION_HANDLE", DEFAULT_COLLECTION_HANDLE)
        data = await admin.graphql(queries.COLLECTION_BY_HANDLE, {"handle": handle})
        collection_id = (data.get("collectionByHandle") or {}).get("id")
        if collection_id is None:
            logger.warning("No collection with handle %s on %s", handle, admin.shop)
    _collection_cache[admin.shop] = collection_id
    return collection_id


async def add_to_collection_front(admin: ShopifyAdminClient, product_id: str, collection_id: str) -> bool:
    data = await admin.graphql(queries.COLLECTION_HAS_PRODUCT, {"id": collection_id, "productId": product_id})
    collection = data.get("collection") or {}
    if not collection.get("hasProduct"):
        added = await admin.graphql(queries.COLLECTION_ADD_PRODUCTS, {"id": collection_id, "productIds": [product_id]})
        errors = user_errors(added.get("collectionAddProductsV2"))
        if errors:
            logger.warning("Adding %s to %s failed: %s", product_id, collection_id, errors)
            return False
    if collection.get("sortOrder") not in (None, "MANUAL"):
        logger.info("Collection %s is not manually sorted; leaving order alone", collection_id)
        return True
    moved = await admin.graphql(
        queries.COLLECTION_REORDER, {"id": collection_id, "moves": [{"id": product_id, "newPosition": "0"}]}
    )
    errors = user_errors(moved.get("collectionReorderProducts"))
    if errors:
        logger.warning("Moving %s to the front of %s failed: %s", product_id, collection_id, errors)
        return False
    return True


async def reconcile(
    admin: ShopifyAdminClient,
    *,
    product_ref: Any = None,
    inventory_item_ref: Any = None,
) -> ReconcileResult:
    """Set DRAFT/ACTIVE from inventory and place newly active products in new arrivals."""
    product_id = normalize_gid(product_ref)
    if product_id is None and inventory_item_ref is not None:
        item_id = normalize_gid(inventory_item_ref, "InventoryItem")
        product_id = await admin.product_for_inventory_item(item_id)
    if product_id is None:
        logger.warning("Could not resolve a product for %s / %s", product_ref, inventory_item_ref)
        return ReconcileResult(product_id=None)

    product = await admin.product(product_id)
    if product is None:
        logger.warning("Product %s not found on %s", product_id, admin.shop)
        return ReconcileResult(product_id=product_id)

    total_inventory = int(product.get("totalInventory") or 0)
    bypassed = is_bypassed(product_id)
    desired = "ACTIVE" if total_inventory > 0 or bypassed else "DRAFT"
    result = ReconcileResult(
        product_id=product_id,
        previous_status=product.get("status"),
        desired_status=desired,
        total_inventory=total_inventory,
        title=product.get("title"),
        handle=product.get("handle"),
    )
    logger.info(
        "Product %s inventory=%s status=%s desired=%s bypassed=%s",
        product_id, total_inventory, result.previous_status, desired, bypassed,
    )
    if result.previous_status == desired:
        return result

    try:
        await admin.set_status(product_id, desired)
    except ShopifyError:
        logger.exception("Status update for %s failed", product_id)
        return result
    result.status_changed = True

    if desired != "ACTIVE" or total_inventory <= 0:
        return result
    result.published = await admin.publish_to_all(product_id)
    if is_raw_card(product):
        logger.info("Skipping new arrivals for raw card %s", product_id)
        return result
    try:
        collection_id = await resolve_new_arrivals(admin)
        if collection_id:
            result.added_to_collection = await add_to_collection_front(admin, product_id, collection_id)
    except ShopifyError:
        logger.exception("New arrivals placement for %s failed", product_id)
    return result

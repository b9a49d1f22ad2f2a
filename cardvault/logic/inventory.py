"""Inventory sweeps and store valuation."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterable

import httpx

from cardvault.ingest import queries
from cardvault.ingest.shopify import ShopifyAdminClient, ShopifyError, user_errors

logger = logging.getLogger(__name__)

BULK_POLL_SECONDS = 5.0
BULK_MAX_ATTEMPTS = 60


class BulkOperationError(RuntimeError):
    pass


@dataclass(slots=True)
class InventoryRow:
    product_id: str | None
    status: str | None
    price: float
    available: int


def _row_from_node(node: dict[str, Any]) -> InventoryRow:
    variant = node.get("variant") or {}
    product = variant.get("product") or {}
    quantities = (node.get("inventoryLevel") or {}).get("quantities") or []
    available = int(quantities[0].get("quantity") or 0) if quantities else 0
    return InventoryRow(
        product_id=product.get("id"),
        status=product.get("status"),
        price=float(variant.get("price") or 0),
        available=available,
    )


async def iter_inventory(admin: ShopifyAdminClient, location_id: str) -> AsyncIterator[InventoryRow]:
    """Walk every inventory item one page at a time."""
    cursor: str | None = None
    while True:
        data = await admin.graphql(queries.INVENTORY_ITEMS_PAGE, {"after": cursor, "locationId": location_id})
        page = data.get("inventoryItems") or {}
        for edge in page.get("edges") or []:
            yield _row_from_node(edge.get("node") or {})
        info = page.get("pageInfo") or {}
        if not info.get("hasNextPage"):
            break
        cursor = info.get("endCursor")
        if not cursor:
            logger.warning("Inventory page reported more results without a cursor; stopping")
            break


def value_of(rows: Iterable[tuple[float, int]]) -> float:
    total = 0.0
    for price, available in rows:
        if price > 0 and available > 0:
            total += price * available
    return round(total, 2)


async def check_all_products(admin: ShopifyAdminClient, location_id: str) -> list[str]:
    """Set every product with nothing available at the location to DRAFT."""
    totals: dict[str, int] = {}
    statuses: dict[str, str | None] = {}
    async for row in iter_inventory(admin, location_id):
        if not row.product_id:
            continue
        totals[row.product_id] = totals.get(row.product_id, 0) + max(row.available, 0)
        statuses[row.product_id] = row.status
    empty = [pid for pid, total in totals.items() if total == 0 and statuses[pid] != "DRAFT"]
    drafted: list[str] = []
    for product_id in empty:
        try:
            await admin.set_status(product_id, "DRAFT")
        except ShopifyError:
            logger.exception("Could not draft %s", product_id)
            continue
        drafted.append(product_id)
    logger.info("Drafted %s of %s empty products on %s", len(drafted), len(empty), admin.shop)
    return drafted


async def value_by_pagination(admin: ShopifyAdminClient, location_id: str) -> float:
    pairs: list[tuple[float, int]] = []
    async for row in iter_inventory(admin, location_id):
        pairs.append((row.price, row.available))
    return value_of(pairs)


async def value_by_bulk_operation(
    admin: ShopifyAdminClient,
    *,
    session: httpx.AsyncClient | None = None,
    poll_seconds: float = BULK_POLL_SECONDS,
    max_attempts: int = BULK_MAX_ATTEMPTS,
) -> float:
    started = await admin.graphql(queries.BULK_OPERATION_RUN, {"query": queries.BULK_INVENTORY_QUERY})
    payload = started.get("bulkOperationRunQuery") or {}
    errors = user_errors(payload)
    operation = payload.get("bulkOperation")
    if errors or not operation:
        raise BulkOperationError(f"Bulk operation was not started: {errors}")

    url: str | None = None
    for _ in range(max_attempts):
        await asyncio.sleep(poll_seconds)
        data = await admin.graphql(queries.BULK_OPERATION_STATUS, {"id": operation["id"]})
        node = data.get("node") or {}
        status = node.get("status")
        if status == "COMPLETED":
            url = node.get("url")
            break
        if status in {"FAILED", "CANCELED", "EXPIRED"}:
            raise BulkOperationError(f"Bulk operation {operation['id']} ended {status}: {node.get('errorCode')}")
    else:
        raise BulkOperationError(f"Bulk operation {operation['id']} did not finish in time")
    if url is None:
        # completed with no objects
        return 0.0

    client = session or httpx.AsyncClient(timeout=120.0)
    pairs: list[tuple[float, int]] = []
    try:
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                record = json.loads(line)
                pairs.append((float(record.get("price") or 0), int(record.get("inventoryQuantity") or 0)))
    finally:
        if session is None:
            await client.aclose()
    return value_of(pairs)


async def total_store_value(
    admin: ShopifyAdminClient,
    location_id: str,
    *,
    session: httpx.AsyncClient | None = None,
    poll_seconds: float = BULK_POLL_SECONDS,
) -> float:
    """Store value from a bulk export, falling back to paging through inventory."""
    try:
        return await value_by_bulk_operation(admin, session=session, poll_seconds=poll_seconds)
    except (BulkOperationError, ShopifyError, httpx.HTTPError, ValueError) as exc:
        logger.warning("Bulk valuation failed (%s); paging instead", exc)
    return await value_by_pagination(admin, location_id)

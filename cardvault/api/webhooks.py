"""Shopify webhook receiver."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import os
from collections import deque
from typing import Any, Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.engine import Engine

from cardvault.api.deps import get_engine
from cardvault.jobs.inventory import reconcile_product_task
from cardvault.logic import catalog

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

SEEN_LIMIT = 100
_seen_ids: deque[str] = deque(maxlen=SEEN_LIMIT)


def verify_hmac(body: bytes, signature: str | None, secret: str | None = None) -> bool:
    secret = secret if secret is not None else os.environ.get("SHOPIFY_API_SECRET", "")
    if not secret or not signature:
        return False
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return hmac.compare_digest(base64.b64encode(digest).decode(), signature)


def already_seen(webhook_id: str | None) -> bool:
    """Remember the last hundred delivery ids; True for a repeat."""
    if not webhook_id:
        return False
    if webhook_id in _seen_ids:
        return True
    _seen_ids.append(webhook_id)
    return False


def _products_changed(engine: Engine, shop: str, payload: dict[str, Any]) -> None:
    catalog.upsert_product(engine, payload)
    reconcile_product_task.delay(shop=shop, product_ref=payload.get("id"))


def _product_deleted(engine: Engine, shop: str, payload: dict[str, Any]) -> None:
    catalog.delete_product(engine, payload)


def _inventory_changed(engine: Engine, shop: str, payload: dict[str, Any]) -> None:
    reconcile_product_task.delay(shop=shop, inventory_item_ref=payload.get("inventory_item_id"))


HANDLERS: dict[str, Callable[[Engine, str, dict[str, Any]], None]] = {
    "products/create": _products_changed,
    "products/update": _products_changed,
    "products/delete": _product_deleted,
    "inventory_levels/update": _inventory_changed,
}


def handler_for(topic: str) -> Callable[[Engine, str, dict[str, Any]], None] | None:
    for key, handler in HANDLERS.items():
        if topic == key or topic == key.replace("/", "_"):
            return handler
    return None


@router.post("/webhooks")
async def receive(request: Request, engine: Engine = Depends(get_engine)) -> PlainTextResponse:
    body = await request.body()
    if not verify_hmac(body, request.headers.get("X-Shopify-Hmac-Sha256")):
        logger.warning("Webhook signature check failed")
        return PlainTextResponse("Unauthorized", status_code=401)
    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        return PlainTextResponse("Bad Request", status_code=400)

    webhook_id = request.headers.get("X-Shopify-Webhook-Id") or (payload.get("id") if isinstance(payload, dict) else None)
    if already_seen(str(webhook_id) if webhook_id else None):
        return PlainTextResponse("OK")

    topic = (request.headers.get("X-Shopify-Topic") or "").lower()
    shop = request.headers.get("X-Shopify-Shop-Domain") or request.query_params.get("shop") or os.environ.get("DEFAULT_SHOP")
    if not topic or not shop:
        logger.error("Invalid webhook: topic=%s shop=%s", topic, shop)
        return PlainTextResponse("Bad Request", status_code=400)

    logger.info("Webhook %s from %s", topic, shop)
    handler = handler_for(topic)
    if handler is None:
        return PlainTextResponse("OK")
    handler(engine, shop, payload if isinstance(payload, dict) else {})
    return PlainTextResponse("OK")

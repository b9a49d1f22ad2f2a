"""Request dependencies shared by the API routers."""

from __future__ import annotations

import os
from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, Query
from sqlalchemy.engine import Engine

from cardvault.db.session import shared_engine
from cardvault.ingest.shopify import ShopifyAdminClient
from cardvault.utils.errors import PipelineError


def get_engine() -> Engine:
    return shared_engine()


def resolve_shop(
    shop: str | None = Query(None), x_shopify_shop_domain: str | None = Header(None)
) -> str:
    resolved = x_shopify_shop_domain or shop or os.environ.get("DEFAULT_SHOP")
    if not resolved:
        raise HTTPException(status_code=400, detail="No shop provided")
    return resolved


async def get_admin(
    shop: str = Depends(resolve_shop), engine: Engine = Depends(get_engine)
) -> AsyncIterator[ShopifyAdminClient]:
    try:
        admin = ShopifyAdminClient.for_shop(engine, shop)
    except PipelineError as exc:
        raise HTTPException(status_code=401, detail=exc.message) from exc
    try:
        yield admin
    finally:
        await admin.close()


async def get_location_id(admin: ShopifyAdminClient = Depends(get_admin)) -> str:
    location = await admin.default_location()
    if location is None:
        raise HTTPException(status_code=400, detail="No location found")
    return location.id

"""FastAPI application for imports, automation, analytics and admin events."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict
from typing import Any, Literal

from fastapi import Body, Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, HttpUrl, ValidationError
from sqlalchemy import text
from sqlalchemy.engine import Engine

from cardvault.api import lots as lots_router
from cardvault.api import webhooks as webhooks_router
from cardvault.api import wishlist as wishlist_router
from cardvault.api.deps import get_admin, get_engine, get_location_id, resolve_shop
from cardvault.ingest.shopify import ShopifyAdminClient
from cardvault.ingest.troll import TrollClient
from cardvault.jobs.psa import import_cert_task
from cardvault.jobs.troll import import_item_task
from cardvault.logic import locks
from cardvault.logic.analytics import recent_snapshots, save_snapshot
from cardvault.logic.inventory import check_all_products, total_store_value
from cardvault.logic.notifications import NOTIFICATION_TYPES, clear_notification, fetch_notifications
from cardvault.logic.quota import QuotaRotator
from cardvault.utils.dates import utcnow

logger = logging.getLogger(__name__)

app = FastAPI(title="Cardvault Merchant API")
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["*"])
app.include_router(lots_router.router)
app.include_router(wishlist_router.router)
app.include_router(webhooks_router.router)

LIST_SPLIT = re.compile(r"[,\n]")
MISSING_NAME = "Could not find product name"


class PSAImportRequest(BaseModel):
    certs: str | list[str] | None = None
    prices: str | list[str | float] | None = None


class PSAImportResponse(BaseModel):
    error: str | None = None
    jobsQueued: int
    jobs: list[dict[str, Any]]
    skipped: list[str] = []
    apiUsage: dict[str, Any] | None = None


class TrollImportRequest(BaseModel):
    url: HttpUrl
    collection: bool = False
    quantity: int = Field(1, ge=1)
    price: float = Field(0.1, ge=0.01)
    type: Literal[
        "standard", "mint", "near-mint", "low-played", "moderately-played", "heavily-played", "damaged"
    ] = "standard"
    specific_product: str | None = None


def parse_list(value: Any) -> list[str]:
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    parsed: list[str] = []
    for item in items:
        parsed.extend(part.strip() for part in LIST_SPLIT.split(str(item)))
    return [item for item in parsed if item]


def parse_prices(value: Any) -> list[float]:
    prices = []
    for item in parse_list(value):
        try:
            price = float(item)
        except ValueError:
            continue
        prices.append(price)
    return prices


def _rejected(error: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": error, "jobsQueued": 0, "jobs": [], "apiUsage": None})


def _api_usage(engine: Engine) -> dict[str, Any] | None:
    key = QuotaRotator(engine).acquire_key()
    return {"key": key.name, "callsRemaining": key.calls_remaining} if key else None


@app.get("/health")
async def health() -> JSONResponse:
    return JSONResponse({"status": "ok"})


@app.get("/psa/usage")
async def psa_usage(engine: Engine = Depends(get_engine)) -> JSONResponse:
    rotator = QuotaRotator(engine)
    keys = [{"key": key.name, "callsRemaining": key.calls_remaining} for key in rotator.usage()]
    return JSONResponse({"apiUsage": _api_usage(engine), "allKeys": keys, "inFlight": locks.active(engine, "psa")})


@app.post("/psa/import", response_model=PSAImportResponse)
async def psa_import(
    payload: PSAImportRequest,
    shop: str = Depends(resolve_shop),
    engine: Engine = Depends(get_engine),
) -> Any:
    certs = parse_list(payload.certs)
    prices = parse_prices(payload.prices)
    if not certs or len(certs) != len(prices):
        return _rejected("Certs and prices count do not match.")
    pairs = [(cert_number, price) for cert_number, price in zip(certs, prices) if price > 0]
    if not pairs:
        return _rejected("No valid cert/price pairs")
    queued: list[dict[str, Any]] = []
    skipped: list[str] = []
    for cert_number, price in pairs:
        if not locks.claim(engine, cert_number, "psa"):
            skipped.append(cert_number)
            continue
        result = import_cert_task.apply_async(kwargs={"shop": shop, "cert_number": cert_number, "price": price})
        queued.append({"certNo": cert_number, "price": price, "jobId": result.id})
    logger.info("Queued %s PSA imports for %s (%s already in flight)", len(queued), shop, len(skipped))
    return PSAImportResponse(jobsQueued=len(queued), jobs=queued, skipped=skipped, apiUsage=_api_usage(engine))


def find_duplicates(engine: Engine, title: str) -> list[dict[str, Any]]:
    with engine.connect() as conn:
        rows = conn.execute(
            text("SELECT id, title, status, total_inventory FROM products WHERE title LIKE :pattern ORDER BY title"),
            {"pattern": f"%{title}%"},
        ).mappings()
        return [dict(row) for row in rows]


@app.post("/troll/import")
async def troll_import(
    body: dict[str, Any] = Body(...),
    shop: str = Depends(resolve_shop),
    engine: Engine = Depends(get_engine),
) -> JSONResponse:
    try:
        payload = TrollImportRequest.model_validate(body)
    except ValidationError:
        return JSONResponse(status_code=400, content={"error": "Invalid form data", "itemsReturn": None, "duplicates": None})

    client = TrollClient()
    try:
        if payload.collection:
            scraped = await client.fetch_collection(str(payload.url))
        else:
            scraped = [await client.fetch_product(str(payload.url))]
    finally:
        await client.close()
    items = [item for item in scraped if item.title and item.title != MISSING_NAME]
    if not items:
        return JSONResponse(
            status_code=400,
            content={
                "error": "Unable to retrieve product details from Troll & Toad.",
                "itemsReturn": None,
                "duplicates": None,
            },
        )

    if not payload.specific_product:
        duplicates = find_duplicates(engine, items[0].title)
        if duplicates:
            return JSONResponse({"error": None, "itemsReturn": None, "duplicates": duplicates})

    existing = None if payload.specific_product in (None, "NULL") else payload.specific_product
    job_ids = []
    for item in items:
        lock_id = f"troll:{item.title}:{payload.type}"
        if not locks.claim(engine, lock_id, "troll"):
            continue
        result = import_item_task.apply_async(
            kwargs={
                "shop": shop,
                "item": asdict(item),
                "price": payload.price if not payload.collection else (item.price or payload.price),
                "quantity": payload.quantity,
                "condition": payload.type,
                "existing_product_id": existing,
                "lock_id": lock_id,
            }
        )
        job_ids.append(result.id)
    return JSONResponse({"error": None, "itemsReturn": job_ids, "duplicates": None})


@app.post("/automation/manual-draft")
async def manual_draft(
    admin: ShopifyAdminClient = Depends(get_admin),
    location_id: str = Depends(get_location_id),
) -> JSONResponse:
    drafted = await check_all_products(admin, location_id)
    return JSONResponse(
        {
            "success": True,
            "result": {"drafted": drafted, "itemsProcessed": len(drafted)},
            "message": f"Draft automation completed. Processed {len(drafted)} items.",
            "timestamp": utcnow().isoformat(),
        }
    )


@app.post("/inventory/calculate-and-save")
async def calculate_and_save(
    admin: ShopifyAdminClient = Depends(get_admin),
    location_id: str = Depends(get_location_id),
    engine: Engine = Depends(get_engine),
) -> JSONResponse:
    value = await total_store_value(admin, location_id)
    save_snapshot(engine, value)
    return JSONResponse(
        {
            "success": True,
            "totalValue": value,
            "message": "Inventory calculated and saved successfully",
            "timestamp": utcnow().isoformat(),
        }
    )


@app.get("/analytics/store-value")
async def store_value_history(engine: Engine = Depends(get_engine)) -> JSONResponse:
    rows = recent_snapshots(engine)
    values = [
        {"id": row["id"], "value": row["value"], "createdAt": str(row["created_at"])}
        for row in rows
    ]
    return JSONResponse({"count": len(values), "values": values})


@app.get("/events/{kind}")
async def events(kind: str, engine: Engine = Depends(get_engine)) -> JSONResponse:
    kind = kind.upper()
    if kind not in NOTIFICATION_TYPES:
        raise HTTPException(status_code=400, detail="Unknown event type")
    rows = fetch_notifications(engine, kind)
    return JSONResponse({"events": [{**row, "created_at": str(row["created_at"])} for row in rows]})


@app.post("/events/{notification_id}/clear")
async def clear_event(notification_id: int, engine: Engine = Depends(get_engine)) -> JSONResponse:
    if not clear_notification(engine, notification_id):
        raise HTTPException(status_code=404, detail="Not found")
    return JSONResponse({"status": "ok"})


@app.get("/product/{product_id:path}")
async def product_detail(product_id: str, engine: Engine = Depends(get_engine)) -> JSONResponse:
    with engine.connect() as conn:
        product = conn.execute(
            text("SELECT id, title, description, status, total_inventory FROM products WHERE id = :id"),
            {"id": product_id},
        ).mappings().first()
        if product is None:
            raise HTTPException(status_code=404, detail="Not found")
        variants = conn.execute(
            text(
                """
                SELECT id, title, price, sku, inventory_quantity
                FROM product_variants WHERE product_id = :id ORDER BY title
                """
            ),
            {"id": product_id},
        ).mappings()
        payload = dict(product)
        payload["variants"] = [{**row, "price": float(row["price"] or 0)} for row in variants]
    return JSONResponse(payload)

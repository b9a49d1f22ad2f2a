"""Lot purchase routes."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.engine import Engine

from cardvault.api.deps import get_admin, get_engine, get_location_id
from cardvault.ingest.shopify import ShopifyAdminClient
from cardvault.ingest.ups import UPSClient
from cardvault.logic import lots
from cardvault.logic.tracking import refresh_lot
from cardvault.utils.dates import today_in_tz

router = APIRouter(tags=["lots"])


class LotCreate(BaseModel):
    purchase_date: datetime
    total_cost: float = Field(ge=0)
    lot_value: float | None = None
    initial_debt: float = Field(0, ge=0)
    ups_tracking_number: str | None = None
    shipping_status: str | None = None
    vendor: str | None = None
    lot_type: str | None = None
    notes: str | None = None
    google_sheets_link: str | None = None
    collector_link: str | None = None


class LotUpdate(BaseModel):
    total_cost: float | None = Field(None, ge=0)
    lot_value: float | None = None
    ups_tracking_number: str | None = None
    shipping_status: str | None = None
    tracking_status: str | None = None
    estimated_delivery_date: datetime | None = None
    vendor: str | None = None
    lot_type: str | None = None
    notes: str | None = None
    google_sheets_link: str | None = None
    collector_link: str | None = None


class PaymentRequest(BaseModel):
    amount: float = Field(gt=0)
    payment_date: datetime | None = None
    payment_method: str | None = None
    notes: str | None = None


class LotProductCreate(BaseModel):
    product_name: str = Field(min_length=1)
    sku: str | None = None
    description: str | None = None
    estimated_quantity: int = Field(1, ge=1)


class LotProductUpdate(BaseModel):
    product_name: str | None = Field(None, min_length=1)
    sku: str | None = None
    description: str | None = None
    estimated_quantity: int | None = Field(None, ge=1)


class VariantCreate(BaseModel):
    variant_name: str = Field(min_length=1)
    condition: str | None = None
    rarity: str | None = None
    quantity: int = Field(1, ge=1)
    estimated_value: float | None = None


class VariantUpdate(BaseModel):
    variant_name: str | None = Field(None, min_length=1)
    condition: str | None = None
    rarity: str | None = None
    quantity: int | None = Field(None, ge=1)
    estimated_value: float | None = None


class ConvertRequest(BaseModel):
    defaultPrice: float | None = None


def _json(payload: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(jsonable_encoder(payload), status_code=status_code)


def _not_found(exc: lots.LotNotFound) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Not found: {exc}")


@router.get("/lots")
async def list_lots(engine: Engine = Depends(get_engine)) -> JSONResponse:
    return _json({"lots": lots.list_lots(engine)})


@router.post("/lots", status_code=201)
async def create_lot(payload: LotCreate, engine: Engine = Depends(get_engine)) -> JSONResponse:
    return _json(lots.create_lot(engine, payload.model_dump()), status_code=201)


@router.get("/lots/stats")
async def lot_stats(engine: Engine = Depends(get_engine)) -> JSONResponse:
    return _json({**lots.lot_statistics(engine), "payments": lots.debt_payment_summary(engine)})


@router.get("/lots/analytics/monthly")
async def monthly(year: int | None = None, engine: Engine = Depends(get_engine)) -> JSONResponse:
    target = year or today_in_tz().year
    return _json({"year": target, "months": lots.monthly_analytics(engine, target)})


@router.get("/lots/analytics/yearly")
async def yearly(year: int | None = None, engine: Engine = Depends(get_engine)) -> JSONResponse:
    return _json(lots.yearly_summary(engine, year or today_in_tz().year))


@router.get("/lots/{lot_id}")
async def get_lot(lot_id: int, engine: Engine = Depends(get_engine)) -> JSONResponse:
    try:
        return _json(lots.get_lot(engine, lot_id))
    except lots.LotNotFound as exc:
        raise _not_found(exc) from exc


@router.put("/lots/{lot_id}")
async def update_lot(lot_id: int, payload: LotUpdate, engine: Engine = Depends(get_engine)) -> JSONResponse:
    try:
        return _json(lots.update_lot(engine, lot_id, payload.model_dump(exclude_unset=True)))
    except lots.LotNotFound as exc:
        raise _not_found(exc) from exc


@router.delete("/lots/{lot_id}")
async def delete_lot(lot_id: int, engine: Engine = Depends(get_engine)) -> JSONResponse:
    try:
        lots.delete_lot(engine, lot_id)
    except lots.LotNotFound as exc:
        raise _not_found(exc) from exc
    return _json({"status": "deleted"})


@router.post("/lots/{lot_id}/convert")
async def mark_converted(lot_id: int, engine: Engine = Depends(get_engine)) -> JSONResponse:
    lots.mark_lot_converted(engine, lot_id)
    return _json({"status": "ok"})


@router.post("/lots/{lot_id}/payments")
async def record_payment(lot_id: int, payload: PaymentRequest, engine: Engine = Depends(get_engine)) -> JSONResponse:
    try:
        result = lots.record_debt_payment(
            engine,
            lot_id,
            payload.amount,
            payment_date=payload.payment_date,
            payment_method=payload.payment_method,
            notes=payload.notes,
        )
    except lots.LotNotFound as exc:
        raise _not_found(exc) from exc
    return _json(result)


@router.post("/lots/{lot_id}/payoff")
async def pay_off(lot_id: int, engine: Engine = Depends(get_engine)) -> JSONResponse:
    try:
        result = lots.pay_off_debt(engine, lot_id)
    except lots.NoDebtError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _json(result)


@router.get("/lots/{lot_id}/payments")
async def payments(lot_id: int, engine: Engine = Depends(get_engine)) -> JSONResponse:
    try:
        stats = lots.debt_stats(engine, lot_id)
    except lots.LotNotFound as exc:
        raise _not_found(exc) from exc
    return _json({"payments": lots.payment_history(engine, lot_id), "stats": stats})


@router.post("/lots/{lot_id}/tracking/refresh")
async def refresh_tracking(lot_id: int, engine: Engine = Depends(get_engine)) -> JSONResponse:
    client = UPSClient()
    try:
        outcome = await refresh_lot(engine, client, lot_id)
    finally:
        await client.close()
    return _json(outcome, status_code=200 if outcome.success else 400)


@router.post("/lots/{lot_id}/products", status_code=201)
async def add_product(lot_id: int, payload: LotProductCreate, engine: Engine = Depends(get_engine)) -> JSONResponse:
    try:
        return _json(lots.add_product(engine, lot_id, payload.model_dump()), status_code=201)
    except lots.LotNotFound as exc:
        raise _not_found(exc) from exc


@router.put("/lot-products/{product_id}")
async def update_product(
    product_id: int, payload: LotProductUpdate, engine: Engine = Depends(get_engine)
) -> JSONResponse:
    try:
        return _json(lots.update_product(engine, product_id, payload.model_dump(exclude_unset=True)))
    except lots.LotNotFound as exc:
        raise _not_found(exc) from exc


@router.delete("/lot-products/{product_id}")
async def delete_product(product_id: int, engine: Engine = Depends(get_engine)) -> JSONResponse:
    lots.delete_product(engine, product_id)
    return _json({"status": "deleted"})


@router.post("/lot-products/{product_id}/variants", status_code=201)
async def add_variant(product_id: int, payload: VariantCreate, engine: Engine = Depends(get_engine)) -> JSONResponse:
    return _json(lots.add_variant(engine, product_id, payload.model_dump()), status_code=201)


@router.put("/lot-variants/{variant_id}")
async def update_variant(variant_id: int, payload: VariantUpdate, engine: Engine = Depends(get_engine)) -> JSONResponse:
    try:
        return _json(lots.update_variant(engine, variant_id, payload.model_dump(exclude_unset=True)))
    except lots.LotNotFound as exc:
        raise _not_found(exc) from exc


@router.delete("/lot-variants/{variant_id}")
async def delete_variant(variant_id: int, engine: Engine = Depends(get_engine)) -> JSONResponse:
    lots.delete_variant(engine, variant_id)
    return _json({"status": "deleted"})


@router.post("/lot-products/{product_id}/convert")
async def convert_product(
    product_id: int,
    payload: ConvertRequest | None = None,
    admin: ShopifyAdminClient = Depends(get_admin),
    location_id: str = Depends(get_location_id),
    engine: Engine = Depends(get_engine),
) -> JSONResponse:
    default_price = payload.defaultPrice if payload else None
    try:
        result = await lots.convert_product_to_shopify(
            engine, admin, product_id, location_id=location_id, default_price=default_price
        )
    except lots.LotNotFound as exc:
        raise _not_found(exc) from exc
    return _json(result)

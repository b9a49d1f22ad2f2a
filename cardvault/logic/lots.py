"""Lot purchases, debt payments and lot product conversion."""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

import pandas as pd
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import text

from cardvault.ingest.shopify import ShopifyAdminClient
from cardvault.logic.products import build_lot_product
from cardvault.utils.dates import utcnow

logger = logging.getLogger(__name__)

DEFAULT_SHIPPING_STATUS = "pending_shipment"

LOT_FIELDS = (
    "total_cost",
    "lot_value",
    "initial_debt",
    "ups_tracking_number",
    "shipping_status",
    "tracking_status",
    "estimated_delivery_date",
    "vendor",
    "lot_type",
    "notes",
    "google_sheets_link",
    "collector_link",
)
LOT_PRODUCT_FIELDS = ("product_name", "sku", "description", "estimated_quantity")
VARIANT_FIELDS = ("variant_name", "condition", "rarity", "quantity", "estimated_value")


class LotNotFound(LookupError):
    pass


class NoDebtError(ValueError):
    pass


@dataclass(slots=True)
class PaymentResult:
    payment_id: int
    amount: float
    remaining_debt: float


@dataclass(slots=True)
class ConversionResult:
    success: bool
    message: str
    shopify_product_id: str | None = None


def _money(value: Any) -> float:
    return float(value or 0)


def _row(conn: Connection, sql: str, params: Mapping[str, Any]) -> dict[str, Any] | None:
    row = conn.execute(text(sql), params).mappings().first()
    return dict(row) if row else None


def _update(conn: Connection, table: str, row_id: int, fields: tuple[str, ...], data: Mapping[str, Any]) -> None:
    changes = {key: data[key] for key in fields if key in data}
    if table == "lots":
        changes["updated_at"] = utcnow()
    if not changes:
        return
    assignments = ", ".join(f"{key} = :{key}" for key in changes)
    conn.execute(text(f"UPDATE {table} SET {assignments} WHERE id = :id"), {**changes, "id": row_id})


# --- lots ---


def create_lot(engine: Engine, data: Mapping[str, Any]) -> dict[str, Any]:
    now = utcnow()
    params = {key: data.get(key) for key in LOT_FIELDS}
    params["initial_debt"] = _money(data.get("initial_debt"))
    params["shipping_status"] = data.get("shipping_status") or DEFAULT_SHIPPING_STATUS
    params.update(purchase_date=data["purchase_date"], created_at=now, updated_at=now)
    columns = ", ".join(params)
    values = ", ".join(f":{key}" for key in params)
    with engine.begin() as conn:
        lot_id = conn.execute(
            text(f"INSERT INTO lots ({columns}) VALUES ({values}) RETURNING id"), params
        ).scalar_one()
        lot = _row(conn, "SELECT * FROM lots WHERE id = :id", {"id": lot_id})
    logger.info("Created lot %s from %s", lot_id, data.get("vendor"))
    return lot


def update_lot(engine: Engine, lot_id: int, data: Mapping[str, Any]) -> dict[str, Any]:
    """Update mutable lot fields. The purchase date is fixed at creation."""
    with engine.begin() as conn:
        _update(conn, "lots", lot_id, LOT_FIELDS, data)
        lot = _row(conn, "SELECT * FROM lots WHERE id = :id", {"id": lot_id})
    if lot is None:
        raise LotNotFound(lot_id)
    return lot


def get_lot(engine: Engine, lot_id: int) -> dict[str, Any]:
    with engine.connect() as conn:
        lot = _row(conn, "SELECT * FROM lots WHERE id = :id", {"id": lot_id})
        if lot is None:
            raise LotNotFound(lot_id)
        products = [
            dict(row)
            for row in conn.execute(
                text("SELECT * FROM lot_products WHERE lot_id = :id ORDER BY id"), {"id": lot_id}
            ).mappings()
        ]
        for product in products:
            product["variants"] = [
                dict(row)
                for row in conn.execute(
                    text("SELECT * FROM lot_product_variants WHERE lot_product_id = :id ORDER BY id"),
                    {"id": product["id"]},
                ).mappings()
            ]
        lot["products"] = products
        lot["tracking_events"] = [
            dict(row)
            for row in conn.execute(
                text("SELECT * FROM tracking_events WHERE lot_id = :id ORDER BY event_date DESC"), {"id": lot_id}
            ).mappings()
        ]
        lot["debt_payments"] = [
            dict(row)
            for row in conn.execute(
                text("SELECT * FROM debt_payments WHERE lot_id = :id ORDER BY payment_date DESC"), {"id": lot_id}
            ).mappings()
        ]
    return lot


def list_lots(engine: Engine) -> list[dict[str, Any]]:
    with engine.connect() as conn:
        rows = conn.execute(
            text(
                """
                SELECT l.*, COUNT(p.id) AS product_count
                FROM lots l
                LEFT JOIN lot_products p ON p.lot_id = l.id
                GROUP BY l.id
                ORDER BY l.purchase_date DESC
                """
            )
        ).mappings()
        return [dict(row) for row in rows]


def delete_lot(engine: Engine, lot_id: int) -> None:
    with engine.begin() as conn:
        product_ids = select_ids(conn, "SELECT id FROM lot_products WHERE lot_id = :id", lot_id)
        for product_id in product_ids:
            conn.execute(text("DELETE FROM lot_product_variants WHERE lot_product_id = :id"), {"id": product_id})
        for table in ("lot_products", "debt_payments", "tracking_events"):
            conn.execute(text(f"DELETE FROM {table} WHERE lot_id = :id"), {"id": lot_id})
        result = conn.execute(text("DELETE FROM lots WHERE id = :id"), {"id": lot_id})
    if result.rowcount == 0:
        raise LotNotFound(lot_id)


def select_ids(conn: Connection, sql: str, row_id: int) -> list[int]:
    return [row[0] for row in conn.execute(text(sql), {"id": row_id})]


def mark_lot_converted(engine: Engine, lot_id: int) -> None:
    now = utcnow()
    with engine.begin() as conn:
        conn.execute(
            text("UPDATE lots SET is_converted = TRUE, converted_at = :now, updated_at = :now WHERE id = :id"),
            {"now": now, "id": lot_id},
        )


# --- debt ---


def record_debt_payment(
    engine: Engine,
    lot_id: int,
    amount: float,
    *,
    payment_date: datetime | None = None,
    payment_method: str | None = None,
    notes: str | None = None,
) -> PaymentResult:
    """Record a payment against a lot's debt. Overpayments are clamped to the debt."""
    with engine.begin() as conn:
        lot = _row(conn, "SELECT initial_debt FROM lots WHERE id = :id", {"id": lot_id})
        if lot is None:
            raise LotNotFound(lot_id)
        debt = _money(lot["initial_debt"])
        paid = min(float(amount), debt)
        remaining = round(max(0.0, debt - paid), 2)
        payment_id = conn.execute(
            text(
                """
                INSERT INTO debt_payments (lot_id, payment_amount, payment_date, payment_method, notes)
                VALUES (:lot_id, :amount, :payment_date, :payment_method, :notes)
                RETURNING id
                """
            ),
            {
                "lot_id": lot_id,
                "amount": paid,
                "payment_date": payment_date or utcnow(),
                "payment_method": payment_method,
                "notes": notes,
            },
        ).scalar_one()
        conn.execute(
            text("UPDATE lots SET initial_debt = :remaining, updated_at = :now WHERE id = :id"),
            {"remaining": remaining, "now": utcnow(), "id": lot_id},
        )
    return PaymentResult(payment_id=int(payment_id), amount=paid, remaining_debt=remaining)


def pay_off_debt(engine: Engine, lot_id: int) -> PaymentResult:
    with engine.connect() as conn:
        lot = _row(conn, "SELECT initial_debt FROM lots WHERE id = :id", {"id": lot_id})
    if lot is None or _money(lot["initial_debt"]) <= 0:
        raise NoDebtError("No debt to pay off")
    return record_debt_payment(
        engine, lot_id, _money(lot["initial_debt"]), payment_method="Full Payoff", notes="Debt marked as fully paid"
    )


def payment_history(engine: Engine, lot_id: int) -> list[dict[str, Any]]:
    with engine.connect() as conn:
        rows = conn.execute(
            text("SELECT * FROM debt_payments WHERE lot_id = :id ORDER BY payment_date DESC"), {"id": lot_id}
        ).mappings()
        return [dict(row) for row in rows]


def debt_stats(engine: Engine, lot_id: int) -> dict[str, Any]:
    with engine.connect() as conn:
        lot = _row(conn, "SELECT initial_debt FROM lots WHERE id = :id", {"id": lot_id})
        if lot is None:
            raise LotNotFound(lot_id)
        total_paid, count = conn.execute(
            text("SELECT COALESCE(SUM(payment_amount), 0), COUNT(id) FROM debt_payments WHERE lot_id = :id"),
            {"id": lot_id},
        ).one()
    remaining = _money(lot["initial_debt"])
    total_paid = _money(total_paid)
    original = total_paid + remaining
    return {
        "original_debt": original,
        "total_paid": total_paid,
        "remaining_debt": remaining,
        "payment_count": int(count),
        "is_fully_paid": remaining == 0,
        "payment_progress": (total_paid / original) * 100 if original > 0 else 0.0,
    }


def debt_payment_summary(engine: Engine) -> dict[str, Any]:
    with engine.connect() as conn:
        count, total, average = conn.execute(
            text("SELECT COUNT(id), COALESCE(SUM(payment_amount), 0), AVG(payment_amount) FROM debt_payments")
        ).one()
    return {"total_payments": int(count), "total_amount_paid": _money(total), "average_payment": _money(average)}


# --- lot products ---


def add_product(engine: Engine, lot_id: int, data: Mapping[str, Any]) -> dict[str, Any]:
    with engine.begin() as conn:
        if _row(conn, "SELECT id FROM lots WHERE id = :id", {"id": lot_id}) is None:
            raise LotNotFound(lot_id)
        product_id = conn.execute(
            text(
                """
                INSERT INTO lot_products (lot_id, product_name, sku, description, estimated_quantity, created_at)
                VALUES (:lot_id, :product_name, :sku, :description, :estimated_quantity, :now)
                RETURNING id
                """
            ),
            {
                "lot_id": lot_id,
                "product_name": data["product_name"],
                "sku": data.get("sku"),
                "description": data.get("description"),
                "estimated_quantity": data.get("estimated_quantity") or 1,
                "now": utcnow(),
            },
        ).scalar_one()
        return _row(conn, "SELECT * FROM lot_products WHERE id = :id", {"id": product_id})


def update_product(engine: Engine, product_id: int, data: Mapping[str, Any]) -> dict[str, Any]:
    with engine.begin() as conn:
        _update(conn, "lot_products", product_id, LOT_PRODUCT_FIELDS, data)
        product = _row(conn, "SELECT * FROM lot_products WHERE id = :id", {"id": product_id})
    if product is None:
        raise LotNotFound(product_id)
    return product


def delete_product(engine: Engine, product_id: int) -> None:
    with engine.begin() as conn:
        conn.execute(text("DELETE FROM lot_product_variants WHERE lot_product_id = :id"), {"id": product_id})
        conn.execute(text("DELETE FROM lot_products WHERE id = :id"), {"id": product_id})


def add_variant(engine: Engine, product_id: int, data: Mapping[str, Any]) -> dict[str, Any]:
    with engine.begin() as conn:
        variant_id = conn.execute(
            text(
                """
                INSERT INTO lot_product_variants
                  (lot_product_id, variant_name, condition, rarity, quantity, estimated_value, created_at)
                VALUES (:product_id, :variant_name, :condition, :rarity, :quantity, :estimated_value, :now)
                RETURNING id
                """
            ),
            {
                "product_id": product_id,
                "variant_name": data["variant_name"],
                "condition": data.get("condition"),
                "rarity": data.get("rarity"),
                "quantity": data.get("quantity") or 1,
                "estimated_value": data.get("estimated_value"),
                "now": utcnow(),
            },
        ).scalar_one()
        return _row(conn, "SELECT * FROM lot_product_variants WHERE id = :id", {"id": variant_id})


def update_variant(engine: Engine, variant_id: int, data: Mapping[str, Any]) -> dict[str, Any]:
    with engine.begin() as conn:
        _update(conn, "lot_product_variants", variant_id, VARIANT_FIELDS, data)
        variant = _row(conn, "SELECT * FROM lot_product_variants WHERE id = :id", {"id": variant_id})
    if variant is None:
        raise LotNotFound(variant_id)
    return variant


def delete_variant(engine: Engine, variant_id: int) -> None:
    with engine.begin() as conn:
        conn.execute(text("DELETE FROM lot_product_variants WHERE id = :id"), {"id": variant_id})


async def convert_product_to_shopify(
    engine: Engine,
    admin: ShopifyAdminClient,
    lot_product_id: int,
    *,
    location_id: str,
    default_price: float | None = None,
) -> ConversionResult:
    """Create a draft Shopify product for a lot product and link it.

    Only an existing shopify_product_id short-circuits; two concurrent calls
    can both create a product.
    """
    with engine.connect() as conn:
        product = _row(conn, "SELECT * FROM lot_products WHERE id = :id", {"id": lot_product_id})
        if product is None:
            raise LotNotFound(lot_product_id)
        variants = [
            dict(row)
            for row in conn.execute(
                text("SELECT * FROM lot_product_variants WHERE lot_product_id = :id ORDER BY id"),
                {"id": lot_product_id},
            ).mappings()
        ]
    if product["shopify_product_id"]:
        return ConversionResult(
            success=True,
            message="Product is already linked to Shopify",
            shopify_product_id=product["shopify_product_id"],
        )

    plan = build_lot_product(product, variants, location_id=location_id, default_price=default_price)
    shopify_product_id = await admin.create_product(plan)
    now = utcnow()
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                UPDATE lot_products
                SET shopify_product_id = :shopify_id, is_converted = TRUE, converted_at = :now
                WHERE id = :id
                """
            ),
            {"shopify_id": shopify_product_id, "now": now, "id": lot_product_id},
        )
        conn.execute(
            text("UPDATE lot_product_variants SET is_converted = TRUE, converted_at = :now WHERE lot_product_id = :id"),
            {"now": now, "id": lot_product_id},
        )
    logger.info("Converted lot product %s into %s", lot_product_id, shopify_product_id)
    return ConversionResult(success=True, message="Product created in Shopify", shopify_product_id=shopify_product_id)


# --- analytics ---


def lot_statistics(engine: Engine) -> dict[str, Any]:
    with engine.connect() as conn:
        row = conn.execute(
            text(
                """
                SELECT
                  COUNT(id) AS total_lots,
                  SUM(CASE WHEN is_converted THEN 0 ELSE 1 END) AS pending_lots,
                  SUM(CASE WHEN is_converted THEN 1 ELSE 0 END) AS converted_lots,
                  SUM(CASE WHEN tracking_status = 'delivered' THEN 1 ELSE 0 END) AS delivered_lots,
                  COALESCE(SUM(total_cost), 0) AS total_cost,
                  COALESCE(SUM(initial_debt), 0) AS total_debt
                FROM lots
                """
            )
        ).mappings().one()
    total = int(row["total_lots"] or 0)
    converted = int(row["converted_lots"] or 0)
    delivered = int(row["delivered_lots"] or 0)
    return {
        "total_lots": total,
        "pending_lots": int(row["pending_lots"] or 0),
        "converted_lots": converted,
        "delivered_lots": delivered,
        "conversion_rate": (converted / total) * 100 if total else 0.0,
        "delivery_rate": (delivered / total) * 100 if total else 0.0,
        "total_cost": _money(row["total_cost"]),
        "total_debt": _money(row["total_debt"]),
    }


def _year_frame(engine: Engine, year: int) -> pd.DataFrame:
    with engine.connect() as conn:
        rows = conn.execute(
            text(
                """
                SELECT purchase_date, total_cost, lot_value, initial_debt, tracking_status, is_converted
                FROM lots
                WHERE purchase_date >= :start AND purchase_date < :end
                """
            ),
            {"start": datetime(year, 1, 1), "end": datetime(year + 1, 1, 1)},
        ).fetchall()
    columns = ["purchase_date", "total_cost", "lot_value", "initial_debt", "tracking_status", "is_converted"]
    frame = pd.DataFrame(rows, columns=columns)
    for column in ("total_cost", "lot_value", "initial_debt"):
        frame[column] = frame[column].map(_money).astype(float)
    return frame


def monthly_analytics(engine: Engine, year: int) -> list[dict[str, Any]]:
    """Per-month lot totals for a year, one entry for each of the twelve months."""
    frame = _year_frame(engine, year)
    if frame.empty:
        grouped = pd.DataFrame(columns=["lot_count", "total_cost", "total_estimated_value", "total_debt"])
    else:
        frame["month"] = pd.to_datetime(frame["purchase_date"]).dt.month
        grouped = frame.groupby("month").agg(
            lot_count=("total_cost", "size"),
            total_cost=("total_cost", "sum"),
            total_estimated_value=("lot_value", "sum"),
            total_debt=("initial_debt", "sum"),
        )
    grouped = grouped.reindex(range(1, 13), fill_value=0)
    analytics = []
    for month, data in grouped.iterrows():
        count = int(data["lot_count"])
        cost = float(data["total_cost"])
        estimated = float(data["total_estimated_value"])
        analytics.append(
            {
                "month": calendar.month_name[int(month)],
                "month_number": int(month),
                "lot_count": count,
                "total_value": cost,
                "total_estimated_value": estimated,
                "total_debt": float(data["total_debt"]),
                "average_lot_price": cost / count if count else 0.0,
                "average_paid_percentage": (cost / estimated) * 100 if estimated else 0.0,
            }
        )
    return analytics


def yearly_summary(engine: Engine, year: int) -> dict[str, Any]:
    frame = _year_frame(engine, year)
    total = len(frame)
    delivered = int((frame["tracking_status"] == "delivered").sum()) if total else 0
    converted = int(frame["is_converted"].astype(bool).sum()) if total else 0
    investment = float(frame["total_cost"].sum()) if total else 0.0
    estimated = float(frame["lot_value"].sum()) if total else 0.0
    return {
        "year": year,
        "total_lots": total,
        "total_investment": investment,
        "total_estimated_value": estimated,
        "total_debt": float(frame["initial_debt"].sum()) if total else 0.0,
        "average_lot_price": investment / total if total else 0.0,
        "average_estimated_value": estimated / total if total else 0.0,
        "delivered_lots": delivered,
        "converted_lots": converted,
        "delivery_rate": (delivered / total) * 100 if total else 0.0,
        "conversion_rate": (converted / total) * 100 if total else 0.0,
        "profit_potential": estimated - investment,
    }

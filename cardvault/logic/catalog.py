"""Local mirror of Shopify products fed by product webhooks."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from cardvault.logic.compliance import normalize_gid

logger = logging.getLogger(__name__)


def upsert_product(engine: Engine, payload: Mapping[str, Any]) -> str | None:
    """Store a products/create or products/update payload. Returns the product gid."""
    product_id = normalize_gid(payload.get("admin_graphql_api_id") or payload.get("id"))
    if product_id is None:
        return None
    variants = payload.get("variants") or []
    total = sum(int(variant.get("inventory_quantity") or 0) for variant in variants)
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                INSERT INTO products (id, title, description, status, total_inventory)
                VALUES (:id, :title, :description, :status, :total)
                ON CONFLICT (id) DO UPDATE SET
                  title = excluded.title,
                  description = excluded.description,
                  status = excluded.status,
                  total_inventory = excluded.total_inventory
                """
            ),
            {
                "id": product_id,
                "title": payload.get("title") or "",
                "description": payload.get("body_html"),
                "status": str(payload.get("status") or "").upper() or None,
                "total": total,
            },
        )
        conn.execute(text("DELETE FROM product_variants WHERE product_id = :id"), {"id": product_id})
        for variant in variants:
            variant_id = normalize_gid(variant.get("admin_graphql_api_id") or variant.get("id"), "ProductVariant")
            if variant_id is None:
                continue
            conn.execute(
                text(
                    """
                    INSERT INTO product_variants (id, product_id, title, sku, barcode, price, inventory_quantity)
                    VALUES (:id, :product_id, :title, :sku, :barcode, :price, :quantity)
                    """
                ),
                {
                    "id": variant_id,
                    "product_id": product_id,
                    "title": variant.get("title"),
                    "sku": variant.get("sku"),
                    "barcode": variant.get("barcode"),
                    "price": float(variant.get("price") or 0),
                    "quantity": int(variant.get("inventory_quantity") or 0),
                },
            )
    logger.info("Mirrored product %s with %s variants", product_id, len(variants))
    return product_id


def delete_product(engine: Engine, payload: Mapping[str, Any]) -> None:
    product_id = normalize_gid(payload.get("id"))
    if product_id is None:
        return
    with engine.begin() as conn:
        conn.execute(text("DELETE FROM product_variants WHERE product_id = :id"), {"id": product_id})
        conn.execute(text("DELETE FROM products WHERE id = :id"), {"id": product_id})

"""Seed the database with an offline Shopify session, PSA quota rows and a demo lot."""

from __future__ import annotations

import os
from datetime import datetime

from dotenv import load_dotenv
from sqlalchemy import text

from cardvault.db.session import create_engine_from_env
from cardvault.ingest.shopify import offline_session_id
from cardvault.logic.quota import QuotaRotator


def main() -> None:
    load_dotenv()
    engine = create_engine_from_env()
    shop = os.environ.get("DEFAULT_SHOP", "zardotest.myshopify.com")
    token = os.environ.get("SHOPIFY_ACCESS_TOKEN", "shpat_demo")
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                INSERT INTO sessions (id, shop, access_token, scope, is_online)
                VALUES (:id, :shop, :token, :scope, FALSE)
                ON CONFLICT (id) DO UPDATE SET access_token = EXCLUDED.access_token
                """
            ),
            {"id": offline_session_id(shop), "shop": shop, "token": token, "scope": os.environ.get("SCOPES")},
        )
        conn.execute(
            text(
                """
                INSERT INTO lots (purchase_date, total_cost, lot_value, initial_debt, vendor, lot_type)
                VALUES (:purchase_date, 250.00, 400.00, 100.00, 'Demo Vendor', 'bulk')
                """
            ),
            {"purchase_date": datetime(2026, 1, 15)},
        )
    rotator = QuotaRotator(engine)
    rotator.ensure_rows()
    rotator.reset_daily()
    print("Seed complete")


if __name__ == "__main__":
    main()

import json
from datetime import datetime

import httpx
import pytest
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    PrimaryKeyConstraint,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    text,
)
from sqlalchemy.pool import StaticPool

from cardvault.ingest import KeyConfig
from cardvault.ingest.shopify import ShopifyAdminClient
from cardvault.utils.rate_limit import RateLimiter

metadata = MetaData()

NOW = text("CURRENT_TIMESTAMP")
FALSE = text("0")

sessions = Table(
    "sessions",
    metadata,
    Column("id", Text, primary_key=True),
    Column("shop", Text, nullable=False),
    Column("access_token", Text, nullable=False),
    Column("scope", Text),
    Column("is_online", Boolean, server_default=FALSE),
    Column("expires", DateTime),
)

quota_keys = Table(
    "quota_keys",
    metadata,
    Column("name", Text, primary_key=True),
    Column("calls_remaining", Integer, nullable=False, server_default=text("0")),
    Column("daily_limit", Integer, nullable=False, server_default=text("100")),
)

import_locks = Table(
    "import_locks",
    metadata,
    Column("external_id", Text, primary_key=True),
    Column("kind", Text, nullable=False),
    Column("lease_expires_at", DateTime, nullable=False),
)

notifications = Table(
    "notifications",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", Text, nullable=False),
    Column("length", Integer, nullable=False, server_default=text("3000")),
    Column("type", Text, nullable=False),
    Column("shown", Boolean, nullable=False, server_default=FALSE),
    Column("created_at", DateTime, nullable=False, server_default=NOW),
)

analytics = Table(
    "analytics",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("value", Numeric(12, 2), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=NOW),
)

lots = Table(
    "lots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("purchase_date", DateTime, nullable=False),
    Column("total_cost", Numeric(12, 2), nullable=False),
    Column("lot_value", Numeric(12, 2)),
    Column("initial_debt", Numeric(12, 2), nullable=False, server_default=text("0")),
    Column("ups_tracking_number", Text),
    Column("shipping_status", Text, nullable=False, server_default=text("'pending_shipment'")),
    Column("tracking_status", Text),
    Column("estimated_delivery_date", DateTime),
    Column("vendor", Text),
    Column("lot_type", Text),
    Column("notes", Text),
    Column("google_sheets_link", Text),
    Column("collector_link", Text),
    Column("is_converted", Boolean, nullable=False, server_default=FALSE),
    Column("converted_at", DateTime),
    Column("created_at", DateTime, nullable=False, server_default=NOW),
    Column("updated_at", DateTime, nullable=False, server_default=NOW),
)

lot_products = Table(
    "lot_products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("lot_id", Integer, ForeignKey("lots.id"), nullable=False),
    Column("product_name", Text, nullable=False),
    Column("sku", Text),
    Column("description", Text),
    Column("estimated_quantity", Integer, nullable=False, server_default=text("1")),
    Column("shopify_product_id", Text),
    Column("is_converted", Boolean, nullable=False, server_default=FALSE),
    Column("converted_at", DateTime),
    Column("created_at", DateTime, nullable=False, server_default=NOW),
)

lot_product_variants = Table(
    "lot_product_variants",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("lot_product_id", Integer, ForeignKey("lot_products.id"), nullable=False),
    Column("variant_name", Text, nullable=False),
    Column("condition", Text),
    Column("rarity", Text),
    Column("quantity", Integer, nullable=False, server_default=text("1")),
    Column("estimated_value", Numeric(12, 2)),
    Column("shopify_variant_id", Text),
    Column("is_converted", Boolean, nullable=False, server_default=FALSE),
    Column("converted_at", DateTime),
    Column("created_at", DateTime, nullable=False, server_default=NOW),
)

debt_payments = Table(
    "debt_payments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("lot_id", Integer, ForeignKey("lots.id"), nullable=False),
    Column("payment_amount", Numeric(12, 2), nullable=False),
    Column("payment_date", DateTime, nullable=False, server_default=NOW),
    Column("payment_method", Text),
    Column("notes", Text),
)

tracking_events = Table(
    "tracking_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("lot_id", Integer, ForeignKey("lots.id"), nullable=False),
    Column("event_type", Text, nullable=False),
    Column("event_description", Text),
    Column("event_date", DateTime, nullable=False),
    Column("location", Text),
    Column("created_at", DateTime, nullable=False, server_default=NOW),
    UniqueConstraint("lot_id", "event_type", "event_date"),
)

products = Table(
    "products",
    metadata,
    Column("id", Text, primary_key=True),
    Column("title", Text, nullable=False),
    Column("description", Text),
    Column("status", Text),
    Column("total_inventory", Integer, nullable=False, server_default=text("0")),
)

product_variants = Table(
    "product_variants",
    metadata,
    Column("id", Text, primary_key=True),
    Column("product_id", Text, ForeignKey("products.id"), nullable=False),
    Column("title", Text),
    Column("sku", Text),
    Column("barcode", Text),
    Column("price", Numeric(12, 2)),
    Column("inventory_quantity", Integer, nullable=False, server_default=text("0")),
)

wishlists = Table(
    "wishlists",
    metadata,
    Column("id", Text, primary_key=True),
    Column("email", Text),
    Column("created_at", DateTime, nullable=False, server_default=NOW),
)

keywords = Table(
    "keywords",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("word", Text, nullable=False, unique=True),
)

wishlist_keywords = Table(
    "wishlist_keywords",
    metadata,
    Column("wishlist_id", Text, ForeignKey("wishlists.id"), nullable=False),
    Column("keyword_id", Integer, ForeignKey("keywords.id"), nullable=False),
    PrimaryKeyConstraint("wishlist_id", "keyword_id"),
)

suggested_keywords = Table(
    "suggested_keywords",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("word", Text, nullable=False, unique=True),
    Column("created_at", DateTime, nullable=False, server_default=NOW),
)

emails_sent = Table(
    "emails_sent",
    metadata,
    Column("product_id", Text, primary_key=True),
    Column("last_sent", DateTime, nullable=False),
)

SHOP = "zardotest.myshopify.com"
GRAPHQL_URL = f"https://{SHOP}/admin/api/2024-10/graphql.json"
KEYS = {
    "dylan": KeyConfig(name="dylan", env="DYLAN_PSA_API_KEY"),
    "zardoCards": KeyConfig(name="zardoCards", env="ZARDO_CARDS_PSA_API_KEY"),
}


@pytest.fixture()
def engine():
    # one shared connection so request handlers on other threads see the same database
    engine = create_engine(
        "sqlite://", future=True, connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def psa_env(monkeypatch):
    monkeypatch.setenv("DYLAN_PSA_API_KEY", "dylan-secret")
    monkeypatch.setenv("ZARDO_CARDS_PSA_API_KEY", "zardo-secret")
    return KEYS


@pytest.fixture()
def seeded_engine(engine):
    with engine.begin() as conn:
        conn.execute(sessions.insert(), {"id": f"offline_{SHOP}", "shop": SHOP, "access_token": "shpat_test"})
        conn.execute(quota_keys.insert(), [
            {"name": "dylan", "calls_remaining": 5, "daily_limit": 100},
            {"name": "zardoCards", "calls_remaining": 40, "daily_limit": 100},
        ])
        conn.execute(lots.insert(), [
            {
                "purchase_date": datetime(2026, 3, 4),
                "total_cost": 200,
                "lot_value": 500,
                "initial_debt": 150,
                "vendor": "Card Show",
                "ups_tracking_number": "1Z999AA10123456784",
                "tracking_status": None,
                "is_converted": False,
            },
            {
                "purchase_date": datetime(2026, 7, 19),
                "total_cost": 100,
                "lot_value": 160,
                "initial_debt": 0,
                "vendor": "Estate Sale",
                "ups_tracking_number": None,
                "tracking_status": "delivered",
                "is_converted": True,
            },
        ])
    return engine


class GraphQLRouter:
    """Answers Admin API GraphQL calls by operation, recording every call."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        query = body["query"]
        for marker, response in self.responses.items():
            if marker in query:
                self.calls.append((marker, body.get("variables") or {}))
                data = response(body.get("variables") or {}) if callable(response) else response
                return httpx.Response(200, json={"data": data})
        raise AssertionError(f"Unexpected GraphQL call: {query[:60]}")

    def called(self, marker):
        return [variables for name, variables in self.calls if name == marker]


def admin_client(session: httpx.AsyncClient) -> ShopifyAdminClient:
    return ShopifyAdminClient(SHOP, "shpat_test", session=session, rate_limiter=RateLimiter(rate=1000))

"""Shopify Admin API client and merchant session lookup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx
from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from cardvault.ingest import queries
from cardvault.logic.products import InventorySetInput, ProductPlan
from cardvault.utils.errors import ErrorKind, PipelineError
from cardvault.utils.rate_limit import RateLimiter
from cardvault.utils.retry import retry_async

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-10"


class ShopifyError(RuntimeError):
    """Transport or top-level GraphQL failure from the Admin API."""

    def __init__(self, message: str, *, status_code: int | None = None, errors: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors


@dataclass(slots=True)
class StoreSession:
    shop: str
    access_token: str


@dataclass(slots=True)
class Location:
    id: str
    name: str | None = None


def offline_session_id(shop: str) -> str:
    return f"offline_{shop}"


def load_session(engine: Engine, shop: str) -> StoreSession | None:
    with engine.connect() as conn:
        row = conn.execute(
            text("SELECT shop, access_token FROM sessions WHERE id = :id"),
            {"id": offline_session_id(shop)},
        ).first()
    if row is None:
        return None
    return StoreSession(shop=row[0], access_token=row[1])


def user_errors(payload: dict[str, Any] | None, key: str = "userErrors") -> list[dict[str, Any]]:
    if not payload:
        return []
    return list(payload.get(key) or [])


class ShopifyAdminClient:
    def __init__(
        self,
        shop: str,
        access_token: str,
        *,
        session: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        api_version: str | None = None,
    ) -> None:
        self.shop = shop
        self.access_token = access_token
        self.api_version = api_version or os.environ.get("SHOPIFY_API_VERSION", DEFAULT_API_VERSION)
        self._session = session or httpx.AsyncClient(timeout=30.0)
        self._rate_limiter = rate_limiter or RateLimiter(rate=2.0)
        self._publications: list[str] | None = None

    @classmethod
    def for_shop(cls, engine: Engine, shop: str, **kwargs: Any) -> "ShopifyAdminClient":
        store = load_session(engine, shop)
        if store is None:
            raise PipelineError(ErrorKind.PERMANENT_AUTH, f"No offline session stored for {shop}")
        return cls(store.shop, store.access_token, **kwargs)

    @property
    def graphql_url(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}/graphql.json"

    async def close(self) -> None:
        await self._session.aclose()

    async def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a GraphQL document and return its data. Raises ShopifyError on transport or top-level errors."""
        await self._rate_limiter.wait_for_host(self.shop)
        try:
            response = await retry_async(self._session.post)(
                self.graphql_url,
                json={"query": query, "variables": variables or {}},
                headers={"X-Shopify-Access-Token": self.access_token, "Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise ShopifyError(f"Shopify request failed: {exc}") from exc
        if not response.is_success:
            raise ShopifyError(f"Shopify returned {response.status_code}", status_code=response.status_code)
        body = response.json()
        if body.get("errors"):
            raise ShopifyError("Shopify GraphQL errors", status_code=response.status_code, errors=body["errors"])
        return body.get("data") or {}

    async def probe(self) -> bool:
        """True when the stored token can still read the shop."""
        try:
            data = await self.graphql(queries.SHOP_PROBE)
        except ShopifyError as exc:
            logger.warning("Session probe failed for %s: %s", self.shop, exc)
            return False
        return bool((data.get("shop") or {}).get("name"))

    async def default_location(self) -> Location | None:
        data = await self.graphql(queries.DEFAULT_LOCATION)
        location = data.get("location")
        if not location or not location.get("id"):
            return None
        return Location(id=location["id"], name=location.get("name"))

    async def publication_ids(self) -> list[str]:
        if self._publications is None:
            data = await self.graphql(queries.PUBLICATIONS)
            self._publications = [node["id"] for node in (data.get("publications") or {}).get("nodes", [])]
        return self._publications

    async def publish_to_all(self, product_id: str) -> bool:
        """Publish a product on every sales channel. Failures are logged, not raised."""
        try:
            publication_ids = await self.publication_ids()
            if not publication_ids:
                logger.warning("No publications available for %s", self.shop)
                return False
            data = await self.graphql(
                queries.PUBLISHABLE_PUBLISH,
                {"id": product_id, "input": [{"publicationId": pid} for pid in publication_ids]},
            )
        except ShopifyError:
            logger.warning("Publishing %s failed", product_id, exc_info=True)
            return False
        errors = user_errors(data.get("publishablePublish"))
        if errors:
            logger.warning("Publishing %s returned errors: %s", product_id, errors)
            return False
        logger.info("Published %s to %s channels", product_id, len(publication_ids))
        return True

    async def set_status(self, product_id: str, status: str) -> None:
        data = await self.graphql(queries.PRODUCT_UPDATE_STATUS, {"input": {"id": product_id, "status": status}})
        errors = user_errors(data.get("productUpdate"))
        if errors:
            raise ShopifyError(f"productUpdate failed for {product_id}", errors=errors)

    async def product(self, product_id: str) -> dict[str, Any] | None:
        data = await self.graphql(queries.PRODUCT_STATUS, {"id": product_id})
        return data.get("product")

    async def product_for_inventory_item(self, inventory_item_id: str) -> str | None:
        data = await self.graphql(queries.INVENTORY_ITEM_PRODUCT, {"id": inventory_item_id})
        item = data.get("inventoryItem") or {}
        product = (item.get("variant") or {}).get("product") or {}
        return product.get("id")

    async def create_product(self, plan: ProductPlan) -> str:
        """Create a product with media, variants and starting inventory. Returns the product gid."""
        plan.validate()
        data = await self.graphql(queries.PRODUCT_CREATE, {"input": plan.product.to_graphql()})
        payload = data.get("productCreate") or {}
        errors = user_errors(payload)
        if errors or not payload.get("product"):
            raise PipelineError(ErrorKind.VALIDATION, f"productCreate rejected: {errors}")
        product_id = payload["product"]["id"]
        logger.info("Created product %s (%s)", product_id, plan.product.title)

        for media in plan.media:
            try:
                result = await self.graphql(
                    queries.PRODUCT_CREATE_MEDIA, {"productId": product_id, "media": [media.to_graphql()]}
                )
            except ShopifyError:
                logger.warning("Attaching %s to %s failed", media.original_source, product_id, exc_info=True)
                continue
            media_errors = user_errors(result.get("productCreateMedia"), "mediaUserErrors")
            if media_errors:
                logger.warning("Media errors for %s: %s", product_id, media_errors)

        await self.add_variants(product_id, plan, strategy="REMOVE_STANDALONE_VARIANT")
        return product_id

    async def add_variants(self, product_id: str, plan: ProductPlan, *, strategy: str = "DEFAULT") -> list[dict[str, Any]]:
        data = await self.graphql(
            queries.VARIANTS_BULK_CREATE,
            {
                "productId": product_id,
                "variants": [variant.to_graphql() for variant in plan.variants],
                "strategy": strategy,
            },
        )
        payload = data.get("productVariantsBulkCreate") or {}
        errors = user_errors(payload)
        if errors:
            raise PipelineError(ErrorKind.VALIDATION, f"productVariantsBulkCreate rejected: {errors}")
        created = payload.get("productVariants") or []
        await self.set_inventory(plan.inventory_for(created))
        return created

    async def set_inventory(self, inventory: InventorySetInput) -> None:
        inventory.validate()
        if not inventory.quantities:
            return
        data = await self.graphql(queries.INVENTORY_SET_QUANTITIES, {"input": inventory.to_graphql()})
        errors = user_errors(data.get("inventorySetQuantities"))
        if errors:
            raise PipelineError(ErrorKind.VALIDATION, f"inventorySetQuantities rejected: {errors}")

    async def adjust_inventory(self, inventory_item_id: str, location_id: str, delta: int) -> None:
        data = await self.graphql(
            queries.INVENTORY_ADJUST_QUANTITIES,
            {
                "input": {
                    "name": "available",
                    "reason": "correction",
                    "changes": [{"inventoryItemId": inventory_item_id, "locationId": location_id, "delta": delta}],
                }
            },
        )
        errors = user_errors(data.get("inventoryAdjustQuantities"))
        if errors:
            raise PipelineError(ErrorKind.VALIDATION, f"inventoryAdjustQuantities rejected: {errors}")

    async def update_variant_prices(self, product_id: str, prices: dict[str, float]) -> None:
        data = await self.graphql(
            queries.VARIANTS_BULK_UPDATE,
            {
                "productId": product_id,
                "variants": [{"id": variant_id, "price": f"{price:.2f}"} for variant_id, price in prices.items()],
            },
        )
        errors = user_errors(data.get("productVariantsBulkUpdate"))
        if errors:
            raise PipelineError(ErrorKind.VALIDATION, f"productVariantsBulkUpdate rejected: {errors}")

"""Typed builders for Shopify product, variant, media and inventory mutations."""

from __future__ import annotations

import html
import os
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from cardvault.ingest.models import CertRecord, ScrapedProduct
from cardvault.utils.errors import ErrorKind, PipelineError

CONDITIONS = {
    "mint": "Mint",
    "near-mint": "Near Mint",
    "low-played": "Low Played",
    "moderately-played": "Moderately Played",
    "heavily-played": "Heavily Played",
    "damaged": "Damaged",
}
STANDARD_CONDITION = "standard"
SINGLE_CARD_WEIGHT = 0.004


@dataclass(slots=True)
class MediaInput:
    original_source: str
    alt: str

    def validate(self) -> None:
        if not self.original_source.startswith(("http://", "https://")):
            raise PipelineError(ErrorKind.VALIDATION, f"Media source is not a URL: {self.original_source}")

    def to_graphql(self) -> dict[str, Any]:
        return {"originalSource": self.original_source, "alt": self.alt, "mediaContentType": "IMAGE"}


@dataclass(slots=True)
class ProductInput:
    title: str
    description_html: str
    product_type: str
    option_name: str
    option_values: list[str]
    tags: list[str] = field(default_factory=list)
    vendor: str | None = None
    status: str = "ACTIVE"

    def validate(self) -> None:
        if not self.title.strip():
            raise PipelineError(ErrorKind.VALIDATION, "Product title is empty")
        if self.status not in {"ACTIVE", "DRAFT", "ARCHIVED"}:
            raise PipelineError(ErrorKind.VALIDATION, f"Unknown product status {self.status}")
        if not self.option_values:
            raise PipelineError(ErrorKind.VALIDATION, "Product needs at least one option value")

    def to_graphql(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "title": self.title,
            "descriptionHtml": self.description_html,
            "productType": self.product_type,
            "tags": self.tags,
            "status": self.status,
            "productOptions": [
                {"name": self.option_name, "values": [{"name": value} for value in self.option_values]}
            ],
        }
        if self.vendor is not None:
            payload["vendor"] = self.vendor
        return payload


@dataclass(slots=True)
class VariantInput:
    option_name: str
    option_value: str
    price: float
    quantity: int = 1
    cost: str = "0.0"
    sku: str | None = None
    barcode: str | None = None
    weight_pounds: float | None = None

    def validate(self) -> None:
        if self.price < 0:
            raise PipelineError(ErrorKind.VALIDATION, f"Negative price for {self.option_value}")
        if self.quantity < 0:
            raise PipelineError(ErrorKind.VALIDATION, f"Negative quantity for {self.option_value}")

    def to_graphql(self) -> dict[str, Any]:
        inventory_item: dict[str, Any] = {"tracked": True, "cost": self.cost}
        if self.sku:
            inventory_item["sku"] = self.sku
        if self.weight_pounds is not None:
            inventory_item["measurement"] = {"weight": {"unit": "POUNDS", "value": self.weight_pounds}}
        payload: dict[str, Any] = {
            "price": f"{self.price:.2f}",
            "inventoryPolicy": "DENY",
            "optionValues": [{"optionName": self.option_name, "name": self.option_value}],
            "inventoryItem": inventory_item,
        }
        if self.barcode:
            payload["barcode"] = self.barcode
        return payload

    def matches(self, selected_options: Iterable[Mapping[str, Any]]) -> bool:
        return any(
            option.get("name") == self.option_name and option.get("value") == self.option_value
            for option in selected_options
        )


@dataclass(slots=True)
class InventorySetInput:
    location_id: str
    quantities: list[tuple[str, int]]
    reason: str = "other"

    def validate(self) -> None:
        if not self.location_id:
            raise PipelineError(ErrorKind.VALIDATION, "Inventory needs a location")

    def to_graphql(self) -> dict[str, Any]:
        return {
            "name": "available",
            "reason": self.reason,
            "ignoreCompareQuantity": True,
            "quantities": [
                {"inventoryItemId": item_id, "locationId": self.location_id, "quantity": quantity}
                for item_id, quantity in self.quantities
            ],
        }


@dataclass(slots=True)
class ProductPlan:
    product: ProductInput
    variants: list[VariantInput]
    media: list[MediaInput]
    location_id: str

    def validate(self) -> None:
        self.product.validate()
        if not self.variants:
            raise PipelineError(ErrorKind.VALIDATION, "Product needs at least one variant")
        for variant in self.variants:
            variant.validate()
        for media in self.media:
            media.validate()
        if not self.location_id:
            raise PipelineError(ErrorKind.VALIDATION, "No location for starting inventory")

    def inventory_for(self, created: Iterable[Mapping[str, Any]]) -> InventorySetInput:
        """Pair created variants (by selected option) with their planned quantities."""
        quantities: list[tuple[str, int]] = []
        for node in created:
            for variant in self.variants:
                if variant.matches(node.get("selectedOptions") or []):
                    quantities.append((node["inventoryItem"]["id"], variant.quantity))
                    break
        return InventorySetInput(location_id=self.location_id, quantities=quantities)


def psa_title(record: CertRecord) -> str:
    if record.autograph_grade:
        grade = re.sub(r"\d", "", record.autograph_grade)
        signer = record.primary_signers[0] if record.primary_signers else ""
        parts = ["PSA AUTO", grade, signer, record.subject, record.variety or ""]
    else:
        grade = re.sub(r"\D", "", record.grade_description or "")
        parts = ["PSA", grade, record.subject, record.variety or ""]
    return " ".join(" ".join(parts).split())


def psa_description(record: CertRecord) -> str:
    rows = [
        ("Certification Number", record.cert_number),
        ("Year", record.year),
        ("Brand", record.brand),
        ("Card Number", record.card_number),
        ("Player", record.subject),
        ("Variety/Pedigree", record.variety),
        ("Grade", record.grade_description),
    ]
    cells = "".join(f"<tr><th>{label}</th><td>{html.escape(value or '')}</td></tr>" for label, value in rows)
    return f'<meta charset="utf-8"><table class="table table-fixed table-header-right"><tbody>{cells}</tbody></table>'


def build_product_input(
    record: CertRecord,
    price: float,
    location_id: str,
    image_urls: Iterable[str] = (),
) -> ProductPlan:
    """Build the creation plan for a graded card at the requested price."""
    if record.sub_items:
        variants = [
            VariantInput(
                option_name="Title",
                option_value=f"PSA {record.cert_number} {item.label}".strip(),
                price=item.price if item.price is not None else price,
                quantity=item.quantity,
            )
            for item in record.sub_items
        ]
    else:
        variants = [VariantInput(option_name="Title", option_value=f"PSA {record.cert_number}", price=price)]
    urls = list(image_urls)
    media = [
        MediaInput(original_source=url, alt="PSA Card Front" if index == 0 else "PSA Card Back")
        for index, url in enumerate(urls)
    ]
    product = ProductInput(
        title=psa_title(record),
        description_html=psa_description(record),
        product_type=record.category or "PSA Card",
        option_name="Title",
        option_values=[variant.option_value for variant in variants],
        tags=["PSA"],
    )
    return ProductPlan(product=product, variants=variants, media=media, location_id=location_id)


def parse_weight(value: str | float | None) -> float | None:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = re.search(r"[\d.]+", value)
    return float(match.group()) if match else None


def is_single_card(product: ScrapedProduct) -> bool:
    return product.ship_weight is not None and abs(product.ship_weight - SINGLE_CARD_WEIGHT) < 1e-9


def build_scraped_product(
    scraped: ScrapedProduct,
    *,
    price: float,
    quantity: int,
    condition: str,
    location_id: str,
    image_url: str,
) -> ProductPlan:
    """Plan a draft product for a scraped listing. Single cards get a Condition option."""
    if is_single_card(scraped):
        if condition not in CONDITIONS:
            raise PipelineError(ErrorKind.VALIDATION, f"Single cards need a condition, got {condition!r}")
        option_name = "Condition"
        option_values = list(CONDITIONS.values())
        option_value = CONDITIONS[condition]
    else:
        option_name = "Title"
        option_values = ["Default Title"]
        option_value = "Default Title"
    variant = VariantInput(
        option_name=option_name,
        option_value=option_value,
        price=price,
        quantity=quantity,
        barcode=scraped.barcode,
        weight_pounds=scraped.ship_weight,
    )
    product = ProductInput(
        title=scraped.title,
        description_html=(scraped.description or "").replace("(Pokemon)", "").strip(),
        product_type=scraped.card_type or "",
        option_name=option_name,
        option_values=option_values,
        vendor="",
        status="DRAFT",
    )
    media = [MediaInput(original_source=image_url, alt="image")]
    return ProductPlan(product=product, variants=[variant], media=media, location_id=location_id)


def build_lot_product(
    lot_product: Mapping[str, Any],
    variants: list[Mapping[str, Any]],
    *,
    location_id: str,
    default_price: float | None = None,
) -> ProductPlan:
    """Plan a draft product from a lot product and its variants."""
    if variants:
        planned = [
            VariantInput(
                option_name="Title",
                option_value=str(variant["variant_name"]),
                price=float(variant.get("estimated_value") or default_price or 0),
                quantity=int(variant.get("quantity") or 1),
                sku=lot_product.get("sku"),
            )
            for variant in variants
        ]
    else:
        planned = [
            VariantInput(
                option_name="Title",
                option_value="Default Title",
                price=float(default_price or 0),
                quantity=int(lot_product.get("estimated_quantity") or 1),
                sku=lot_product.get("sku"),
                barcode=lot_product.get("sku"),
            )
        ]
    product = ProductInput(
        title=str(lot_product["product_name"]),
        description_html=lot_product.get("description") or "",
        product_type="",
        option_name="Title",
        option_values=[variant.option_value for variant in planned],
        vendor=os.environ.get("SHOPIFY_DEFAULT_VENDOR", "ZardoCards"),
        status="DRAFT",
    )
    return ProductPlan(product=product, variants=planned, media=[], location_id=location_id)

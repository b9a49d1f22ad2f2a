"""Ingestion data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping


@dataclass(slots=True)
class QuotaKey:
    name: str
    calls_remaining: int
    secret: str | None = None


@dataclass(slots=True)
class SubItem:
    label: str
    price: float | None = None
    quantity: int = 1


@dataclass(slots=True)
class CertRecord:
    cert_number: str
    subject: str
    year: str | None = None
    brand: str | None = None
    card_number: str | None = None
    variety: str | None = None
    category: str | None = None
    grade_description: str | None = None
    autograph_grade: str | None = None
    primary_signers: list[str] = field(default_factory=list)
    sub_items: list[SubItem] = field(default_factory=list)
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CertImage:
    url: str
    is_front: bool = False


@dataclass(slots=True)
class ScrapedProduct:
    title: str
    price: float | None
    image_url: str | None
    collection: str | None = None
    card_type: str | None = None
    description: str | None = None
    ship_weight: float | None = None
    barcode: str | None = None


@dataclass(slots=True)
class TrackingActivity:
    status_type: str
    description: str
    occurred_at: datetime
    location: str | None = None


@dataclass(slots=True)
class TrackingInfo:
    tracking_number: str
    status: str
    description: str | None = None
    estimated_delivery: datetime | None = None
    activities: list[TrackingActivity] = field(default_factory=list)

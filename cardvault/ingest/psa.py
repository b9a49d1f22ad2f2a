"""PSA public API client."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from cardvault.ingest.models import CertImage, CertRecord, SubItem
from cardvault.logic.quota import QuotaRotator
from cardvault.utils.errors import ErrorKind, PipelineError, classify_status
from cardvault.utils.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

PSA_API_BASE = "https://api.psacard.com/publicapi/cert"


class PSAClient:
    def __init__(
        self,
        rotator: QuotaRotator,
        *,
        session: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        base_url: str = PSA_API_BASE,
    ) -> None:
        self.rotator = rotator
        self.base_url = base_url.rstrip("/")
        self._session = session or httpx.AsyncClient(timeout=30.0)
        self._rate_limiter = rate_limiter or RateLimiter(rate=2.0)

    async def close(self) -> None:
        await self._session.aclose()

    async def fetch_record(self, cert_number: str) -> CertRecord:
        data = await self._get(f"{self.base_url}/GetByCertNumber/{cert_number}")
        cert = data.get("PSACert") if isinstance(data, dict) else None
        if not cert:
            raise PipelineError(ErrorKind.NOT_FOUND, f"Certificate {cert_number} not found")
        return parse_cert(cert)

    async def fetch_images(self, cert_number: str) -> list[CertImage]:
        data = await self._get(f"{self.base_url}/GetImagesByCertNumber/{cert_number}")
        images = [
            CertImage(url=item["ImageURL"], is_front=bool(item.get("IsFrontImage")))
            for item in data or []
            if isinstance(item, dict) and item.get("ImageURL")
        ]
        return sort_images(images)

    async def _get(self, url: str) -> Any:
        key = self.rotator.acquire_key()
        if key is None:
            raise PipelineError(ErrorKind.QUOTA_EXHAUSTED, "No PSA API key has calls left today")
        if not self.rotator.consume(key.name):
            raise PipelineError(ErrorKind.QUOTA_EXHAUSTED, f"PSA key {key.name} ran out of calls")
        await self._rate_limiter.wait_for_host(httpx.URL(url).host)
        try:
            response = await self._session.get(url, headers={"Authorization": f"Bearer {key.secret}"})
        except httpx.HTTPError as exc:
            raise PipelineError(ErrorKind.NETWORK_ERROR, f"PSA request failed: {exc}") from exc
        if response.status_code >= 400:
            kind = classify_status(response.status_code)
            raise PipelineError(kind, f"PSA returned {response.status_code} for {url}")
        logger.info("PSA %s using key %s", url, key.name)
        return response.json()


def sort_images(images: list[CertImage]) -> list[CertImage]:
    """Front images first; order is otherwise preserved."""
    return sorted(images, key=lambda image: not image.is_front)


def parse_cert(cert: dict[str, Any]) -> CertRecord:
    signers = cert.get("PrimarySigners") or []
    if isinstance(signers, str):
        signers = [signers]
    sub_items = [
        SubItem(
            label=str(item.get("Label") or item.get("Name") or ""),
            price=_as_float(item.get("Price")),
            quantity=int(item.get("Quantity") or 1),
        )
        for item in cert.get("SubGrades") or []
        if isinstance(item, dict)
    ]
    return CertRecord(
        cert_number=str(cert.get("CertNumber", "")),
        subject=str(cert.get("Subject") or "").strip(),
        year=_as_text(cert.get("Year")),
        brand=_as_text(cert.get("Brand")),
        card_number=_as_text(cert.get("CardNumber")),
        variety=_as_text(cert.get("Variety")),
        category=_as_text(cert.get("Category")),
        grade_description=_as_text(cert.get("GradeDescription")),
        autograph_grade=_as_text(cert.get("AutographGrade")),
        primary_signers=[str(s) for s in signers],
        sub_items=sub_items,
        raw=cert,
    )


def _as_text(value: Any) -> str | None:
    if value in (None, ""):
        return None
    return str(value).strip()


def _as_float(value: Any) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

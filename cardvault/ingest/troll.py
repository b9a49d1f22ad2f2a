"""Troll and Toad product page scraper."""

from __future__ import annotations

import asyncio
import logging
import re
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from cardvault.ingest.models import ScrapedProduct
from cardvault.logic.products import parse_weight
from cardvault.utils.rate_limit import RateLimiter
from cardvault.utils.retry import retry_async

logger = logging.getLogger(__name__)

BASE_URL = "https://www.trollandtoad.com"
DATA_PAGE_RE = re.compile(r"\d+")


def soup_from_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _text(node) -> str:
    return node.get_text(" ", strip=True) if node else ""


def parse_product_page(html: str) -> ScrapedProduct:
    soup = soup_from_html(html)
    name = _text(soup.select_one(".product-name")).replace("(Pokemon)", "").strip()
    price_text = _text(soup.select_one("#sale-price"))
    price_match = re.search(r"[\d,]+(?:\.\d+)?", price_text)
    image = soup.select_one("#main-prod-img img")
    image_url = image.get("src") if image else None
    if image_url:
        image_url = urljoin(BASE_URL, image_url.replace("/small/", "/pictures/"))
    collection_link = soup.select_one(".font-small.font-md-default a")
    details: dict[str, str] = {}
    for row in soup.select("tbody tr"):
        cells = row.find_all("td")
        if len(cells) >= 2:
            details[_text(cells[0])] = _text(cells[1])
    return ScrapedProduct(
        title=name or "Could not find product name",
        price=float(price_match.group().replace(",", "")) if price_match else None,
        image_url=image_url,
        collection=_text(collection_link) or None,
        card_type=details.get("Card Type") or None,
        description=details.get("Description") or None,
        ship_weight=parse_weight(details.get("Ship Weight")),
        barcode=details.get("Barcode") or None,
    )


def last_page(html: str) -> int:
    node = soup_from_html(html).select_one(".pagination .lastPage")
    if node is None:
        return 1
    match = DATA_PAGE_RE.search(str(node.get("data-page", "")))
    return int(match.group()) if match else 1


def product_links(html: str) -> list[str]:
    soup = soup_from_html(html)
    return [urljoin(BASE_URL, link["href"]) for link in soup.select(".card-text") if link.get("href")]


class TrollClient:
    def __init__(
        self,
        *,
        session: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._session = session or httpx.AsyncClient(
            timeout=10.0, follow_redirects=True, headers={"User-Agent": "Mozilla/5.0 (compatible; CardvaultBot/1.0)"}
        )
        self._rate_limiter = rate_limiter or RateLimiter(rate=1.0)

    async def close(self) -> None:
        await self._session.aclose()

    async def fetch_product(self, url: str) -> ScrapedProduct:
        return parse_product_page(await self._get_text(url))

    async def fetch_collection(self, url: str) -> list[ScrapedProduct]:
        """Scrape every product on every page of a category listing."""
        pages = last_page(await self._get_text(url))
        links: list[str] = []
        for page in range(1, pages + 1):
            links.extend(product_links(await self._get_text(f"{url}?page-no={page}")))
        logger.info("Found %s products over %s pages at %s", len(links), pages, url)
        results = await asyncio.gather(*(self.fetch_product(link) for link in links), return_exceptions=True)
        products = []
        for link, result in zip(links, results):
            if isinstance(result, Exception):
                logger.warning("Skipping %s: %s", link, result)
                continue
            products.append(result)
        return products

    async def _get_text(self, url: str) -> str:
        await self._rate_limiter.wait_for_host(urlparse(url).netloc)
        response = await retry_async(self._session.get)(url)
        response.raise_for_status()
        return response.text

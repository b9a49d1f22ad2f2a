"""Image download, resize and re-hosting."""

from __future__ import annotations

import asyncio
import io
import logging
import os
import uuid
from typing import Iterable

import boto3
import httpx
from PIL import Image

from cardvault.utils.retry import retry_async

logger = logging.getLogger(__name__)

MAX_WIDTH = 500
REMOVE_BG_URL = "https://api.remove.bg/v1.0/removebg"


class ImageStore:
    """S3-compatible bucket holding re-hosted product images."""

    def __init__(self, client=None, *, bucket: str | None = None, public_base_url: str | None = None) -> None:
        self.bucket = bucket or os.environ.get("S3_BUCKET", "zardocards")
        self.public_base_url = (public_base_url or os.environ.get("S3_PUBLIC_BASE_URL", "")).rstrip("/")
        self._client = client

    @property
    def client(self):
        if self._client is None:
            session = boto3.session.Session()
            self._client = session.client(
                "s3",
                endpoint_url=os.environ.get("S3_ENDPOINT"),
                aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID"),
                aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY"),
            )
        return self._client

    def upload(self, data: bytes, *, content_type: str = "image/png") -> str:
        key = f"{uuid.uuid4()}.png"
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"


def resize_png(data: bytes, *, width: int = MAX_WIDTH, trim: bool = False) -> bytes:
    image = Image.open(io.BytesIO(data)).convert("RGBA")
    if trim:
        bbox = image.getchannel("A").getbbox()
        if bbox:
            image = image.crop(bbox)
    if image.width > width:
        height = max(1, round(image.height * width / image.width))
        image = image.resize((width, height), Image.LANCZOS)
    buf = io.BytesIO()
    image.save(buf, format="PNG", optimize=True)
    return buf.getvalue()


class ImageRelay:
    def __init__(self, store: ImageStore | None = None, *, session: httpx.AsyncClient | None = None) -> None:
        self.store = store or ImageStore()
        self._session = session or httpx.AsyncClient(timeout=30.0, follow_redirects=True)

    async def close(self) -> None:
        await self._session.aclose()

    async def relay(self, source_url: str) -> str | None:
        """Re-host one image. None when any step fails."""
        try:
            data = await self._download(source_url)
            png = resize_png(data)
            return await self._upload(png)
        except Exception:
            logger.warning("Dropping image %s", source_url, exc_info=True)
            return None

    async def relay_all(self, urls: Iterable[str]) -> list[str]:
        hosted: list[str] = []
        for url in urls:
            result = await self.relay(url)
            if result:
                hosted.append(result)
        return hosted

    async def relay_without_background(self, source_url: str) -> str:
        """Remove the background, trim, resize and upload. Failures propagate."""
        data = await self.remove_background(source_url)
        png = resize_png(data, trim=True)
        return await self._upload(png)

    async def remove_background(self, source_url: str) -> bytes:
        api_key = os.environ.get("REMOVE_BG_API_KEY")
        if not api_key:
            raise RuntimeError("REMOVE_BG_API_KEY is not configured")
        response = await self._session.post(
            REMOVE_BG_URL,
            headers={"X-Api-Key": api_key},
            data={"size": "auto", "image_url": source_url},
        )
        if response.is_success:
            return response.content
        errors = _error_codes(response)
        if "unknown_foreground" in errors:
            logger.info("No foreground found in %s; keeping original", source_url)
            return await self._download(source_url)
        raise RuntimeError(f"remove.bg returned {response.status_code}: {errors or response.text}")

    async def _download(self, url: str) -> bytes:
        response = await retry_async(self._session.get)(url)
        response.raise_for_status()
        return response.content

    async def _upload(self, data: bytes) -> str:
        return await asyncio.get_running_loop().run_in_executor(None, self.store.upload, data)


def _error_codes(response: httpx.Response) -> list[str]:
    try:
        payload = response.json()
    except ValueError:
        return []
    return [err.get("code", "") for err in payload.get("errors", []) if isinstance(err, dict)]

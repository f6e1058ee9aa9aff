from __future__ import annotations

import asyncio
import base64
import hashlib
import io
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Union
from urllib.parse import unquote_to_bytes

import httpx
from PIL import Image

from .errors import ImageLoadError
from .models import FloorPlan

logger = logging.getLogger(__name__)

Source = Union[str, Path, bytes]


def _decode(data: bytes) -> Image.Image:
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        return img.convert("RGBA")


def _read_file(path: Path) -> bytes:
    return path.read_bytes()


def _parse_data_url(url: str) -> bytes:
    header, sep, payload = url.partition(",")
    if not sep:
        raise ValueError("malformed data URL")
    if header.endswith(";base64"):
        return base64.b64decode(payload, validate=True)
    return unquote_to_bytes(payload)


def describe(source: Source) -> str:
    if isinstance(source, bytes):
        return f"<{len(source)} bytes>"
    text = str(source)
    if text.startswith("data:"):
        return text.split(",", 1)[0] + ",..."
    return text


class FloorPlanLoader:
    """Resolves a floor plan's image source into a decoded RGBA image.

    Sources may be http(s) URLs, data URLs, filesystem paths, raw encoded
    bytes or an already decoded PIL image. Decoded images are cached by source
    so repeated renders of the same floor plan decode it only once, and
    concurrent loads of one source share a single fetch.
    """

    def __init__(
        self,
        cache_size: int = 16,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cache_size = cache_size
        self.timeout_s = timeout_s
        self.transport = transport
        self._cache: "OrderedDict[str, Image.Image]" = OrderedDict()
        self._pending: Dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._cache)

    @staticmethod
    def cache_key(source: Source) -> str:
        if isinstance(source, bytes):
            return "sha1:" + hashlib.sha1(source).hexdigest()
        text = str(source)
        if text.startswith("data:"):
            return "sha1:" + hashlib.sha1(text.encode()).hexdigest()
        return text

    async def load(self, floor_plan: FloorPlan) -> Image.Image:
        source = floor_plan.image
        if isinstance(source, Image.Image):
            return source if source.mode == "RGBA" else source.convert("RGBA")

        key = self.cache_key(source)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            logger.debug("floor plan cache hit for %s", describe(source))
            return cached

        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._resolve(source))
            self._pending[key] = task
            task.add_done_callback(lambda t, k=key: self._finish(k, t))
        return await asyncio.shield(task)

    def _finish(self, key: str, task: asyncio.Task) -> None:
        self._pending.pop(key, None)
        if task.cancelled() or task.exception() is not None:
            return
        self._cache[key] = task.result()
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug("evicted floor plan %s from cache", evicted)

    async def _resolve(self, source: Source) -> Image.Image:
        try:
            data = await self._fetch(source)
            image = await asyncio.to_thread(_decode, data)
        except (httpx.HTTPError, httpx.InvalidURL, OSError, ValueError, Image.DecompressionBombError) as exc:
            logger.warning("floor plan %s failed to load: %s", describe(source), exc)
            raise ImageLoadError(describe(source), str(exc) or type(exc).__name__) from exc
        logger.debug("decoded floor plan %s (%dx%d)", describe(source), image.width, image.height)
        return image

    async def _fetch(self, source: Source) -> bytes:
        if isinstance(source, bytes):
            return source
        text = str(source)
        if text.startswith(("http://", "https://")):
            async with httpx.AsyncClient(
                timeout=self.timeout_s, follow_redirects=True, transport=self.transport
            ) as client:
                resp = await client.get(text)
                resp.raise_for_status()
                return resp.content
        if text.startswith("data:"):
            return _parse_data_url(text)
        return await asyncio.to_thread(_read_file, Path(text))

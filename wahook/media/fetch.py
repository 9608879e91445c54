"""Resolve outbound media sources into inline payloads."""

from __future__ import annotations

import base64
import binascii
import mimetypes
from urllib.parse import urlparse

import httpx
from loguru import logger

from wahook.core.errors import InvalidRequest, MediaFetchFailed
from wahook.core.models import MediaKind, MediaPayload, MediaSource

DEFAULT_MAX_BYTES = 64 * 1024 * 1024
_KIND_PREFIXES: dict[str, tuple[str, ...]] = {
    "image": ("image/",),
    "audio": ("audio/",),
    "video": ("video/",),
    "document": (),  # any type
}


def _guess_mimetype(name: str | None) -> str | None:
    if not name:
        return None
    mime, _ = mimetypes.guess_type(name)
    return mime


def _filename_from_url(url: str) -> str | None:
    path = urlparse(url).path
    name = path.rsplit("/", 1)[-1] if path else ""
    return name or None


class MediaFetcher:
    """Turns a URL or inline base64 descriptor into a ``MediaPayload``."""

    def __init__(
        self,
        *,
        timeout_s: float = 30.0,
        max_bytes: int = DEFAULT_MAX_BYTES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout_s = timeout_s
        self._max_bytes = max_bytes
        self._transport = transport

    async def resolve(self, kind: MediaKind, source: MediaSource) -> MediaPayload:
        if kind not in _KIND_PREFIXES:
            raise InvalidRequest(f"Unsupported media kind: {kind}")
        if source.data:
            payload = self._from_inline(source)
        elif source.url:
            payload = await self._from_url(source)
        else:
            raise InvalidRequest("Missing media source: provide url or data")

        self._check_kind(kind, payload.mimetype)
        return payload

    def _from_inline(self, source: MediaSource) -> MediaPayload:
        data = (source.data or "").strip()
        mimetype = source.mimetype
        # data:<mime>;base64,<payload>
        if data.startswith("data:") and "," in data:
            header, data = data.split(",", 1)
            mimetype = mimetype or header[5:].split(";", 1)[0] or None

        try:
            raw = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidRequest(f"Invalid base64 media payload: {e}") from e
        if not raw:
            raise InvalidRequest("Empty media payload")
        if len(raw) > self._max_bytes:
            raise InvalidRequest(f"Media exceeds {self._max_bytes} bytes")

        mimetype = mimetype or _guess_mimetype(source.filename)
        if not mimetype:
            raise InvalidRequest("Missing mimetype for inline media")
        return MediaPayload(
            mimetype=mimetype,
            data=base64.b64encode(raw).decode("ascii"),
            filename=source.filename,
            size_bytes=len(raw),
        )

    async def _from_url(self, source: MediaSource) -> MediaPayload:
        url = source.url or ""
        if urlparse(url).scheme not in ("http", "https"):
            raise InvalidRequest(f"Unsupported media URL: {url}")

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_s,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Media fetch failed for {url}: {e}")
            raise MediaFetchFailed(f"Failed to fetch media from {url}: {e}") from e

        raw = response.content
        if not raw:
            raise MediaFetchFailed(f"Empty media response from {url}")
        if len(raw) > self._max_bytes:
            raise MediaFetchFailed(f"Media from {url} exceeds {self._max_bytes} bytes")

        filename = source.filename or _filename_from_url(url)
        header_type = response.headers.get("content-type", "").split(";", 1)[0].strip()
        mimetype = source.mimetype or header_type or _guess_mimetype(filename)
        if not mimetype or mimetype == "application/octet-stream":
            mimetype = _guess_mimetype(filename) or mimetype
        if not mimetype:
            raise MediaFetchFailed(f"Could not determine media type for {url}")

        return MediaPayload(
            mimetype=mimetype,
            data=base64.b64encode(raw).decode("ascii"),
            filename=filename,
            size_bytes=len(raw),
        )

    @staticmethod
    def _check_kind(kind: str, mimetype: str) -> None:
        prefixes = _KIND_PREFIXES[kind]
        if prefixes and not mimetype.startswith(prefixes):
            raise MediaFetchFailed(f"Unsupported type {mimetype} for {kind}")

import logging
import mimetypes
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from .config import DEFAULT_MAX_SOURCE_BYTES, load_settings
from .errors import FetchFailure, ResourceTooLarge
from .handles import Blob, default_registry, is_object_url

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def normalize_max_bytes(max_bytes) -> int:
    if isinstance(max_bytes, bool) or not isinstance(max_bytes, (int, float)):
        return DEFAULT_MAX_SOURCE_BYTES
    if max_bytes != max_bytes or max_bytes in (float("inf"), float("-inf")):
        return DEFAULT_MAX_SOURCE_BYTES
    return max(1, int(max_bytes))


def _guess_mime(name, fallback="application/octet-stream"):
    mime, _ = mimetypes.guess_type(str(name))
    return mime or fallback


def _check_size(size, max_bytes):
    if size > max_bytes:
        raise ResourceTooLarge(size, max_bytes)


def _read_path(path: Path, max_bytes) -> Blob:
    try:
        size = path.stat().st_size
    except FileNotFoundError as exc:
        raise FetchFailure(404, f"Failed to fetch image: 404 ({path})") from exc
    _check_size(size, max_bytes)
    return Blob(path.read_bytes(), _guess_mime(path))


def _from_registry(url, registry, max_bytes) -> Blob:
    try:
        target = registry.resolve(url)
    except KeyError as exc:
        raise FetchFailure(404, f"Failed to fetch image: 404 ({url})") from exc
    if isinstance(target, Blob):
        _check_size(target.size, max_bytes)
        return target
    return _read_path(Path(target), max_bytes)


async def _fetch_http(url, client, max_bytes) -> Blob:
    async with client.stream("GET", url) as response:
        if not response.is_success:
            raise FetchFailure(response.status_code)
        declared = response.headers.get("content-length", "")
        if declared.isdigit():
            _check_size(int(declared), max_bytes)
        chunks = []
        received = 0
        async for chunk in response.aiter_bytes(CHUNK_SIZE):
            received += len(chunk)
            # Declared length can be missing or wrong; stop buffering at the ceiling.
            _check_size(received, max_bytes)
            chunks.append(chunk)
        mime = response.headers.get("content-type", "").split(";")[0].strip()
    return Blob(b"".join(chunks), mime or _guess_mime(urlparse(url).path))


async def fetch_source(url, *, max_bytes=None, client=None, registry=None) -> Blob:
    """Retrieve a source image from an http(s) url, a ``blob:`` handle or a local path.

    The byte ceiling is enforced before the body is decoded, and for http
    sources before it is fully buffered.
    """
    max_bytes = normalize_max_bytes(load_settings().max_source_bytes if max_bytes is None else max_bytes)
    registry = default_registry if registry is None else registry

    if is_object_url(url):
        return _from_registry(url, registry, max_bytes)

    scheme = urlparse(url).scheme.lower()
    if scheme in ("http", "https"):
        if client is not None:
            return await _fetch_http(url, client, max_bytes)
        timeout = httpx.Timeout(load_settings().fetch_timeout, connect=30.0)
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as owned:
            return await _fetch_http(url, owned, max_bytes)
    if scheme == "file":
        return _read_path(Path(unquote(urlparse(url).path)), max_bytes)
    if scheme and len(scheme) > 1:
        raise FetchFailure(0, f"Unsupported source scheme: {scheme}")
    return _read_path(Path(url), max_bytes)

import logging
from dataclasses import dataclass, field
from typing import Callable, List

from .canvas import Canvas, normalize_mime_type
from .config import SLICE_MIME_TYPE
from .decode import decode_source
from .errors import InvalidInput
from .fetch import fetch_source
from .handles import Blob, default_registry
from .layout import GridLayout, cell_bounds, clamp_int

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlicedFrame:
    index: int
    blob: Blob
    object_url: str
    width: int
    height: int


@dataclass
class SliceResult:
    frames: List[SlicedFrame]
    revoke: Callable[[], None] = field(repr=False)


def _revoker(registry, urls):
    def revoke():
        # Best effort and idempotent; the registry ignores urls it no longer holds.
        registry.revoke_all(urls)

    return revoke


async def slice_to_outputs(
    source_url,
    layout: GridLayout,
    count,
    *,
    mime_type=SLICE_MIME_TYPE,
    quality=None,
    max_source_bytes=None,
    registry=None,
    client=None,
    decoders=None,
) -> SliceResult:
    """Cut ``source_url`` into ``count`` grid cells, each with its own object url.

    The caller owns the returned urls and should call ``revoke()`` once the
    frames are no longer displayed.
    """
    url = (source_url or "").strip() if isinstance(source_url, str) else ""
    if not url:
        raise InvalidInput("Missing source image")

    cols = clamp_int(getattr(layout, "cols", None), 0)
    rows = clamp_int(getattr(layout, "rows", None), 0)
    if cols <= 0 or rows <= 0:
        raise InvalidInput("Invalid grid layout")

    total = max(1, clamp_int(count, 1))
    registry = default_registry if registry is None else registry
    mime = normalize_mime_type(mime_type, SLICE_MIME_TYPE)

    blob = await fetch_source(url, max_bytes=max_source_bytes, client=client, registry=registry)
    source = await decode_source(blob, decoders)

    frames = []
    object_urls = []
    canvas = Canvas()
    try:
        for index in range(total):
            rect = cell_bounds(index, cols, rows, source.width, source.height)
            if rect is None:
                continue
            canvas.resize(rect.width, rect.height)
            canvas.draw(source.image, (rect.x, rect.y, rect.width, rect.height))
            frame_blob = canvas.to_blob(mime, quality)
            frame_url = registry.create(frame_blob)
            object_urls.append(frame_url)
            frames.append(SlicedFrame(index, frame_blob, frame_url, rect.width, rect.height))
    except BaseException:
        registry.revoke_all(object_urls)
        raise
    finally:
        canvas.close()
        source.release()

    logger.info("Sliced %s into %d cells (%dx%d grid)", url, len(frames), cols, rows)
    return SliceResult(frames, _revoker(registry, list(object_urls)))

import io
import logging
import math

from PIL import Image

from .config import LOSSY_DEFAULT_QUALITY
from .errors import EncodeFailure
from .handles import Blob

logger = logging.getLogger(__name__)

MIME_FORMATS = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/webp": "WEBP",
}

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
}

FORMAT_MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
}


def normalize_mime_type(mime_type, default="image/png") -> str:
    """Lower-case a requested type; unsupported types fall back to PNG."""
    if not isinstance(mime_type, str) or not mime_type.strip():
        return default
    mime = mime_type.strip().lower()
    if mime not in MIME_FORMATS:
        logger.debug("Unsupported output type %r, encoding as image/png", mime_type)
        return "image/png"
    return "image/jpeg" if mime == "image/jpg" else mime


def normalize_quality(quality):
    """Clamp into [0, 1]; anything non-numeric or non-finite means unset."""
    if isinstance(quality, bool) or not isinstance(quality, (int, float)):
        return None
    if not math.isfinite(quality):
        return None
    return max(0.0, min(1.0, float(quality)))


class Canvas:
    """Offscreen RGBA drawing surface reused across frames."""

    def __init__(self, width=0, height=0):
        self._image = None
        self.resize(width, height)

    @property
    def width(self):
        return self._width

    @property
    def height(self):
        return self._height

    def resize(self, width, height):
        # Like assigning canvas.width/height: the bitmap is reset.
        self._width = max(0, int(width))
        self._height = max(0, int(height))
        self.clear()

    def clear(self):
        if self._image is not None:
            self._image.close()
        self._image = Image.new("RGBA", (max(1, self._width), max(1, self._height)), (0, 0, 0, 0))

    def draw(self, source, box=None):
        """Draw ``box`` (x, y, w, h) of ``source`` at the origin, stretched to fill the surface."""
        region = source
        if box is not None:
            x, y, w, h = box
            region = source.crop((x, y, x + w, y + h))
        if region.mode != "RGBA":
            region = region.convert("RGBA")
        if region.size != self._image.size:
            region = region.resize(self._image.size, Image.BILINEAR)
        self._image.paste(region, (0, 0))

    def snapshot(self):
        return self._image.copy()

    def to_blob(self, mime_type="image/png", quality=None) -> Blob:
        if self._width <= 0 or self._height <= 0:
            raise EncodeFailure("Failed to encode image blob")
        mime = normalize_mime_type(mime_type)
        fmt = MIME_FORMATS[mime]
        params = {}
        q = normalize_quality(quality)
        if fmt != "PNG":
            params["quality"] = int(round((LOSSY_DEFAULT_QUALITY if q is None else q) * 100))
        image = self._image
        if fmt == "JPEG":
            # JPEG has no alpha; composite onto black like a cleared canvas export.
            flattened = Image.new("RGB", image.size, (0, 0, 0))
            flattened.paste(image, mask=image.getchannel("A"))
            image = flattened
        buf = io.BytesIO()
        try:
            image.save(buf, format=fmt, **params)
        except (OSError, ValueError) as exc:
            raise EncodeFailure("Failed to encode image blob") from exc
        data = buf.getvalue()
        if not data:
            raise EncodeFailure("Failed to encode image blob")
        return Blob(data, mime)

    def close(self):
        if self._image is not None:
            self._image.close()
            self._image = None

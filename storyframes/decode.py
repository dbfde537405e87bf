"""Source image decoding.

Strategies are tried in order and the first one producing a non-empty
image wins: Pillow decodes in-process; when it cannot, ffmpeg transcodes
the bytes (written to a temporary file) into PNG first.
"""
import io
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from PIL import Image, UnidentifiedImageError

from . import ffmpeg
from .errors import DecodeFailure, FfmpegError
from .handles import Blob

logger = logging.getLogger(__name__)


@dataclass
class DecodedSource:
    image: Image.Image
    width: int
    height: int
    strategy: str
    temp_path: Optional[str] = None
    released: bool = field(default=False, repr=False)

    def release(self) -> None:
        """Close the decode buffer and remove any temporary file. Never raises."""
        if self.released:
            return
        self.released = True
        try:
            self.image.close()
        except Exception:
            logger.debug("Ignoring failed close of decoded source", exc_info=True)
        if self.temp_path:
            try:
                os.unlink(self.temp_path)
            except OSError:
                logger.debug("Ignoring failed removal of %s", self.temp_path, exc_info=True)


@dataclass(frozen=True)
class DecodeStrategy:
    name: str
    probe: Callable[[], bool]
    decode: Callable


async def decode_with_pillow(blob: Blob) -> DecodedSource:
    image = Image.open(io.BytesIO(blob.data))
    try:
        image.load()
    except Exception:
        image.close()
        raise
    return DecodedSource(image, image.width, image.height, "pillow")


def _suffix_for(mime_type):
    return {
        "image/png": ".png",
        "image/jpeg": ".jpg",
        "image/webp": ".webp",
        "image/gif": ".gif",
        "image/avif": ".avif",
        "image/heic": ".heic",
    }.get(mime_type, ".bin")


async def decode_with_ffmpeg(blob: Blob) -> DecodedSource:
    fd, temp_path = tempfile.mkstemp(prefix="storyframes-", suffix=_suffix_for(blob.mime_type))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(blob.data)
        png = await ffmpeg.transcode_to_png(temp_path)
        image = Image.open(io.BytesIO(png))
        image.load()
    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            logger.debug("Ignoring failed removal of %s", temp_path, exc_info=True)
        raise
    return DecodedSource(image, image.width, image.height, "ffmpeg", temp_path=temp_path)


DEFAULT_STRATEGIES: List[DecodeStrategy] = [
    DecodeStrategy("pillow", lambda: True, decode_with_pillow),
    DecodeStrategy("ffmpeg", ffmpeg.ffmpeg_available, decode_with_ffmpeg),
]


async def decode_source(blob: Blob, strategies=None) -> DecodedSource:
    for strategy in DEFAULT_STRATEGIES if strategies is None else strategies:
        if not strategy.probe():
            logger.debug("Decode strategy %s unavailable", strategy.name)
            continue
        try:
            decoded = await strategy.decode(blob)
        except (OSError, ValueError, UnidentifiedImageError, Image.DecompressionBombError, FfmpegError):
            logger.debug("Decode strategy %s failed", strategy.name, exc_info=True)
            continue
        if decoded.width and decoded.height:
            return decoded
        decoded.release()
    raise DecodeFailure("Invalid image size")

"""Capture still frames from a video at requested timestamps.

Works for local files (through a temporary object url) and for any url
ffmpeg can open. Seeks are sequential on a single element; the delivered
frame is the one the decoder lands on, which may trail the request by up
to a keyframe interval.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Union

from .canvas import Canvas, normalize_mime_type
from .config import CAPTURE_MIME_TYPE, CAPTURE_QUALITY, SEEK_TIMEOUT
from .errors import EncodeFailure, MediaLoadFailure
from .handles import Blob, default_registry
from .seek import seek_video
from .video import FfmpegVideo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileSource:
    path: Union[str, Path]


@dataclass(frozen=True)
class UrlSource:
    url: str


@dataclass(frozen=True)
class CapturedFrame:
    time: float  # requested seconds, clamped into [0, duration]
    blob: Blob
    object_url: str
    width: int
    height: int


@dataclass
class CaptureResult:
    frames: List[CapturedFrame]
    duration: float
    width: int
    height: int
    registry: object = field(default=None, repr=False, compare=False)

    def revoke(self):
        if self.registry is not None:
            self.registry.revoke_all([frame.object_url for frame in self.frames])


def clamp_time(time, duration):
    """Clamp to [0, duration]; an unknown (zero) duration leaves the upper end open."""
    return max(0.0, min(time, duration or time))


def sample_times(duration, count, *, margin=0.0):
    """Evenly spaced timestamps across ``duration`` seconds."""
    if not duration or duration <= 0 or not math.isfinite(duration) or count < 1:
        return []
    margin = max(0.0, min(margin, duration / 2))
    start, end = margin, duration - margin
    if count == 1:
        return [round((start + end) / 2, 3)]
    step = (end - start) / (count - 1)
    return [round(start + i * step, 3) for i in range(count)]


def _prepare_video(video, source, registry):
    video.plays_inline = True
    video.muted = True
    video.preload = "auto"
    video.cross_origin = "anonymous"
    temp_url = None
    if isinstance(source, FileSource):
        temp_url = registry.create(Path(source.path))
        video.src = temp_url
    elif isinstance(source, UrlSource):
        video.src = source.url
    else:
        raise TypeError(f"Unsupported frame source: {type(source).__name__}")
    return temp_url


async def _wait_for_metadata(video):
    loop = asyncio.get_running_loop()
    loaded = loop.create_future()

    def on_loaded(event):
        if not loaded.done():
            loaded.set_result(None)

    def on_error(event):
        if not loaded.done():
            loaded.set_exception(MediaLoadFailure("Failed to load video"))

    video.add_event_listener("loadedmetadata", on_loaded, once=True)
    video.add_event_listener("error", on_error, once=True)
    try:
        await loaded
    finally:
        video.remove_event_listener("loadedmetadata", on_loaded)
        video.remove_event_listener("error", on_error)


async def capture_at_times(
    source,
    times,
    *,
    mime_type=CAPTURE_MIME_TYPE,
    quality=CAPTURE_QUALITY,
    registry=None,
    video_factory=None,
    seek_timeout=SEEK_TIMEOUT,
) -> CaptureResult:
    times = list(times)
    if not times:
        return CaptureResult([], 0, 0, 0)

    registry = default_registry if registry is None else registry
    video = (video_factory or (lambda: FfmpegVideo(registry=registry)))()
    mime = normalize_mime_type(mime_type, CAPTURE_MIME_TYPE)
    quality = CAPTURE_QUALITY if quality is None else quality

    frames = []
    temp_url = None
    canvas = None
    try:
        temp_url = _prepare_video(video, source, registry)
        await _wait_for_metadata(video)
        duration = video.duration or 0
        width, height = video.video_width, video.video_height

        canvas = Canvas(width, height)
        for t in times:
            target = clamp_time(t, duration)
            await seek_video(video, target, timeout=seek_timeout)
            if video.frame is None:
                raise EncodeFailure("Failed to encode frame")
            canvas.draw(video.frame)
            blob = canvas.to_blob(mime, quality)
            object_url = registry.create(blob)
            frames.append(CapturedFrame(target, blob, object_url, canvas.width, canvas.height))
    except BaseException:
        registry.revoke_all([frame.object_url for frame in frames])
        raise
    finally:
        if canvas is not None:
            canvas.close()
        if temp_url:
            registry.revoke_all([temp_url])
        try:
            video.close()
        except Exception:
            logger.debug("Ignoring failed close of video element", exc_info=True)

    logger.info("Captured %d frames from %s", len(frames), source)
    return CaptureResult(frames, duration, width, height, registry=registry)


async def probe_video(source, *, registry=None, video_factory=None):
    """Load metadata only and return (duration, width, height)."""
    registry = default_registry if registry is None else registry
    video = (video_factory or (lambda: FfmpegVideo(registry=registry)))()
    temp_url = None
    try:
        temp_url = _prepare_video(video, source, registry)
        await _wait_for_metadata(video)
        return video.duration or 0, video.video_width, video.video_height
    finally:
        if temp_url:
            registry.revoke_all([temp_url])
        try:
            video.close()
        except Exception:
            logger.debug("Ignoring failed close of video element", exc_info=True)

"""Event-driven video element backed by ffprobe/ffmpeg.

``VideoElement`` mirrors the small slice of the HTML media element the
capture pipeline relies on: settable ``src`` and ``current_time``,
``loadedmetadata``/``loadeddata``/``seeked``/``error`` events and an
optional per-frame callback. Listeners run on the asyncio loop that owns
the element.
"""
import asyncio
import io
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Any

from PIL import Image

from . import ffmpeg
from .config import load_settings
from .errors import StoryframesError
from .handles import Blob, default_registry, is_object_url

logger = logging.getLogger(__name__)

HAVE_NOTHING = 0
HAVE_METADATA = 1
HAVE_CURRENT_DATA = 2
HAVE_FUTURE_DATA = 3
HAVE_ENOUGH_DATA = 4


@dataclass(frozen=True)
class MediaEvent:
    type: str
    target: Any


class VideoElement:
    supports_frame_callbacks = False

    def __init__(self):
        self._listeners = {}
        self.muted = False
        self.plays_inline = False
        self.preload = "metadata"
        self.cross_origin = None
        self._src = ""
        self._current_time = 0.0
        self.duration = 0.0
        self.video_width = 0
        self.video_height = 0
        self.ready_state = HAVE_NOTHING
        self.seeking = False
        self.error = None
        self.frame = None

    def add_event_listener(self, type, callback, once=False):
        entries = self._listeners.setdefault(type, [])
        # Bound methods are recreated on every access; compare by equality.
        if not any(cb == callback for cb, _ in entries):
            entries.append((callback, once))

    def remove_event_listener(self, type, callback):
        entries = self._listeners.get(type)
        if entries:
            self._listeners[type] = [(cb, once) for cb, once in entries if cb != callback]

    def listener_count(self, type=None):
        if type is not None:
            return len(self._listeners.get(type, ()))
        return sum(len(entries) for entries in self._listeners.values())

    def dispatch_event(self, type):
        event = MediaEvent(type, self)
        for callback, once in list(self._listeners.get(type, ())):
            if once:
                self.remove_event_listener(type, callback)
            try:
                callback(event)
            except Exception:
                logger.exception("Unhandled error in %r listener", type)

    @property
    def src(self):
        return self._src

    @src.setter
    def src(self, value):
        self._src = value
        self._load(value)

    @property
    def current_time(self):
        return self._current_time

    @current_time.setter
    def current_time(self, value):
        self._seek(float(value))

    def request_video_frame_callback(self, callback):
        raise NotImplementedError("frame callbacks are not supported by this element")

    def _load(self, src):
        raise NotImplementedError

    def _seek(self, time):
        raise NotImplementedError

    def close(self):
        self._listeners.clear()
        if self.frame is not None:
            self.frame.close()
            self.frame = None


class FfmpegVideo(VideoElement):
    """Video element that probes with ffprobe and decodes single frames with ffmpeg."""

    supports_frame_callbacks = True

    def __init__(self, *, registry=None, settings=None):
        super().__init__()
        self._registry = default_registry if registry is None else registry
        self._settings = settings or load_settings()
        self._path = None
        self._temp_path = None
        self._load_task = None
        self._seek_task = None
        # Bumped by every load and seek; decodes from older generations are dropped.
        self._generation = 0
        self._presented = -1
        self._frame_callbacks = []

    def _resolve_path(self, src):
        if not is_object_url(src):
            return str(src)
        target = self._registry.resolve(src)
        if not isinstance(target, Blob):
            return os.fspath(target)
        fd, self._temp_path = tempfile.mkstemp(prefix="storyframes-video-")
        with os.fdopen(fd, "wb") as f:
            f.write(target.data)
        return self._temp_path

    def _load(self, src):
        self._cancel(self._load_task)
        self._cancel(self._seek_task)
        self._generation += 1
        self.ready_state = HAVE_NOTHING
        self.error = None
        self._load_task = asyncio.get_running_loop().create_task(self._run_load(src))

    async def _run_load(self, src):
        try:
            self._path = self._resolve_path(src)
            info = await ffmpeg.ffprobe_info(self._path, self._settings)
        except (StoryframesError, OSError, KeyError) as exc:
            self._fail(exc)
            return
        self.duration = info.duration
        self.video_width = info.width
        self.video_height = info.height
        self.ready_state = HAVE_METADATA
        generation = self._generation
        self.dispatch_event("loadedmetadata")
        try:
            await self._decode_at(self._current_time, generation)
        except (StoryframesError, OSError) as exc:
            if generation != self._generation:
                logger.debug("Ignoring failed decode superseded by a seek: %s", exc)
                return
            self._fail(exc)

    def _seek(self, time):
        self._current_time = max(0.0, time)
        if self.ready_state == HAVE_NOTHING:
            # Applied once the first frame is decoded.
            return
        self._cancel(self._seek_task)
        self._generation += 1
        self.seeking = True
        self._seek_task = asyncio.get_running_loop().create_task(
            self._run_seek(self._current_time, self._generation)
        )

    async def _run_seek(self, time, generation):
        try:
            applied = await self._decode_at(time, generation)
        except (StoryframesError, OSError) as exc:
            self.seeking = False
            self._fail(exc)
            return
        if applied:
            self.seeking = False
            self.dispatch_event("seeked")

    async def _decode_at(self, time, generation):
        """Decode the frame at ``time``; only the newest request may replace ``frame``."""
        png = await ffmpeg.extract_frame(self._path, time, self._settings)
        image = Image.open(io.BytesIO(png))
        image.load()
        if generation != self._generation:
            image.close()
            return False
        previous, self.frame = self.frame, image
        if previous is not None:
            previous.close()
        self._presented = generation
        first_data = self.ready_state < HAVE_CURRENT_DATA
        self.ready_state = max(self.ready_state, HAVE_CURRENT_DATA)
        self._flush_frame_callbacks()
        if first_data:
            self.dispatch_event("loadeddata")
        return True

    def request_video_frame_callback(self, callback):
        self._frame_callbacks.append(callback)
        if self._presented == self._generation and self.frame is not None:
            asyncio.get_running_loop().call_soon(self._flush_frame_callbacks)

    def _flush_frame_callbacks(self):
        callbacks, self._frame_callbacks = self._frame_callbacks, []
        if not callbacks:
            return
        loop = asyncio.get_running_loop()
        metadata = {"media_time": self._current_time, "width": self.video_width, "height": self.video_height}
        for callback in callbacks:
            loop.call_soon(callback, loop.time(), metadata)

    def _fail(self, exc):
        logger.debug("Video error for %s: %s", self._src, exc)
        self.error = exc
        self.dispatch_event("error")

    @staticmethod
    def _cancel(task):
        if task is not None and not task.done():
            task.cancel()

    def close(self):
        self._cancel(self._load_task)
        self._cancel(self._seek_task)
        self._frame_callbacks = []
        super().close()
        if self._temp_path:
            try:
                os.unlink(self._temp_path)
            except OSError:
                logger.debug("Ignoring failed removal of %s", self._temp_path, exc_info=True)
            self._temp_path = None

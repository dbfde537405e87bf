"""
Shared fixtures: in-memory images, a private handle registry and a
scriptable video element that fires media events on the running loop.
"""
import asyncio
import io

import httpx
import pytest
from PIL import Image

from storyframes.handles import ObjectUrlRegistry
from storyframes.video import HAVE_CURRENT_DATA, HAVE_METADATA, VideoElement

QUADRANT_COLORS = [(255, 0, 0), (0, 255, 0), (0, 0, 255), (255, 255, 0)]


def png_bytes(image):
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def quadrant_image(width=40, height=40):
    """Four solid quadrants: red, green / blue, yellow."""
    img = Image.new("RGB", (width, height))
    half_w, half_h = width // 2, height // 2
    for i, color in enumerate(QUADRANT_COLORS):
        x = (i % 2) * half_w
        y = (i // 2) * half_h
        img.paste(color, (x, y, x + half_w, y + half_h))
    return img


def color_for_time(t):
    shade = int(t * 20) % 256
    return (shade, 255 - shade, 128)


class FakeVideo(VideoElement):
    """Video element whose events are scripted per seek target."""

    def __init__(
        self,
        duration=10.0,
        width=64,
        height=36,
        frame_callbacks=True,
        fail_load=False,
        fail_seek_at=(),
        silent_seek_at=(),
    ):
        super().__init__()
        self.supports_frame_callbacks = frame_callbacks
        self._meta = (duration, width, height)
        self.fail_load = fail_load
        self.fail_seek_at = set(fail_seek_at)
        self.silent_seek_at = set(silent_seek_at)
        self.seeks = []
        self.frame_requests = 0
        self.closed = False
        self.listeners_at_close = None

    def _render(self, t):
        return Image.new("RGB", (self._meta[1], self._meta[2]), color_for_time(t))

    def _load(self, src):
        asyncio.get_running_loop().call_soon(self._finish_load)

    def _finish_load(self):
        if self.fail_load:
            self.error = RuntimeError("unsupported media")
            self.dispatch_event("error")
            return
        self.duration, self.video_width, self.video_height = self._meta
        self.ready_state = HAVE_METADATA
        self.dispatch_event("loadedmetadata")
        self.frame = self._render(self._current_time)
        self.ready_state = HAVE_CURRENT_DATA
        self.dispatch_event("loadeddata")

    def _seek(self, time):
        self.seeks.append(time)
        self._current_time = time
        loop = asyncio.get_running_loop()
        if time in self.fail_seek_at:
            loop.call_soon(self.dispatch_event, "error")
        elif time not in self.silent_seek_at:
            loop.call_soon(self._finish_seek, time)

    def _finish_seek(self, time):
        self.frame = self._render(time)
        self.dispatch_event("seeked")

    def request_video_frame_callback(self, callback):
        if not self.supports_frame_callbacks:
            raise NotImplementedError
        self.frame_requests += 1
        loop = asyncio.get_running_loop()
        loop.call_soon(callback, loop.time(), {})

    def close(self):
        self.closed = True
        self.listeners_at_close = self.listener_count()
        super().close()


@pytest.fixture
def registry():
    return ObjectUrlRegistry()


@pytest.fixture
def quadrant_png():
    return png_bytes(quadrant_image())


@pytest.fixture
def make_client():
    """Build an AsyncClient serving ``routes``; returns (client, recorded requests)."""

    def factory(routes):
        seen = []

        def handler(request):
            seen.append(request)
            response = routes.get(str(request.url))
            if response is None:
                return httpx.Response(404)
            return response

        return httpx.AsyncClient(transport=httpx.MockTransport(handler)), seen

    return factory

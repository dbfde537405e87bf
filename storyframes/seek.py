"""Seek a video element and wait until the target frame is presentable.

Completion paths race each other: ``seeked`` (followed by a frame callback
when the element supports them), ``loadeddata`` or an immediate finish when
the target is already the current position, a media ``error`` and a
wall-clock timeout. Whichever happens first settles the seek; listeners and
the timer are torn down exactly once on that transition.
"""
import asyncio
import enum
import logging

from .config import SEEK_EPSILON, SEEK_TIMEOUT
from .errors import SeekFailure, SeekTimeout
from .video import HAVE_CURRENT_DATA

logger = logging.getLogger(__name__)


class SeekState(enum.Enum):
    IDLE = "idle"
    SEEKING = "seeking"
    DONE = "done"
    FAILED = "failed"


class VideoSeek:
    def __init__(self, video, target, timeout=SEEK_TIMEOUT, epsilon=SEEK_EPSILON):
        self.video = video
        self.target = target
        self.timeout = timeout
        self.epsilon = epsilon
        self.state = SeekState.IDLE
        self._future = None
        self._timer = None
        self._same_time = False

    async def run(self):
        if self.state is not SeekState.IDLE:
            raise RuntimeError(f"seek already {self.state.value}")
        loop = asyncio.get_running_loop()
        video = self.video
        self._future = loop.create_future()
        self._same_time = abs((video.current_time or 0) - self.target) < self.epsilon
        self.state = SeekState.SEEKING

        self._timer = loop.call_later(self.timeout, self._on_timeout)
        video.add_event_listener("seeked", self._on_seeked, once=True)
        video.add_event_listener("loadeddata", self._on_loaded_data, once=True)
        video.add_event_listener("error", self._on_error, once=True)

        try:
            video.current_time = self.target
        except Exception:
            # Keep waiting; the timeout settles it if nothing else does.
            logger.debug("Setting current_time=%s failed", self.target, exc_info=True)

        # Some engines never fire `seeked` for the current position (0s right after load).
        if self._same_time and self.state is SeekState.SEEKING:
            if video.supports_frame_callbacks:
                video.request_video_frame_callback(self._on_frame)
            elif video.ready_state >= HAVE_CURRENT_DATA:
                self._finish()

        try:
            await self._future
        finally:
            if self.state is SeekState.SEEKING:
                # Cancelled from outside.
                self._settle(SeekState.FAILED)

    def _settle(self, state):
        if self.state is not SeekState.SEEKING:
            return False
        self.state = state
        self._timer.cancel()
        self.video.remove_event_listener("seeked", self._on_seeked)
        self.video.remove_event_listener("loadeddata", self._on_loaded_data)
        self.video.remove_event_listener("error", self._on_error)
        return True

    def _finish(self):
        if self._settle(SeekState.DONE) and not self._future.done():
            self._future.set_result(None)

    def _reject(self, exc):
        if self._settle(SeekState.FAILED) and not self._future.done():
            self._future.set_exception(exc)

    def _on_timeout(self):
        self._reject(SeekTimeout("Seek timeout"))

    def _on_error(self, event):
        self._reject(SeekFailure("Seek failed"))

    def _on_loaded_data(self, event):
        if self._same_time:
            self._finish()

    def _on_seeked(self, event):
        if not self.video.supports_frame_callbacks:
            self._finish()
            return
        self.video.request_video_frame_callback(self._on_frame)

    def _on_frame(self, *args):
        self._finish()


async def seek_video(video, time, timeout=SEEK_TIMEOUT, epsilon=SEEK_EPSILON):
    await VideoSeek(video, time, timeout=timeout, epsilon=epsilon).run()

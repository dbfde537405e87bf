import asyncio

import pytest

from storyframes.errors import SeekFailure, SeekTimeout
from storyframes.seek import SeekState, VideoSeek, seek_video
from storyframes.video import HAVE_CURRENT_DATA, HAVE_NOTHING

from conftest import FakeVideo


class ManualTimers:
    """Stands in for loop.call_later so tests decide when timers fire."""

    def __init__(self):
        self.armed = []

    def call_later(self, delay, callback, *args, **kwargs):
        timer = _Timer(delay, callback, args)
        self.armed.append(timer)
        return timer


class _Timer:
    def __init__(self, delay, callback, args):
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.callback(*self.args)


async def loaded_video(**kwargs):
    video = FakeVideo(**kwargs)
    video.src = "blob:test"
    await asyncio.sleep(0)
    assert video.ready_state >= HAVE_CURRENT_DATA
    return video


async def settle(rounds=5):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_seeked_then_frame_callback_completes():
    video = await loaded_video()
    seek = VideoSeek(video, 4.0)
    await seek.run()
    assert seek.state is SeekState.DONE
    assert video.current_time == 4.0
    assert video.frame_requests == 1
    assert video.listener_count() == 0


@pytest.mark.asyncio
async def test_seeked_alone_without_frame_callbacks():
    video = await loaded_video(frame_callbacks=False)
    await seek_video(video, 2.0)
    assert video.seeks == [2.0]
    assert video.listener_count() == 0


@pytest.mark.asyncio
async def test_same_position_completes_without_seeked():
    video = await loaded_video(silent_seek_at={0.0})
    seek = VideoSeek(video, 0.0)
    await seek.run()
    assert seek.state is SeekState.DONE
    assert video.listener_count() == 0


@pytest.mark.asyncio
async def test_same_position_without_frame_callbacks_finishes_immediately():
    video = await loaded_video(frame_callbacks=False, silent_seek_at={0.0})
    seek = VideoSeek(video, 0.005)
    task = asyncio.ensure_future(seek.run())
    await asyncio.sleep(0)
    assert task.done()
    await task
    assert seek.state is SeekState.DONE


@pytest.mark.asyncio
async def test_same_position_waits_for_loaded_data_when_not_ready():
    video = FakeVideo(frame_callbacks=False, silent_seek_at={0.0})
    assert video.ready_state == HAVE_NOTHING
    seek_task = asyncio.ensure_future(seek_video(video, 0.0))
    await asyncio.sleep(0)
    assert not seek_task.done()

    video.src = "blob:late"
    await seek_task
    assert video.listener_count() == 0


@pytest.mark.asyncio
async def test_media_error_fails_seek():
    video = await loaded_video(fail_seek_at={3.0})
    seek = VideoSeek(video, 3.0)
    with pytest.raises(SeekFailure):
        await seek.run()
    assert seek.state is SeekState.FAILED
    assert video.listener_count() == 0


@pytest.mark.asyncio
async def test_timeout_fires_exactly_at_boundary(monkeypatch):
    video = await loaded_video(silent_seek_at={7.0})
    timers = ManualTimers()
    monkeypatch.setattr(asyncio.get_running_loop(), "call_later", timers.call_later)

    seek = VideoSeek(video, 7.0)
    task = asyncio.ensure_future(seek.run())
    await settle()

    assert not task.done()
    assert [t.delay for t in timers.armed] == [2.5]

    timers.armed[0].fire()
    with pytest.raises(SeekTimeout):
        await task
    assert seek.state is SeekState.FAILED
    assert video.listener_count() == 0


@pytest.mark.asyncio
async def test_timer_cancelled_on_success(monkeypatch):
    video = await loaded_video()
    timers = ManualTimers()
    monkeypatch.setattr(asyncio.get_running_loop(), "call_later", timers.call_later)

    await seek_video(video, 1.0)
    assert timers.armed[0].cancelled


@pytest.mark.asyncio
async def test_only_first_terminal_transition_counts():
    video = await loaded_video(silent_seek_at={5.0})
    seek = VideoSeek(video, 5.0, timeout=0.05)
    task = asyncio.ensure_future(seek.run())
    await settle()

    video.dispatch_event("seeked")
    await settle()
    await task
    assert seek.state is SeekState.DONE

    # Late events and the already-cancelled timer change nothing.
    seek._on_error(None)
    seek._on_timeout()
    assert seek.state is SeekState.DONE
    assert video.listener_count() == 0


@pytest.mark.asyncio
async def test_failed_current_time_assignment_keeps_waiting():
    class Stubborn(FakeVideo):
        def _seek(self, time):
            raise ValueError("not seekable yet")

    video = Stubborn()
    video.src = "blob:x"
    await asyncio.sleep(0)

    with pytest.raises(SeekTimeout):
        await seek_video(video, 9.0, timeout=0.01)


@pytest.mark.asyncio
async def test_run_twice_is_rejected():
    video = await loaded_video()
    seek = VideoSeek(video, 1.0)
    await seek.run()
    with pytest.raises(RuntimeError):
        await seek.run()


def test_bound_method_listener_is_removed():
    video = FakeVideo()
    seek = VideoSeek(video, 1.0)
    video.add_event_listener("seeked", seek._on_seeked, once=True)
    video.add_event_listener("seeked", seek._on_seeked, once=True)
    assert video.listener_count("seeked") == 1
    video.remove_event_listener("seeked", seek._on_seeked)
    assert video.listener_count() == 0

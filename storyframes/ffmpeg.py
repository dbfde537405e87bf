"""Thin async wrappers around the ffmpeg/ffprobe binaries."""
import asyncio
import json
import logging
import shutil
from dataclasses import dataclass

from .config import load_settings
from .errors import FfmpegError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VideoInfo:
    duration: float
    width: int
    height: int


async def run(cmd) -> bytes:
    logger.debug("Running %s", " ".join(cmd))
    try:
        p = await asyncio.create_subprocess_exec(
            *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
    except FileNotFoundError as exc:
        raise FfmpegError(cmd, -1, str(exc)) from exc
    try:
        stdout, stderr = await p.communicate()
    except asyncio.CancelledError:
        if p.returncode is None:
            p.kill()
        raise
    if p.returncode != 0:
        raise FfmpegError(cmd, p.returncode, stderr.decode(errors="replace").strip())
    return stdout


def ffmpeg_binary(settings=None):
    return (settings or load_settings()).ffmpeg


def ffprobe_binary(settings=None):
    return (settings or load_settings()).ffprobe


def ffmpeg_available(settings=None) -> bool:
    return shutil.which(ffmpeg_binary(settings)) is not None


def _parse_float(value):
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0.0
    return num if num == num and num > 0 else 0.0


async def ffprobe_info(path, settings=None) -> VideoInfo:
    out = await run([
        ffprobe_binary(settings), "-v", "error", "-select_streams", "v:0",
        "-show_entries", "stream=width,height,duration:format=duration",
        "-of", "json", str(path),
    ])
    try:
        data = json.loads(out.decode() or "{}")
    except ValueError as exc:
        raise FfmpegError(["ffprobe", str(path)], 0, f"unreadable ffprobe output: {exc}") from exc
    streams = data.get("streams") or []
    if not streams:
        raise FfmpegError(["ffprobe", str(path)], 0, "no video stream")
    stream = streams[0]
    duration = _parse_float((data.get("format") or {}).get("duration")) or _parse_float(stream.get("duration"))
    return VideoInfo(
        duration=duration,
        width=int(stream.get("width") or 0),
        height=int(stream.get("height") or 0),
    )


async def extract_frame(path, time, settings=None) -> bytes:
    """Decode the frame at ``time`` seconds as PNG bytes."""
    out = await run([
        ffmpeg_binary(settings), "-v", "error",
        "-ss", f"{max(0.0, time):.3f}",  # Seek before input: fast, keyframe-assisted
        "-i", str(path),
        "-frames:v", "1",
        "-f", "image2pipe", "-c:v", "png", "-",
    ])
    if not out:
        raise FfmpegError(["ffmpeg", "-ss", f"{time:.3f}", str(path)], 0, "no frame decoded")
    return out


async def transcode_to_png(path, settings=None) -> bytes:
    """Decode any still image ffmpeg understands into PNG bytes."""
    out = await run([
        ffmpeg_binary(settings), "-v", "error", "-i", str(path),
        "-frames:v", "1", "-f", "image2pipe", "-c:v", "png", "-",
    ])
    if not out:
        raise FfmpegError(["ffmpeg", "-i", str(path)], 0, "no image decoded")
    return out

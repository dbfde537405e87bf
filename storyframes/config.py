import os
from dataclasses import dataclass

MIB = 1024 * 1024

DEFAULT_MAX_SOURCE_BYTES = 30 * MIB
DEFAULT_MIN_COLS = 2
DEFAULT_MAX_COLS = 4

SLICE_MIME_TYPE = "image/png"
CAPTURE_MIME_TYPE = "image/jpeg"
CAPTURE_QUALITY = 0.9
# Browsers encode lossy formats at 0.92 when no quality is given.
LOSSY_DEFAULT_QUALITY = 0.92

SEEK_TIMEOUT = 2.5
SEEK_EPSILON = 0.01

DEFAULT_FETCH_TIMEOUT = 60.0


@dataclass(frozen=True)
class Settings:
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    max_source_bytes: int = DEFAULT_MAX_SOURCE_BYTES
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    log_level: str = "WARNING"


def _env_int(env, name, default):
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return max(1, int(raw))
    except ValueError:
        return default


def _env_float(env, name, default):
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def load_settings(environ=None):
    """Build Settings from STORYFRAMES_* environment variables."""
    env = os.environ if environ is None else environ
    return Settings(
        ffmpeg=env.get("STORYFRAMES_FFMPEG", "").strip() or "ffmpeg",
        ffprobe=env.get("STORYFRAMES_FFPROBE", "").strip() or "ffprobe",
        max_source_bytes=_env_int(env, "STORYFRAMES_MAX_SOURCE_BYTES", DEFAULT_MAX_SOURCE_BYTES),
        fetch_timeout=_env_float(env, "STORYFRAMES_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT),
        log_level=env.get("STORYFRAMES_LOG_LEVEL", "").strip().upper() or "WARNING",
    )

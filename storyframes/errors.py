"""Error types raised by the slicing and capture pipelines."""


class StoryframesError(Exception):
    """Base class for every failure raised by storyframes."""


class InvalidInput(StoryframesError, ValueError):
    pass


class ResourceTooLarge(StoryframesError):
    def __init__(self, size, limit):
        self.size = size
        self.limit = limit
        super().__init__(f"Image too large ({round(size / (1024 * 1024))}MB, {size} bytes; limit {limit} bytes)")


class FetchFailure(StoryframesError):
    def __init__(self, status, message=None):
        self.status = status
        super().__init__(message or f"Failed to fetch image: {status}")


class DecodeFailure(StoryframesError):
    pass


class EncodeFailure(StoryframesError):
    pass


class MediaLoadFailure(StoryframesError):
    pass


class SeekTimeout(StoryframesError):
    pass


class SeekFailure(StoryframesError):
    pass


class FfmpegError(StoryframesError):
    def __init__(self, cmd, returncode, stderr=""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Command failed:\n{' '.join(self.cmd)}\nSTDERR:\n{stderr}")

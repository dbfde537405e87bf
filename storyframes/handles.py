"""In-memory blobs and revocable ``blob:`` handles pointing at them."""
import logging
import os
import uuid
from dataclasses import dataclass

logger = logging.getLogger(__name__)

BLOB_SCHEME = "blob:"


@dataclass(frozen=True)
class Blob:
    data: bytes
    mime_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.data)


class ObjectUrlRegistry:
    """Hands out ``blob:<uuid>`` urls for blobs or files until revoked."""

    def __init__(self):
        self._targets = {}

    def create(self, target) -> str:
        if not isinstance(target, (Blob, str, os.PathLike)):
            raise TypeError(f"Cannot create an object url for {type(target).__name__}")
        url = f"{BLOB_SCHEME}{uuid.uuid4()}"
        self._targets[url] = target
        return url

    def resolve(self, url):
        return self._targets[url]

    def revoke(self, url) -> None:
        # Unknown and already-revoked urls are ignored.
        if self._targets.pop(url, None) is not None:
            logger.debug("Revoked %s", url)

    def revoke_all(self, urls) -> None:
        for url in urls:
            try:
                self.revoke(url)
            except Exception:
                logger.debug("Ignoring failed revoke of %s", url, exc_info=True)

    @property
    def live(self):
        return list(self._targets)

    def __contains__(self, url) -> bool:
        return url in self._targets

    def __len__(self) -> int:
        return len(self._targets)


default_registry = ObjectUrlRegistry()


def is_object_url(url) -> bool:
    return isinstance(url, str) and url.startswith(BLOB_SCHEME)

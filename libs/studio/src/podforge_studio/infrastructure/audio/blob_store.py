from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path

from podforge_studio.domain.models import BlobHandle
from podforge_studio.infrastructure.logging import get_logger

log = get_logger(__name__)


class TempFileBlobStore:
    """Materialises fetched bytes as private temp files.

    A handle stays valid until ``revoke``; revoking twice is a no-op.
    """

    def __init__(self, base_dir: str | None = None, prefix: str = "podforge-") -> None:
        self.base_dir = Path(base_dir) if base_dir else None
        self.prefix = prefix
        self._live: dict[str, BlobHandle] = {}
        self._lock = threading.Lock()
        if self.base_dir:
            self.base_dir.mkdir(parents=True, exist_ok=True)

    def create(self, data: bytes, *, suffix: str = "") -> BlobHandle:
        fd, path = tempfile.mkstemp(prefix=self.prefix, suffix=suffix, dir=self.base_dir)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        except Exception:
            Path(path).unlink(missing_ok=True)
            raise
        handle = BlobHandle(url=Path(path).as_uri(), path=path, size=len(data))
        with self._lock:
            self._live[handle.url] = handle
        log.debug("blob.create path=%s size=%s", path, handle.size)
        return handle

    def revoke(self, handle: BlobHandle) -> None:
        with self._lock:
            known = self._live.pop(handle.url, None)
        if known is None:
            return
        Path(handle.path).unlink(missing_ok=True)
        log.debug("blob.revoke path=%s", handle.path)

    def live_handles(self) -> list[BlobHandle]:
        with self._lock:
            return list(self._live.values())

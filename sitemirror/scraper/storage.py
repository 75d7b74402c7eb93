"""Filesystem-backed storage for the mirror.

All paths handed to `Storage` are POSIX paths relative to its root, as produced
by `PathMapper`. Writes are atomic: content goes to a temporary file in the
destination directory and is renamed into place, so an interrupted write never
leaves a partial file at the final path.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import zlib
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Mapping

from .constants import URL_INDEX_PATH
from .errors import CrawlCancelled


LOGGER = logging.getLogger(__name__)

GUARD_STRIPES = 64


class Storage:
    """Byte store rooted at the mirror's output directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

        self._guard_locks = tuple(threading.Lock() for _ in range(GUARD_STRIPES))

        self._index_lock = threading.Lock()
        self._origins: dict[str, str] | None = None

    def path_for(self, path: str) -> Path:
        return self.root.joinpath(*path.split("/"))

    def exists(self, path: str) -> bool:
        return self.path_for(path).is_file()

    def read(self, path: str) -> bytes:
        return self.path_for(path).read_bytes()

    def mod_time(self, path: str) -> datetime | None:
        """Return the file's modification time (UTC), or None when absent."""

        try:
            stat = self.path_for(path).stat()
        except FileNotFoundError:
            return None
        return datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)

    def set_mod_time(self, path: str, when: datetime) -> None:
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        timestamp = when.timestamp()
        os.utime(self.path_for(path), (timestamp, timestamp))

    @contextmanager
    def guard(self, path: str) -> Iterator[None]:
        """Serialize check-then-write sequences on one path across threads.

        Paths share a fixed set of locks; guards must not be nested.
        """

        with self._guard_locks[zlib.crc32(path.encode("utf-8")) % GUARD_STRIPES]:
            yield

    def record_origins(self, origins: Mapping[str, str]) -> int:
        """Append `mirror path -> origin URL` pairs to the URL index.

        Pairs already known are skipped. Returns the number of new records.
        """

        with self._index_lock:
            self._load_index()
            fresh = {
                path: url for path, url in origins.items() if self._origins.get(path) != url
            }
            if not fresh:
                return 0

            index_file = self.path_for(URL_INDEX_PATH)
            index_file.parent.mkdir(parents=True, exist_ok=True)
            with index_file.open("a", encoding="utf-8") as handle:
                for path, url in fresh.items():
                    line = json.dumps({"path": path, "url": url}, ensure_ascii=False, sort_keys=True)
                    handle.write(line + "\n")
            self._origins.update(fresh)
            return len(fresh)

    def origin_url(self, path: str) -> str | None:
        """Return the URL a mirror path was mapped from, if it was recorded."""

        with self._index_lock:
            self._load_index()
            return self._origins.get(path)

    def _load_index(self) -> None:
        if self._origins is not None:
            return
        self._origins = {}
        index_file = self.path_for(URL_INDEX_PATH)
        if not index_file.exists():
            return

        with index_file.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    LOGGER.warning("Skipping corrupt URL index line in %s", index_file)
                    continue
                if not isinstance(payload, dict):
                    continue

                path = payload.get("path")
                url = payload.get("url")
                if isinstance(path, str) and isinstance(url, str) and path and url:
                    self._origins[path] = url

    def write_atomic(
        self,
        path: str,
        data: bytes | Iterable[bytes],
        *,
        cancel: threading.Event | None = None,
    ) -> int:
        """Write bytes (or an iterable of chunks) to `path` atomically.

        Returns the number of bytes written. When `cancel` is set while chunks
        are streaming, the temporary file is removed and `CrawlCancelled` raised.
        """

        target = self.path_for(path)
        target.parent.mkdir(parents=True, exist_ok=True)

        chunks: Iterable[bytes]
        if isinstance(data, (bytes, bytearray)):
            chunks = (bytes(data),)
        else:
            chunks = data

        tmp_fd, tmp_path = tempfile.mkstemp(
            dir=str(target.parent),
            prefix=target.name + ".",
            suffix=".tmp",
        )
        written = 0
        try:
            with os.fdopen(tmp_fd, "wb") as handle:
                for chunk in chunks:
                    if cancel is not None and cancel.is_set():
                        raise CrawlCancelled(f"cancelled while writing {path}")
                    if chunk:
                        handle.write(chunk)
                        written += len(chunk)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, target)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise
        return written


__all__ = ["Storage"]

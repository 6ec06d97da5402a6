# Overview: Blob store interface for title content and a local filesystem default.

from __future__ import annotations

import mimetypes
import os
from pathlib import Path
from typing import Iterator, Protocol


class StorageError(Exception):
    """Blob store failed for a reason other than a missing key."""


class BlobNotFound(StorageError):
    pass


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> str:
        ...

    def get_stream(self, key: str) -> tuple[Iterator[bytes], str, int]:
        ...


class LocalBlobStore:
    """
    Stores blobs as files under `root`.

    Keys are relative paths; anything resolving outside `root` is rejected.
    """

    chunk_size = 64 * 1024

    def __init__(self, root: str | os.PathLike) -> None:
        self.root = Path(root).resolve()

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Invalid blob key: {key!r}")
        return path

    def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to write blob {key!r}: {e}") from e
        return path.as_uri()

    def get_stream(self, key: str) -> tuple[Iterator[bytes], str, int]:
        path = self._path_for(key)
        if not path.is_file():
            raise BlobNotFound(f"Blob {key!r} not found")
        try:
            length = path.stat().st_size
        except OSError as e:
            raise StorageError(f"Failed to stat blob {key!r}: {e}") from e

        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"

        def _chunks() -> Iterator[bytes]:
            with path.open("rb") as fh:
                while True:
                    chunk = fh.read(self.chunk_size)
                    if not chunk:
                        break
                    yield chunk

        return _chunks(), content_type, length

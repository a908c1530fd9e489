"""Content store interfaces and concrete adapters."""

from __future__ import annotations

import mimetypes
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

from page_agent.errors import NotFound, UpstreamFailure, WriteConflict


@dataclass(slots=True)
class StoreEntry:
    """A listed blob."""

    path: str
    size: int
    content_type: str
    uploaded_at: str


class ContentStore(Protocol):
    """Path-addressed blob store contract used by the dispatcher."""

    def put(self, path: str, data: bytes, content_type: str) -> str:
        """Write a blob and return its location."""

    def get(self, path: str) -> bytes:
        """Read a blob, raising `NotFound` when it is absent."""

    def list(self, prefix: str) -> list[StoreEntry]:
        """List blobs whose path starts with `prefix`."""

    def delete(self, path: str) -> None:
        """Delete a blob, raising `NotFound` when it is absent."""

    def copy(self, src: str, dst: str) -> str:
        """Copy a blob and return the destination location."""


@runtime_checkable
class VersionedContentStore(Protocol):
    """Optional compare-and-swap extension of `ContentStore`."""

    def get_versioned(self, path: str) -> tuple[bytes, int]:
        """Read a blob together with its current version."""

    def put_if_version(
        self, path: str, data: bytes, content_type: str, expected_version: int
    ) -> str:
        """Write only when the stored version still equals `expected_version`."""


@dataclass(slots=True)
class _StoredBlob:
    data: bytes
    content_type: str
    uploaded_at: str
    version: int


class InMemoryContentStore:
    """Dict-backed store used for tests and local prototyping."""

    def __init__(self) -> None:
        self._blobs: dict[str, _StoredBlob] = {}
        self._lock = threading.Lock()

    def put(self, path: str, data: bytes, content_type: str) -> str:
        with self._lock:
            return self._write(path, data, content_type)

    def get(self, path: str) -> bytes:
        with self._lock:
            blob = self._blobs.get(path)
        if blob is None:
            raise NotFound(f"Blob not found: {path}")
        return blob.data

    def list(self, prefix: str) -> list[StoreEntry]:
        with self._lock:
            items = sorted(
                (path, blob) for path, blob in self._blobs.items() if path.startswith(prefix)
            )
        return [
            StoreEntry(
                path=path,
                size=len(blob.data),
                content_type=blob.content_type,
                uploaded_at=blob.uploaded_at,
            )
            for path, blob in items
        ]

    def delete(self, path: str) -> None:
        with self._lock:
            if self._blobs.pop(path, None) is None:
                raise NotFound(f"Blob not found: {path}")

    def copy(self, src: str, dst: str) -> str:
        with self._lock:
            blob = self._blobs.get(src)
            if blob is None:
                raise NotFound(f"Blob not found: {src}")
            return self._write(dst, blob.data, blob.content_type)

    def get_versioned(self, path: str) -> tuple[bytes, int]:
        with self._lock:
            blob = self._blobs.get(path)
        if blob is None:
            raise NotFound(f"Blob not found: {path}")
        return blob.data, blob.version

    def put_if_version(
        self, path: str, data: bytes, content_type: str, expected_version: int
    ) -> str:
        with self._lock:
            current = self._blobs.get(path)
            current_version = current.version if current is not None else 0
            if current_version != expected_version:
                raise WriteConflict(
                    f"{path} is at version {current_version}, expected {expected_version}"
                )
            return self._write(path, data, content_type)

    def _write(self, path: str, data: bytes, content_type: str) -> str:
        previous = self._blobs.get(path)
        self._blobs[path] = _StoredBlob(
            data=bytes(data),
            content_type=content_type,
            uploaded_at=datetime.now(timezone.utc).isoformat(),
            version=(previous.version + 1) if previous is not None else 1,
        )
        return f"memory://{path}"


class LocalDirectoryContentStore:
    """Filesystem-backed store. Writes are last-writer-wins."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._target(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise UpstreamFailure(f"Failed to write {path}: {exc}") from exc
        return target.resolve().as_uri()

    def get(self, path: str) -> bytes:
        target = self._target(path)
        try:
            return target.read_bytes()
        except (FileNotFoundError, IsADirectoryError) as exc:
            raise NotFound(f"Blob not found: {path}") from exc
        except OSError as exc:
            raise UpstreamFailure(f"Failed to read {path}: {exc}") from exc

    def list(self, prefix: str) -> list[StoreEntry]:
        entries: list[StoreEntry] = []
        try:
            files = sorted(p for p in self.root.rglob("*") if p.is_file())
            for file_path in files:
                relative = file_path.relative_to(self.root).as_posix()
                if not relative.startswith(prefix):
                    continue
                stat = file_path.stat()
                entries.append(
                    StoreEntry(
                        path=relative,
                        size=stat.st_size,
                        content_type=mimetypes.guess_type(relative)[0]
                        or "application/octet-stream",
                        uploaded_at=datetime.fromtimestamp(
                            stat.st_mtime, timezone.utc
                        ).isoformat(),
                    )
                )
        except OSError as exc:
            raise UpstreamFailure(f"Failed to list {prefix!r}: {exc}") from exc
        return entries

    def delete(self, path: str) -> None:
        target = self._target(path)
        try:
            target.unlink()
        except FileNotFoundError as exc:
            raise NotFound(f"Blob not found: {path}") from exc
        except OSError as exc:
            raise UpstreamFailure(f"Failed to delete {path}: {exc}") from exc

    def copy(self, src: str, dst: str) -> str:
        return self.put(dst, self.get(src), "application/octet-stream")

    def _target(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root.resolve()):
            raise NotFound(f"Blob not found: {path}")
        return target

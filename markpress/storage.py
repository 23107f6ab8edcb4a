from __future__ import annotations

import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote

from markpress.config import PUBLIC_BASE_URL, STORAGE_BUCKET, STORAGE_DIR

logger = logging.getLogger("markpress.storage")

TEMP_PREFIX = "temp/"
PERMANENT_PREFIX = "permanent/"
MEDIA_KIND = "image"
OBJECT_URL_PREFIX = "/storage/v1/object/public"


class BlobStoreError(Exception):
    """Raised when an object store operation cannot be completed."""

    def __init__(self, operation: str, path: str, message: str) -> None:
        super().__init__(f"{operation} failed for {path}: {message}")
        self.operation = operation
        self.path = path


@dataclass(frozen=True)
class BlobEntry:
    path: str
    size: int
    modified_at: datetime


def public_url(path: str, base_url: str | None = None, bucket: str | None = None) -> str:
    base = (base_url or PUBLIC_BASE_URL).rstrip("/")
    return f"{base}{OBJECT_URL_PREFIX}/{bucket or STORAGE_BUCKET}/{quote(path)}"


def is_temp_path(path: str) -> bool:
    return path.startswith(TEMP_PREFIX)


def temp_scope(draft_id: str | None = None) -> str:
    if draft_id:
        return f"{TEMP_PREFIX}{draft_id}/"
    return f"{TEMP_PREFIX}{MEDIA_KIND}/"


def permanent_path_for(temp_path: str) -> str:
    """Map ``temp/[<draft>/]image/<name>`` onto ``permanent/image/<name>``."""
    rest = temp_path[len(TEMP_PREFIX):]
    parts = rest.split("/")
    if len(parts) >= 3 and parts[1] == MEDIA_KIND:
        rest = "/".join(parts[1:])
    return f"{PERMANENT_PREFIX}{rest}"


def new_upload_path(original_name: str, draft_id: str | None = None) -> tuple[str, str]:
    ext = os.path.splitext(original_name)[1].lower() or ".bin"
    file_id = str(uuid.uuid4())
    if draft_id:
        return file_id, f"{TEMP_PREFIX}{draft_id}/{MEDIA_KIND}/{file_id}{ext}"
    return file_id, f"{TEMP_PREFIX}{MEDIA_KIND}/{file_id}{ext}"


class LocalBlobStore:
    """Object store backed by a directory tree; object paths are POSIX-style keys."""

    def __init__(self, root: str | Path, base_url: str | None = None, bucket: str | None = None) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url
        self.bucket = bucket

    def _resolve(self, path: str) -> Path:
        try:
            resolved = (self.root / path).resolve()
            resolved.relative_to(self.root)
        except (ValueError, RuntimeError):
            raise BlobStoreError("resolve", path, "path escapes storage root")
        if resolved == self.root:
            raise BlobStoreError("resolve", path, "empty object path")
        return resolved

    def put(self, path: str, data: bytes) -> int:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "wb") as f:
            f.write(data)
        return len(data)

    def open(self, path: str) -> Path:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobStoreError("open", path, "object not found")
        return target

    def exists(self, path: str) -> bool:
        try:
            return self._resolve(path).is_file()
        except BlobStoreError:
            return False

    def copy(self, src: str, dst: str) -> None:
        source = self._resolve(src)
        target = self._resolve(dst)
        if not source.is_file():
            raise BlobStoreError("copy", src, "source object not found")
        if target.exists():
            raise BlobStoreError("copy", dst, "destination already exists")
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(source, target)
        except OSError as exc:
            raise BlobStoreError("copy", src, str(exc)) from exc

    def delete(self, paths: list[str]) -> None:
        for path in paths:
            target = self._resolve(path)
            try:
                target.unlink(missing_ok=True)
            except OSError as exc:
                raise BlobStoreError("delete", path, str(exc)) from exc
            self._prune_empty_dirs(target.parent)

    def list(self, prefix: str) -> list[BlobEntry]:
        base = self.root / prefix
        if not base.exists():
            return []
        if not base.is_dir():
            raise BlobStoreError("list", prefix, "prefix is not a directory")
        entries = []
        try:
            for item in sorted(base.rglob("*")):
                if not item.is_file():
                    continue
                stat = item.stat()
                entries.append(
                    BlobEntry(
                        path=item.relative_to(self.root).as_posix(),
                        size=stat.st_size,
                        modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    )
                )
        except OSError as exc:
            raise BlobStoreError("list", prefix, str(exc)) from exc
        return entries

    def public_url(self, path: str) -> str:
        return public_url(path, self.base_url, self.bucket)

    def _prune_empty_dirs(self, directory: Path) -> None:
        while directory != self.root and self.root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                return
            directory = directory.parent


_store: LocalBlobStore | None = None


def get_store() -> LocalBlobStore:
    global _store
    if _store is None or _store.root != Path(STORAGE_DIR).resolve():
        _store = LocalBlobStore(STORAGE_DIR)
    return _store

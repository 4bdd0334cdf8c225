"""Receipt image storage.

Supports two backends selected via ``settings.STORAGE_BACKEND``:

1. **filesystem** (default): Stores files under ``settings.STORAGE_DIRECTORY``.
2. **minio**: Uses a MinIO / S3-compatible bucket.

Every stored image gets a freshly generated ``file_id`` and exactly one
canonical name, ``<file_id><ext>``, where the extension is derived from
the validated MIME type. Lookups build that name directly; nothing ever
scans the directory for a name that merely contains the id.

Uploads are validated (MIME type and size ceiling) before a single byte
is written, and the filesystem backend writes through a temporary file
so a failed write never leaves a partial receipt behind.
"""

from __future__ import annotations

import logging
import os
import re
import uuid
from abc import ABC, abstractmethod
from functools import lru_cache
from io import BytesIO
from pathlib import Path
from typing import Optional, Tuple

from minio import Minio
from minio.error import S3Error

from receipt_ledger.core.config import settings
from receipt_ledger.core.errors import NotFoundError, ProcessingError, ValidationError
from receipt_ledger.models.enums import StorageBackend
from receipt_ledger.models.schemas import StoredReceipt


logger = logging.getLogger(__name__)

# Accepted upload types and the canonical extension each is stored under
ALLOWED_MIME_TYPES: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/heic": ".heic",
    "image/heif": ".heif",
}

# Static extension -> Content-Type table used when serving files back
CONTENT_TYPES: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".heif": "image/heif",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

FILE_ID_RE = re.compile(r"^[0-9a-f]{32}$")


def content_type_for(filename: str) -> str:
    """Resolve a Content-Type from a file extension (generic binary if unknown)."""
    return CONTENT_TYPES.get(Path(filename).suffix.lower(), DEFAULT_CONTENT_TYPE)


def normalise_mime_type(mime_type: Optional[str]) -> str:
    return (mime_type or "").split(";", 1)[0].strip().lower()


def split_file_id(raw: str) -> str:
    """Strip a known image extension from a client-supplied identifier.

    ``abc.jpg`` and ``abc`` both address the receipt ``abc``.
    """
    stem, ext = os.path.splitext(raw)
    if ext.lower() in CONTENT_TYPES:
        return stem
    return raw


def new_file_id() -> str:
    return uuid.uuid4().hex


class ReceiptStore(ABC):
    """Store / get / delete capability for receipt images."""

    def __init__(self, max_size_bytes: Optional[int] = None) -> None:
        self.max_size_bytes = max_size_bytes if max_size_bytes is not None else settings.max_upload_bytes

    # -- validation -------------------------------------------------------------

    def validate(self, data: bytes, mime_type: Optional[str]) -> str:
        """Validate an upload and return its canonical extension."""
        mime = normalise_mime_type(mime_type)
        if mime not in ALLOWED_MIME_TYPES:
            allowed = ", ".join(ALLOWED_MIME_TYPES)
            raise ValidationError(f"Invalid file type '{mime or 'unknown'}'. Allowed types: {allowed}")
        size = len(data)
        if size == 0:
            raise ValidationError("Empty upload payload")
        if size > self.max_size_bytes:
            size_mb = size / (1024 * 1024)
            max_mb = self.max_size_bytes / (1024 * 1024)
            raise ValidationError(f"File size {size_mb:.2f}MB exceeds maximum {max_mb:.2f}MB")
        return ALLOWED_MIME_TYPES[mime]

    @staticmethod
    def _check_file_id(file_id: str) -> str:
        if not file_id or not FILE_ID_RE.match(file_id):
            raise NotFoundError(f"Receipt file not found: {file_id}")
        return file_id

    # -- public API ---------------------------------------------------------------

    def store(self, data: bytes, mime_type: Optional[str]) -> StoredReceipt:
        """Persist ``data`` under a new identifier."""
        ext = self.validate(data, mime_type)
        file_id = new_file_id()
        stored = self._write(file_id, ext, data, normalise_mime_type(mime_type))
        logger.info("[storage] stored file_id=%s bytes=%d backend=%s", file_id, len(data), self.backend)
        return stored

    def locate(self, file_id: str) -> StoredReceipt:
        """Resolve ``file_id`` to its stored receipt or raise ``NotFoundError``."""
        self._check_file_id(file_id)
        stored = self._find(file_id)
        if stored is None:
            raise NotFoundError(f"Receipt file not found: {file_id}")
        return stored

    def read(self, stored: StoredReceipt) -> bytes:
        return self._read(stored)

    def retrieve(self, file_id: str) -> Tuple[bytes, str]:
        stored = self.locate(file_id)
        return self._read(stored), stored.mime_type

    def delete(self, file_id: str) -> None:
        stored = self.locate(file_id)
        self._remove(stored)
        logger.info("[storage] deleted file_id=%s", file_id)

    # -- backend hooks ------------------------------------------------------------

    backend: str = ""

    @abstractmethod
    def _write(self, file_id: str, ext: str, data: bytes, mime_type: str) -> StoredReceipt: ...

    @abstractmethod
    def _find(self, file_id: str) -> Optional[StoredReceipt]: ...

    @abstractmethod
    def _read(self, stored: StoredReceipt) -> bytes: ...

    @abstractmethod
    def _remove(self, stored: StoredReceipt) -> None: ...

    @staticmethod
    def _candidate_names(file_id: str) -> list[str]:
        seen: list[str] = []
        for ext in CONTENT_TYPES:
            name = f"{file_id}{ext}"
            if name not in seen:
                seen.append(name)
        return seen


class FilesystemReceiptStore(ReceiptStore):
    backend = StorageBackend.FILESYSTEM.value

    def __init__(self, base_dir: str | Path | None = None, max_size_bytes: Optional[int] = None) -> None:
        super().__init__(max_size_bytes)
        base_path = Path(base_dir or settings.STORAGE_DIRECTORY)
        if not base_path.is_absolute():
            repo_root = Path(__file__).resolve().parents[3]
            base_path = (repo_root / base_path).resolve()
        self.base_dir = base_path
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info("[storage] Filesystem base_dir: %s", self.base_dir)

    def _write(self, file_id: str, ext: str, data: bytes, mime_type: str) -> StoredReceipt:
        final_path = self.base_dir / f"{file_id}{ext}"
        tmp_path = self.base_dir / f".{file_id}{ext}.part"
        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, final_path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise ProcessingError(f"Failed to store receipt: {exc}", reason="upload-failed") from exc
        return StoredReceipt(
            file_id=file_id,
            path=str(final_path),
            mime_type=mime_type,
            size_bytes=len(data),
        )

    def _find(self, file_id: str) -> Optional[StoredReceipt]:
        for name in self._candidate_names(file_id):
            path = self.base_dir / name
            if path.is_file():
                return StoredReceipt(
                    file_id=file_id,
                    path=str(path),
                    mime_type=content_type_for(name),
                    size_bytes=path.stat().st_size,
                )
        return None

    def _read(self, stored: StoredReceipt) -> bytes:
        try:
            return Path(stored.path).read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Receipt file not found: {stored.file_id}") from exc

    def _remove(self, stored: StoredReceipt) -> None:
        try:
            Path(stored.path).unlink()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Receipt file not found: {stored.file_id}") from exc


class MinioReceiptStore(ReceiptStore):
    backend = StorageBackend.MINIO.value

    def __init__(self, client: Optional[Minio] = None, bucket: Optional[str] = None, max_size_bytes: Optional[int] = None) -> None:
        super().__init__(max_size_bytes)
        self._client = client or Minio(
            settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=bool(settings.MINIO_USE_SSL),
        )
        self.bucket = bucket or settings.MINIO_BUCKET_NAME
        # Ensure bucket exists (idempotent)
        try:
            if not self._client.bucket_exists(self.bucket):
                self._client.make_bucket(self.bucket)
        except S3Error as e:  # pragma: no cover - startup path
            logger.warning("[storage] MinIO bucket ensure failed: %s", e)

    def _write(self, file_id: str, ext: str, data: bytes, mime_type: str) -> StoredReceipt:
        object_name = f"{file_id}{ext}"
        try:
            self._client.put_object(
                self.bucket,
                object_name,
                BytesIO(data),
                len(data),
                content_type=mime_type,
            )
        except S3Error as exc:
            raise ProcessingError(f"MinIO upload failed: {exc}", reason="upload-failed") from exc
        return StoredReceipt(file_id=file_id, path=object_name, mime_type=mime_type, size_bytes=len(data))

    def _find(self, file_id: str) -> Optional[StoredReceipt]:
        for name in self._candidate_names(file_id):
            try:
                stat = self._client.stat_object(self.bucket, name)
            except S3Error as exc:
                if exc.code in ("NoSuchKey", "NoSuchObject", "ResourceNotFound"):
                    continue
                raise ProcessingError(f"MinIO lookup failed: {exc}") from exc
            return StoredReceipt(
                file_id=file_id,
                path=name,
                mime_type=content_type_for(name),
                size_bytes=stat.size or 0,
            )
        return None

    def _read(self, stored: StoredReceipt) -> bytes:
        try:
            resp = self._client.get_object(self.bucket, stored.path)
        except S3Error as exc:
            raise NotFoundError(f"Receipt file not found: {stored.file_id}") from exc
        try:
            return resp.read()
        finally:
            resp.close()
            resp.release_conn()

    def _remove(self, stored: StoredReceipt) -> None:
        try:
            self._client.remove_object(self.bucket, stored.path)
        except S3Error as exc:
            raise ProcessingError(f"MinIO delete failed: {exc}", reason="delete-failed") from exc


@lru_cache(maxsize=1)
def get_receipt_store() -> ReceiptStore:
    """Return the process-wide store for the configured backend."""
    backend = (settings.STORAGE_BACKEND or StorageBackend.FILESYSTEM.value).lower()
    if backend == StorageBackend.MINIO.value:
        return MinioReceiptStore()
    return FilesystemReceiptStore()

from __future__ import annotations

import pytest

from fakes import FakeMinio, fake_jpeg
from receipt_ledger.core.errors import NotFoundError, ProcessingError, ValidationError
from receipt_ledger.services import storage_service
from receipt_ledger.services.retrieval_service import ReceiptGateway
from receipt_ledger.services.storage_service import (
    FilesystemReceiptStore,
    MinioReceiptStore,
    content_type_for,
    split_file_id,
)


@pytest.mark.parametrize(
    "mime,ext",
    [
        ("image/jpeg", ".jpg"),
        ("image/png", ".png"),
        ("image/gif", ".gif"),
        ("image/webp", ".webp"),
        ("image/heic", ".heic"),
        ("image/heif", ".heif"),
    ],
)
def test_store_then_retrieve_is_byte_identical(store, mime, ext):
    data = fake_jpeg(4096)
    stored = store.store(data, mime)
    assert stored.filename == f"{stored.file_id}{ext}"
    assert stored.size_bytes == len(data)

    content, content_type = store.retrieve(stored.file_id)
    assert content == data
    assert content_type == mime
    assert content_type_for(stored.filename) == mime


def test_text_upload_rejected_before_anything_is_written(store):
    with pytest.raises(ValidationError) as exc_info:
        store.store(b"just some notes", "text/plain")
    assert "Invalid file type" in exc_info.value.message
    assert list(store.base_dir.iterdir()) == []


def test_upload_over_size_ceiling_rejected(tmp_path):
    small = FilesystemReceiptStore(base_dir=tmp_path, max_size_bytes=1024)
    with pytest.raises(ValidationError):
        small.store(fake_jpeg(2048), "image/jpeg")
    assert list(tmp_path.iterdir()) == []


def test_empty_upload_rejected(store):
    with pytest.raises(ValidationError):
        store.store(b"", "image/png")


def test_mime_type_parameters_are_ignored(store):
    stored = store.store(fake_jpeg(), "IMAGE/JPEG; charset=binary")
    assert stored.mime_type == "image/jpeg"


def test_delete_then_retrieve_is_not_found(store):
    stored = store.store(fake_jpeg(), "image/jpeg")
    store.delete(stored.file_id)
    with pytest.raises(NotFoundError):
        store.retrieve(stored.file_id)
    with pytest.raises(NotFoundError):
        store.delete(stored.file_id)


def test_lookup_is_exact_not_substring(store):
    stored = store.store(fake_jpeg(), "image/jpeg")
    # A file whose name merely contains the id must never be matched
    (store.base_dir / f"1700000000_user_{stored.file_id}.jpg").write_bytes(b"other")
    prefix = stored.file_id[:16]
    with pytest.raises(NotFoundError):
        store.retrieve(prefix)
    content, _ = store.retrieve(stored.file_id)
    assert content != b"other"


@pytest.mark.parametrize("bad_id", ["", "../etc/passwd", "abc", "A" * 32])
def test_malformed_ids_are_not_found(store, bad_id):
    with pytest.raises(NotFoundError):
        store.locate(bad_id)


def test_split_file_id_strips_known_extensions_only():
    assert split_file_id("abc.jpg") == "abc"
    assert split_file_id("abc.HEIC") == "abc"
    assert split_file_id("abc.txt") == "abc.txt"
    assert split_file_id("abc") == "abc"


def test_unknown_extension_served_as_binary():
    assert content_type_for("receipt.bin") == "application/octet-stream"
    assert content_type_for("receipt.JPEG") == "image/jpeg"


def test_gateway_serves_with_private_cache_directive(store):
    stored = store.store(fake_jpeg(), "image/png")
    gateway = ReceiptGateway(store, cache_max_age=86400)
    served = gateway.serve(f"{stored.file_id}.png")
    assert served.content_type == "image/png"
    assert served.cache_control == "private, max-age=86400"
    assert served.content == fake_jpeg()


def test_gateway_discard_logs_instead_of_raising(store):
    gateway = ReceiptGateway(store)
    stored = store.store(fake_jpeg(), "image/jpeg")
    assert gateway.discard(stored.file_id) is True
    assert gateway.discard(stored.file_id) is False


def test_failed_write_leaves_no_partial_file(store, monkeypatch):
    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(storage_service.os, "replace", broken_replace)
    with pytest.raises(ProcessingError) as exc_info:
        store.store(fake_jpeg(), "image/jpeg")
    assert exc_info.value.reason == "upload-failed"
    assert list(store.base_dir.iterdir()) == []


# ---------------------------------------------------------------------------
# MinIO backend


def test_minio_store_creates_bucket_and_round_trips():
    client = FakeMinio()
    store = MinioReceiptStore(client=client, bucket="receipts")
    assert client.buckets == {"receipts"}

    stored = store.store(fake_jpeg(300), "image/webp")
    assert stored.path == f"{stored.file_id}.webp"
    assert client.objects[("receipts", stored.path)][1] == "image/webp"

    content, content_type = store.retrieve(stored.file_id)
    assert content == fake_jpeg(300)
    assert content_type == "image/webp"
    assert store.locate(stored.file_id).size_bytes == 300


def test_minio_delete_then_retrieve_is_not_found():
    store = MinioReceiptStore(client=FakeMinio(), bucket="receipts")
    stored = store.store(fake_jpeg(), "image/png")
    store.delete(stored.file_id)
    with pytest.raises(NotFoundError):
        store.retrieve(stored.file_id)
    with pytest.raises(NotFoundError):
        store.delete(stored.file_id)


def test_minio_rejects_before_upload_and_maps_failures():
    client = FakeMinio()
    store = MinioReceiptStore(client=client, bucket="receipts")
    with pytest.raises(ValidationError):
        store.store(b"notes", "text/plain")
    assert client.objects == {}

    client.fail_put = True
    with pytest.raises(ProcessingError) as exc_info:
        store.store(fake_jpeg(), "image/jpeg")
    assert exc_info.value.reason == "upload-failed"

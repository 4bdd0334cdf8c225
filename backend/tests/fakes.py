"""In-memory stand-ins for the vision model, the ledger server, MinIO and Redis."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

from minio.error import S3Error
from redis.exceptions import LockError, RedisError

from receipt_ledger.core.errors import ProcessingError
from receipt_ledger.models.schemas import Account, Category, Payee, TransactionDraft


JPEG_HEADER = b"\xff\xd8\xff\xe0"


def fake_jpeg(size: int = 1024) -> bytes:
    return JPEG_HEADER + b"\x00" * max(0, size - len(JPEG_HEADER))


class FakeVisionModel:
    """Returns canned text (or raises) and records every call."""

    def __init__(self, response: str | None = None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls: list[dict] = []

    def complete(self, image_b64: str, mime_type: str, prompt: str) -> str:
        self.calls.append({"image_b64": image_b64, "mime_type": mime_type, "prompt": prompt})
        if self.error is not None:
            raise self.error
        return self.response or ""


class FakeLedger:
    """In-memory ledger with a payee directory and a transaction log."""

    def __init__(
        self,
        payees: list[Payee] | None = None,
        fail_batch: bool = False,
        bootstrapped: bool = True,
        accounts: list[Account] | None = None,
        categories: list[Category] | None = None,
    ):
        self.payees = list(payees or [])
        self.accounts = list(accounts or [])
        self.categories = list(categories or [])
        self.bootstrapped = bootstrapped
        self.created: list[str] = []
        self.batches: list[list[TransactionDraft]] = []
        self.fail_batch = fail_batch

    async def needs_bootstrap(self) -> bool:
        return not self.bootstrapped

    async def list_accounts(self) -> list[Account]:
        return list(self.accounts)

    async def list_categories(self) -> list[Category]:
        return list(self.categories)

    async def list_payees(self) -> list[Payee]:
        await asyncio.sleep(0)
        return list(self.payees)

    async def create_payee(self, name: str) -> str:
        # Yield so concurrent commits interleave here if nothing serialises them
        await asyncio.sleep(0)
        payee_id = f"payee-{len(self.payees) + 1}"
        self.payees.append(Payee(id=payee_id, name=name))
        self.created.append(name)
        return payee_id

    async def apply_transactions(self, added) -> None:
        if self.fail_batch:
            raise ProcessingError("Ledger request failed: batch rejected")
        self.batches.append(list(added))


def model_answer(**overrides) -> str:
    payload = {
        "merchant": "Shop",
        "date": "2024-01-01",
        "totalAmount": 1200,
        "expenses": [
            {
                "amount": 1200,
                "categoryId": "c1",
                "categoryName": "Groceries",
                "note": "milk, eggs",
                "confidence": 0.92,
            }
        ],
        "confidence": 0.92,
    }
    payload.update(overrides)
    return json.dumps(payload)


def s3_error(code: str, name: str = "") -> S3Error:
    return S3Error(
        response=None,
        code=code,
        message=code,
        resource=f"/receipts/{name}",
        request_id="req",
        host_id="host",
        object_name=name or None,
    )


class _ObjectResponse:
    def __init__(self, data: bytes):
        self._data = data
        self.closed = False

    def read(self) -> bytes:
        return self._data

    def close(self) -> None:
        self.closed = True

    def release_conn(self) -> None:
        pass


class FakeMinio:
    """Dict-backed subset of ``minio.Minio`` used by the receipt store."""

    def __init__(self, fail_put: bool = False):
        self.buckets: set[str] = set()
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.fail_put = fail_put

    def bucket_exists(self, bucket: str) -> bool:
        return bucket in self.buckets

    def make_bucket(self, bucket: str) -> None:
        self.buckets.add(bucket)

    def put_object(self, bucket, name, data, length, content_type="application/octet-stream"):
        if self.fail_put:
            raise s3_error("InternalError", name)
        self.objects[(bucket, name)] = (data.read(length), content_type)

    def stat_object(self, bucket, name):
        if (bucket, name) not in self.objects:
            raise s3_error("NoSuchKey", name)
        return SimpleNamespace(size=len(self.objects[(bucket, name)][0]))

    def get_object(self, bucket, name):
        if (bucket, name) not in self.objects:
            raise s3_error("NoSuchKey", name)
        return _ObjectResponse(self.objects[(bucket, name)][0])

    def remove_object(self, bucket, name):
        self.objects.pop((bucket, name), None)


class FakeRedisLock:
    def __init__(self, client: "FakeRedis", name: str):
        self.client = client
        self.name = name

    async def acquire(self) -> bool:
        if self.client.error:
            raise RedisError("connection refused")
        self.client.acquired.append(self.name)
        return self.client.grant

    async def release(self) -> None:
        self.client.released.append(self.name)
        if self.client.release_error:
            raise LockError("lock expired")


class FakeRedis:
    """Records ``lock()`` calls; acquire outcome is configurable."""

    def __init__(self, grant: bool = True, error: bool = False, release_error: bool = False):
        self.grant = grant
        self.error = error
        self.release_error = release_error
        self.acquired: list[str] = []
        self.released: list[str] = []
        self.lock_args: list[dict] = []

    def lock(self, name, timeout=None, blocking_timeout=None):
        self.lock_args.append({"name": name, "timeout": timeout, "blocking_timeout": blocking_timeout})
        return FakeRedisLock(self, name)

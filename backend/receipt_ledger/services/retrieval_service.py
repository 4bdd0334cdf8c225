"""Serving and discarding stored receipt images."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from receipt_ledger.core.config import settings
from receipt_ledger.core.errors import ReceiptError
from receipt_ledger.services.storage_service import ReceiptStore, content_type_for, split_file_id


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServedReceipt:
    file_id: str
    content: bytes
    content_type: str
    cache_control: str


class ReceiptGateway:
    """Read-side access to the receipt store.

    Content types come from the static extension table, never from the
    bytes themselves. Callers gate every call on the readiness check
    before reaching this class.
    """

    def __init__(self, store: ReceiptStore, cache_max_age: Optional[int] = None) -> None:
        self.store = store
        self.cache_max_age = settings.RECEIPT_CACHE_MAX_AGE if cache_max_age is None else cache_max_age

    def serve(self, raw_file_id: str) -> ServedReceipt:
        file_id = split_file_id(raw_file_id)
        stored = self.store.locate(file_id)
        content = self.store.read(stored)
        logger.info("[retrieve] serving file_id=%s bytes=%d", file_id, len(content))
        return ServedReceipt(
            file_id=file_id,
            content=content,
            content_type=content_type_for(stored.path),
            cache_control=f"private, max-age={self.cache_max_age}",
        )

    def delete(self, raw_file_id: str) -> None:
        self.store.delete(split_file_id(raw_file_id))

    def discard(self, raw_file_id: str) -> bool:
        """Best-effort delete used when a review is abandoned.

        Failures are logged and reported as ``False``; orphaned files are
        left for out-of-band cleanup.
        """
        try:
            self.delete(raw_file_id)
            return True
        except ReceiptError as exc:
            logger.warning("[retrieve] discard failed file_id=%s reason=%s err=%s", raw_file_id, exc.reason, exc)
            return False

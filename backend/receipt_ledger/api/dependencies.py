"""Common dependencies for FastAPI routes.

Every collaborator a route needs (store, extraction service, ledger
client, payee locks) is provided here so tests can swap any of them via
``app.dependency_overrides``. ``require_ready`` gates each receipt
operation on the ledger server's bootstrap state.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends

from receipt_ledger.services.extraction_service import ExtractionService
from receipt_ledger.services.ledger_client import LedgerClient, ensure_ready, get_ledger_client
from receipt_ledger.services.payee_locks import PayeeLocks, get_payee_locks
from receipt_ledger.services.retrieval_service import ReceiptGateway
from receipt_ledger.services.storage_service import ReceiptStore, get_receipt_store


def get_store() -> ReceiptStore:
    return get_receipt_store()


def get_gateway(store: ReceiptStore = Depends(get_store)) -> ReceiptGateway:
    return ReceiptGateway(store)


def get_extraction_service(store: ReceiptStore = Depends(get_store)) -> ExtractionService:
    return ExtractionService(store)


def get_ledger() -> Optional[LedgerClient]:
    return get_ledger_client()


def get_locks() -> PayeeLocks:
    return get_payee_locks()


async def require_ready(ledger: Optional[LedgerClient] = Depends(get_ledger)) -> None:
    """Raise ``ServiceUnavailableError`` unless the server is bootstrapped."""
    await ensure_ready(ledger)

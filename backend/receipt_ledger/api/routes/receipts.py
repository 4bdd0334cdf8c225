"""API routes for receipt upload, extraction, retrieval and commit."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool

from receipt_ledger.api.dependencies import (
    get_extraction_service,
    get_gateway,
    get_ledger,
    get_locks,
    get_store,
    require_ready,
)
from receipt_ledger.core.config import settings
from receipt_ledger.core.errors import ConfigError, ValidationError
from receipt_ledger.core.observability import sentry_breadcrumb, sentry_set_tags
from receipt_ledger.models.schemas import (
    CommitRequest,
    CommitResponse,
    Envelope,
    ProcessRequest,
    ProcessResponse,
    ReceiptServiceStatus,
    UploadResponse,
)
from receipt_ledger.services.extraction_service import ExtractionService
from receipt_ledger.services.ledger_client import LedgerClient
from receipt_ledger.services.payee_locks import PayeeLocks
from receipt_ledger.services.reconciliation_service import ReviewSession, build_receipt_link
from receipt_ledger.services.retrieval_service import ReceiptGateway
from receipt_ledger.services.storage_service import ALLOWED_MIME_TYPES, ReceiptStore

router = APIRouter(prefix="/receipt", tags=["receipts"])

logger = logging.getLogger(__name__)


@router.get("/status", response_model=Envelope[ReceiptServiceStatus], response_model_exclude_unset=True)
async def receipt_status(
    extraction: ExtractionService = Depends(get_extraction_service),
) -> Envelope[ReceiptServiceStatus]:
    """Report whether receipt extraction is configured and what uploads are accepted."""
    return Envelope(
        status="ok",
        data=ReceiptServiceStatus(
            available=extraction.available,
            model=settings.OPENAI_MODEL,
            max_size_mb=settings.RECEIPT_MAX_SIZE_MB,
            allowed_types=list(ALLOWED_MIME_TYPES),
        ),
    )


@router.post(
    "/upload",
    response_model=Envelope[UploadResponse],
    response_model_exclude_unset=True,
    dependencies=[Depends(require_ready)],
)
async def upload_receipt(
    receipt: Optional[UploadFile] = File(None),
    store: ReceiptStore = Depends(get_store),
) -> Envelope[UploadResponse]:
    """Store an uploaded receipt image (multipart field ``receipt``)."""
    if receipt is None:
        raise ValidationError("No receipt file provided", reason="no-file")
    contents = await receipt.read()
    try:
        stored = await run_in_threadpool(store.store, contents, receipt.content_type)
    except ValidationError:
        sentry_breadcrumb(
            category="upload",
            message="upload_receipt.rejected",
            data={"content_type": receipt.content_type, "size": len(contents)},
            level="info",
        )
        raise
    return Envelope(
        status="ok",
        data=UploadResponse(
            file_id=stored.file_id,
            filename=stored.filename,
            size=stored.size_bytes,
            path=f"/receipt/{stored.file_id}",
        ),
    )


@router.post(
    "/process",
    response_model=Envelope[ProcessResponse],
    response_model_exclude_unset=True,
    dependencies=[Depends(require_ready)],
)
async def process_receipt(
    body: ProcessRequest,
    store: ReceiptStore = Depends(get_store),
    extraction: ExtractionService = Depends(get_extraction_service),
) -> Envelope[ProcessResponse]:
    """Run extraction on a stored receipt against the caller's categories."""
    sentry_set_tags({"receipt.categories": len(body.categories)})
    result = await extraction.process(body.file_id, body.categories)
    stored = await run_in_threadpool(store.locate, body.file_id)
    return Envelope(
        status="ok",
        data=ProcessResponse(
            **result.model_dump(),
            receipt_url=f"/receipt/{stored.file_id}",
            file_id=stored.file_id,
            filename=stored.filename,
            extension=stored.extension,
        ),
    )


@router.post(
    "/commit",
    response_model=Envelope[CommitResponse],
    response_model_exclude_unset=True,
    dependencies=[Depends(require_ready)],
)
async def commit_receipt(
    body: CommitRequest,
    store: ReceiptStore = Depends(get_store),
    ledger: Optional[LedgerClient] = Depends(get_ledger),
    locks: PayeeLocks = Depends(get_locks),
) -> Envelope[CommitResponse]:
    """Commit reviewed expenses as one transaction batch."""
    if ledger is None:
        raise ConfigError("Ledger server not configured. Set LEDGER_API_URL.")
    stored = await run_in_threadpool(store.locate, body.file_id)
    expenses = body.expenses
    if body.default_account:
        for expense in expenses:
            if not expense.account:
                expense.account = body.default_account
    accounts, categories, payees = await asyncio.gather(
        ledger.list_accounts(), ledger.list_categories(), ledger.list_payees()
    )
    session = ReviewSession(
        stored.file_id,
        expenses,
        receipt_link=build_receipt_link(stored.file_id, body.extension or stored.extension),
        accounts=accounts,
        categories=categories,
        payees=payees,
    )
    transactions = await session.commit(ledger, locks)
    return Envelope(status="ok", data=CommitResponse(transactions=transactions))


@router.get("/{file_id}", dependencies=[Depends(require_ready)])
async def get_receipt(
    file_id: str,
    gateway: ReceiptGateway = Depends(get_gateway),
) -> Response:
    """Stream the stored image back with a private 24h cache directive."""
    served = await run_in_threadpool(gateway.serve, file_id)
    return Response(
        content=served.content,
        media_type=served.content_type,
        headers={"Cache-Control": served.cache_control},
    )


@router.delete("/{file_id}", response_model=Envelope[None], response_model_exclude_unset=True, dependencies=[Depends(require_ready)])
async def delete_receipt(
    file_id: str,
    gateway: ReceiptGateway = Depends(get_gateway),
) -> Envelope[None]:
    """Delete a stored receipt image."""
    await run_in_threadpool(gateway.delete, file_id)
    return Envelope(status="ok", message="Receipt deleted successfully")

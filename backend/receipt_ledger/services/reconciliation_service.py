"""Reconciliation of extracted expenses with the ledger.

A ``ReviewSession`` holds the editable copies of one receipt's expenses.
The reviewer assigns accounts and payees or corrects fields one at a
time; nothing is written anywhere until ``commit``.

Commit is all-or-nothing:

1. Every expense must have an account, otherwise ``CommitError`` is raised
   before any payee is created or any transaction is submitted.
2. Expenses without an explicit payee but with a merchant name reuse an
   existing payee matched case-insensitively, or create one. The
   lookup-or-create runs under a per-name lock so concurrent commits
   never create the same payee twice.
3. One ``TransactionDraft`` per expense is submitted to the ledger as a
   single batch. A failed batch is surfaced whole and never retried here;
   extraction and reconciliation can simply be re-run from the same
   ``file_id``.

``ReceiptReview`` wraps a session with the two recoveries offered after a
failure: retry the failed stage, or cancel and discard the stored image.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Iterable, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from receipt_ledger.core.config import settings
from receipt_ledger.core.errors import CommitError, ConfigError, ReceiptError, ValidationError
from receipt_ledger.core.observability import sentry_breadcrumb
from receipt_ledger.models.enums import ErrorKind, ReviewStage
from receipt_ledger.models.schemas import (
    Account,
    Category,
    EditableExpense,
    Payee,
    ReceiptProcessResult,
    TransactionDraft,
)
from receipt_ledger.services.extraction_service import ExtractionService
from receipt_ledger.services.ledger_client import Ledger
from receipt_ledger.services.payee_locks import PayeeLocks, payee_key
from receipt_ledger.services.retrieval_service import ReceiptGateway


logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset(
    {"amount", "merchant", "date", "category_id", "category_name", "note", "account", "payee"}
)
# Wire (camelCase) names accepted by update()
_FIELD_ALIASES = {"categoryId": "category_id", "categoryName": "category_name"}


def build_receipt_link(file_id: str, extension: str = "") -> str:
    """Link written into transaction notes so the ledger can show the receipt."""
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/receipt/{file_id}{extension}"


class PayeeResolver:
    """Find-or-create payees by case-insensitive exact name."""

    def __init__(self, ledger: Ledger, known: Iterable[Payee], locks: PayeeLocks) -> None:
        self.ledger = ledger
        self.locks = locks
        self._by_name: dict[str, str] = {}
        for payee in known:
            self._by_name.setdefault(payee_key(payee.name), payee.id)

    async def resolve(self, name: str) -> str:
        key = payee_key(name)
        if key in self._by_name:
            return self._by_name[key]
        async with self.locks.hold(name):
            # Another commit may have created it while we waited for the lock
            for payee in await self.ledger.list_payees():
                self._by_name.setdefault(payee_key(payee.name), payee.id)
            if key in self._by_name:
                return self._by_name[key]
            payee_id = await self.ledger.create_payee(name.strip())
            self._by_name[key] = payee_id
            logger.info("[reconcile] created payee id=%s", payee_id)
            return payee_id


class ReviewSession:
    """Single-owner working copy of one receipt's expenses."""

    def __init__(
        self,
        file_id: str,
        expenses: Sequence[EditableExpense],
        receipt_link: str = "",
        accounts: Iterable[Account] = (),
        categories: Iterable[Category] = (),
        payees: Iterable[Payee] = (),
        confidence_threshold: Optional[float] = None,
    ) -> None:
        self.file_id = file_id
        self.expenses = list(expenses)
        self.receipt_link = receipt_link or build_receipt_link(file_id)
        self.accounts = list(accounts)
        self.categories = list(categories)
        self.payees = list(payees)
        self.confidence_threshold = (
            settings.LOW_CONFIDENCE_THRESHOLD if confidence_threshold is None else confidence_threshold
        )

    @classmethod
    def from_result(
        cls,
        result: ReceiptProcessResult,
        file_id: str,
        default_account: Optional[str] = None,
        **kwargs: Any,
    ) -> "ReviewSession":
        expenses = [
            EditableExpense(
                **expense.model_dump(),
                id=f"expense-{index}",
                account=default_account or None,
                payee=None,
            )
            for index, expense in enumerate(result.expenses)
        ]
        return cls(file_id, expenses, **kwargs)

    # -- editing ------------------------------------------------------------------

    def get(self, expense_id: str) -> EditableExpense:
        for expense in self.expenses:
            if expense.id == expense_id:
                return expense
        raise ValidationError(f"Unknown expense: {expense_id}", reason="unknown-expense")

    def update(self, expense_id: str, field: str, value: Any) -> EditableExpense:
        """Replace a single field on one expense. No other field changes."""
        field = _FIELD_ALIASES.get(field, field)
        if field not in EDITABLE_FIELDS:
            raise ValidationError(f"Field '{field}' cannot be edited", reason="invalid-field")
        expense = self.get(expense_id)
        try:
            setattr(expense, field, value)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid value for '{field}': {exc.errors()[0]['msg']}", reason="invalid-value") from exc
        return expense

    # -- review hints -------------------------------------------------------------

    def needs_review(self, expense: EditableExpense) -> bool:
        """Advisory flag: low-confidence expenses should be checked against the image."""
        return expense.confidence < self.confidence_threshold

    @property
    def low_confidence(self) -> list[EditableExpense]:
        return [e for e in self.expenses if self.needs_review(e)]

    @property
    def missing_accounts(self) -> list[str]:
        return [e.id for e in self.expenses if not e.account]

    @property
    def can_commit(self) -> bool:
        return bool(self.expenses) and not self.missing_accounts

    # -- commit -------------------------------------------------------------------

    def check_commit(self) -> None:
        if not self.expenses:
            raise CommitError("There are no expenses to commit", reason="no-expenses")
        missing = self.missing_accounts
        if missing:
            raise CommitError(
                f"All expenses must have an account (missing: {', '.join(missing)})",
                reason="missing-account",
            )
        self._check_directories()

    def _check_directories(self) -> None:
        """Reject account and category ids the ledger does not know.

        Skipped for a directory that was not supplied.
        """
        if self.accounts:
            open_accounts = {a.id for a in self.accounts if not a.closed}
            bad = [e.id for e in self.expenses if e.account not in open_accounts]
            if bad:
                raise CommitError(
                    f"Unknown or closed account (expenses: {', '.join(bad)})",
                    reason="unknown-account",
                )
        if self.categories:
            known = {c.id for c in self.categories}
            bad = [e.id for e in self.expenses if e.category_id is not None and e.category_id not in known]
            if bad:
                raise CommitError(
                    f"Unknown category (expenses: {', '.join(bad)})",
                    reason="unknown-category",
                )

    async def build_transactions(self, ledger: Ledger, locks: PayeeLocks) -> list[TransactionDraft]:
        self.check_commit()
        resolver = PayeeResolver(ledger, self.payees, locks)
        drafts: list[TransactionDraft] = []
        for expense in self.expenses:
            payee_id = expense.payee
            if not payee_id and expense.merchant.strip():
                payee_id = await resolver.resolve(expense.merchant)
            drafts.append(
                TransactionDraft(
                    id=str(uuid.uuid4()),
                    account=expense.account,
                    date=expense.date,
                    amount=expense.amount,
                    payee=payee_id,
                    category=expense.category_id,
                    notes=self.receipt_link,
                    cleared=False,
                )
            )
        return drafts

    async def commit(self, ledger: Ledger, locks: PayeeLocks) -> list[TransactionDraft]:
        """Resolve payees and submit every expense as one transaction batch."""
        drafts = await self.build_transactions(ledger, locks)
        await ledger.apply_transactions(drafts)
        low = len(self.low_confidence)
        logger.info("[reconcile] committed file_id=%s transactions=%d low_confidence=%d", self.file_id, len(drafts), low)
        sentry_breadcrumb(
            category="reconcile",
            message="receipt.committed",
            data={"transactions": len(drafts), "low_confidence": low},
        )
        return drafts


class ReceiptReview:
    """Drives one receipt from extraction through commit.

    After a failure ``error`` holds the exception (``error_message`` its
    text) and ``stage`` names the stage that failed. The only ways on are
    ``retry()``, which re-runs that stage, and ``cancel()``.
    """

    def __init__(
        self,
        file_id: str,
        extraction: ExtractionService,
        gateway: ReceiptGateway,
        ledger: Optional[Ledger],
        locks: PayeeLocks,
        categories: Iterable[Category] = (),
        default_account: Optional[str] = None,
        accounts: Iterable[Account] = (),
        payees: Iterable[Payee] = (),
    ) -> None:
        self.file_id = file_id
        self.extraction = extraction
        self.gateway = gateway
        self.ledger = ledger
        self.locks = locks
        self.categories = list(categories)
        self.default_account = default_account
        self.accounts = list(accounts)
        self.payees = list(payees)
        self.stage = ReviewStage.EXTRACT
        self.session: Optional[ReviewSession] = None
        self.result: Optional[ReceiptProcessResult] = None
        self.transactions: list[TransactionDraft] = []
        self.error: Optional[ReceiptError] = None

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None

    async def start(self) -> Optional[ReviewSession]:
        self.stage = ReviewStage.EXTRACT
        self.error = None
        try:
            self.result = await self.extraction.process(self.file_id, self.categories)
            stored = await asyncio.to_thread(self.gateway.store.locate, self.file_id)
        except ReceiptError as exc:
            self._fail(exc)
            return None
        self.session = ReviewSession.from_result(
            self.result,
            self.file_id,
            default_account=self.default_account,
            receipt_link=build_receipt_link(self.file_id, stored.extension),
            accounts=self.accounts,
            categories=self.categories,
            payees=self.payees,
        )
        self.stage = ReviewStage.REVIEW
        return self.session

    async def commit(self) -> Optional[list[TransactionDraft]]:
        if self.session is None:
            raise CommitError("Receipt has not been extracted yet", reason="not-extracted")
        self.stage = ReviewStage.COMMIT
        self.error = None
        try:
            if self.ledger is None:
                raise ConfigError("Ledger server not configured. Set LEDGER_API_URL.")
            self.transactions = await self.session.commit(self.ledger, self.locks)
        except ReceiptError as exc:
            self._fail(exc)
            return None
        self.stage = ReviewStage.COMMITTED
        return self.transactions

    async def retry(self) -> Any:
        """Re-run the failed stage.

        Transient failures can simply be re-run, and a commit rejection is
        re-run once the reviewer has fixed the expenses. Any other error is
        raised again without touching the model or the ledger.
        """
        if self.error is None:
            raise CommitError("Nothing to retry", reason="nothing-to-retry")
        if not (self.error.retryable or self.error.kind == ErrorKind.COMMIT):
            raise self.error
        if self.stage == ReviewStage.COMMIT:
            return await self.commit()
        return await self.start()

    def cancel(self) -> bool:
        """Abandon the review and delete the stored image (best effort)."""
        self.stage = ReviewStage.CANCELLED
        self.session = None
        return self.gateway.discard(self.file_id)

    def _fail(self, exc: ReceiptError) -> None:
        self.error = exc
        logger.warning("[reconcile] stage=%s failed file_id=%s kind=%s err=%s", self.stage.value, self.file_id, exc.kind.value, exc)

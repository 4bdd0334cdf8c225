"""HTTP client for the external ledger server.

The ledger (accounts, categories, payees, transactions) and its sync
protocol live elsewhere; this module only speaks to the handful of
endpoints the receipt pipeline needs:

- ``GET  /account/needs-bootstrap``: readiness gate for every operation
- ``GET  /accounts``, ``/categories``, ``/payees``: read-only directories
- ``POST /payees``: create a payee, returns its id
- ``POST /transactions/batch``: apply ``{added, updated, deleted}`` atomically

Every response uses the ``{status, data?, message?, reason?}`` envelope.
A non-2xx status *or* ``status != "ok"`` is a failure and surfaces as
``ProcessingError``.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Optional, Protocol, Sequence

import httpx

from receipt_ledger.core.config import settings
from receipt_ledger.core.errors import ProcessingError, ReceiptError, ServiceUnavailableError
from receipt_ledger.models.schemas import Account, Category, Payee, TransactionDraft


logger = logging.getLogger(__name__)


class Ledger(Protocol):
    """Subset of the ledger server used by the reconciliation service."""

    async def list_accounts(self) -> list[Account]: ...

    async def list_categories(self) -> list[Category]: ...

    async def list_payees(self) -> list[Payee]: ...

    async def create_payee(self, name: str) -> str: ...

    async def apply_transactions(self, added: Sequence[TransactionDraft]) -> None: ...


class LedgerClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.LEDGER_API_URL or "").rstrip("/")
        self.token = token if token is not None else settings.LEDGER_API_TOKEN
        self.timeout = timeout or settings.LEDGER_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["X-ACTUAL-TOKEN"] = self.token
        return headers

    async def _request(self, method: str, path: str, payload: Optional[dict[str, Any]] = None) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, path, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("[ledger] %s %s transport error: %s", method, path, exc)
            raise ProcessingError(f"Ledger request failed: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if resp.status_code >= 400 or body.get("status") != "ok":
            message = body.get("message") or body.get("reason") or f"HTTP {resp.status_code}"
            logger.warning("[ledger] %s %s failed status=%s message=%s", method, path, resp.status_code, message)
            raise ProcessingError(f"Ledger request failed: {message}")
        return body.get("data")

    async def needs_bootstrap(self) -> bool:
        data = await self._request("GET", "/account/needs-bootstrap") or {}
        return not bool(data.get("bootstrapped"))

    async def list_accounts(self) -> list[Account]:
        return [Account.model_validate(a) for a in await self._request("GET", "/accounts") or []]

    async def list_categories(self) -> list[Category]:
        return [Category.model_validate(c) for c in await self._request("GET", "/categories") or []]

    async def list_payees(self) -> list[Payee]:
        return [Payee.model_validate(p) for p in await self._request("GET", "/payees") or []]

    async def create_payee(self, name: str) -> str:
        data = await self._request("POST", "/payees", {"name": name})
        payee_id = data.get("id") if isinstance(data, dict) else data
        if not payee_id:
            raise ProcessingError(f"Ledger did not return an id for new payee '{name}'")
        logger.info("[ledger] created payee id=%s", payee_id)
        return str(payee_id)

    async def apply_transactions(self, added: Sequence[TransactionDraft]) -> None:
        payload = {
            "added": [t.model_dump(mode="json") for t in added],
            "updated": [],
            "deleted": [],
        }
        await self._request("POST", "/transactions/batch", payload)
        logger.info("[ledger] applied batch added=%d", len(added))


@lru_cache(maxsize=1)
def get_ledger_client() -> Optional[LedgerClient]:
    """Return the configured ledger client, or None when no ledger URL is set."""
    if not settings.LEDGER_API_URL:
        return None
    return LedgerClient()


async def ensure_ready(ledger: Optional[LedgerClient]) -> None:
    """Fail fast with ``ServiceUnavailableError`` unless the server is bootstrapped.

    Without a configured ledger there is nothing to gate on.
    """
    if ledger is None:
        return
    try:
        needs = await ledger.needs_bootstrap()
    except ReceiptError as exc:
        raise ServiceUnavailableError(f"Readiness check failed: {exc.message}") from exc
    if needs:
        raise ServiceUnavailableError("Server is not bootstrapped")

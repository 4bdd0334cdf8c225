from __future__ import annotations

import json

import httpx
import pytest

from receipt_ledger.core.errors import ProcessingError, ServiceUnavailableError
from receipt_ledger.models.schemas import TransactionDraft
from receipt_ledger.services.ledger_client import LedgerClient, ensure_ready


def _client(handler) -> LedgerClient:
    return LedgerClient(base_url="http://ledger.test", token="tok", transport=httpx.MockTransport(handler))


def _ok(data=None) -> httpx.Response:
    return httpx.Response(200, json={"status": "ok", "data": data})


@pytest.mark.asyncio
async def test_list_payees_sends_token_and_parses_envelope():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["token"] = request.headers.get("X-ACTUAL-TOKEN")
        return _ok([{"id": "p1", "name": "Coffee Shop"}])

    payees = await _client(handler).list_payees()
    assert seen == {"path": "/payees", "token": "tok"}
    assert [(p.id, p.name) for p in payees] == [("p1", "Coffee Shop")]


@pytest.mark.asyncio
async def test_directories_are_parsed():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/accounts":
            return _ok([{"id": "acc1", "name": "Checking"}])
        return _ok([{"id": "c1", "name": "Salary", "is_income": True}])

    client = _client(handler)
    accounts = await client.list_accounts()
    categories = await client.list_categories()
    assert accounts[0].id == "acc1"
    assert categories[0].is_income is True


@pytest.mark.asyncio
async def test_create_payee_returns_new_id():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert json.loads(request.content) == {"name": "Shop"}
        return _ok({"id": "p-new"})

    assert await _client(handler).create_payee("Shop") == "p-new"


@pytest.mark.asyncio
async def test_apply_transactions_posts_batch_shape():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return _ok({})

    draft = TransactionDraft(id="t1", account="acc1", date="2024-01-01", amount=1200, notes="http://x/receipt/a.jpg")
    await _client(handler).apply_transactions([draft])

    assert captured["path"] == "/transactions/batch"
    assert captured["body"]["updated"] == []
    assert captured["body"]["deleted"] == []
    assert captured["body"]["added"][0]["amount"] == 1200
    assert captured["body"]["added"][0]["cleared"] is False


@pytest.mark.asyncio
async def test_error_envelope_on_200_is_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "error", "reason": "invalid-account"})

    with pytest.raises(ProcessingError) as exc_info:
        await _client(handler).list_payees()
    assert "invalid-account" in exc_info.value.message


@pytest.mark.asyncio
async def test_http_error_status_is_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with pytest.raises(ProcessingError) as exc_info:
        await _client(handler).create_payee("Shop")
    assert "HTTP 500" in exc_info.value.message


@pytest.mark.asyncio
async def test_transport_error_is_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ProcessingError):
        await _client(handler).list_payees()


@pytest.mark.asyncio
async def test_ensure_ready_gates_on_bootstrap_state():
    state = {"bootstrapped": True}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/account/needs-bootstrap"
        return _ok({"bootstrapped": state["bootstrapped"]})

    client = _client(handler)
    await ensure_ready(client)

    state["bootstrapped"] = False
    with pytest.raises(ServiceUnavailableError):
        await ensure_ready(client)


@pytest.mark.asyncio
async def test_ensure_ready_unreachable_server_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ServiceUnavailableError) as exc_info:
        await ensure_ready(_client(handler))
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_ensure_ready_without_ledger_is_noop():
    await ensure_ready(None)

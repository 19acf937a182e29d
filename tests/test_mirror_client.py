"""Mirror node client against a mocked HTTP transport."""

import base64

import httpx
import pytest

from hedvac.core.exceptions import ExternalServiceUnavailableError
from hedvac.hedera.mirror import MirrorNodeClient, MirrorTransaction, decode_memo
from tests.fakes import TOKEN, VAULT

BASE_URL = "https://mirror.test"


def memo(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


def api_transaction(n: int, memo_text: str = "111111111111111111") -> dict:
    return {
        "transaction_id": f"0.0.1234-1700000000-{n:09d}",
        "consensus_timestamp": f"17000000{n:02d}.000000000",
        "name": "CRYPTOTRANSFER",
        "result": "SUCCESS",
        "memo_base64": memo(memo_text),
        "transfers": [
            {"account": "0.0.1234", "amount": -100 * n},
            {"account": VAULT, "amount": 100 * n},
        ],
        "token_transfers": [],
    }


def test_decode_memo():
    assert decode_memo(memo("  42 ")) == "42"
    assert decode_memo(None) == ""
    assert decode_memo("") == ""
    assert decode_memo("not base64!!") is None
    assert decode_memo(base64.b64encode(b"\xff\xfe").decode()) is None


def test_from_api_sums_legs_per_asset():
    data = api_transaction(1)
    data["token_transfers"] = [
        {"token_id": TOKEN, "account": VAULT, "amount": 5},
        {"token_id": TOKEN, "account": VAULT, "amount": 7},
        {"token_id": TOKEN, "account": "0.0.1234", "amount": -12},
    ]

    tx = MirrorTransaction.from_api(data)

    assert tx.is_successful_transfer
    assert tx.memo == "111111111111111111"
    assert tx.received_by(VAULT) == [("HBAR", 100), (TOKEN, 12)]
    assert tx.received_by("0.0.1234") == []


async def test_list_vault_transactions_follows_next_links():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if "page2" in str(request.url):
            return httpx.Response(200, json={"transactions": [api_transaction(2)], "links": {"next": None}})
        return httpx.Response(
            200,
            json={
                "transactions": [api_transaction(1), {"transaction_id": "broken"}],
                "links": {"next": "/api/v1/transactions?page2=1"},
            },
        )

    client = MirrorNodeClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    try:
        transactions = await client.list_vault_transactions(
            VAULT, after="1699999999.000000000", limit=1, max_pages=3
        )
    finally:
        await client.close()

    assert [tx.transaction_id for tx in transactions] == [
        "0.0.1234-1700000000-000000001",
        "0.0.1234-1700000000-000000002",
    ]
    first = requests[0].url.params
    assert first["account.id"] == VAULT
    assert first["order"] == "asc"
    assert first["timestamp"] == "gt:1699999999.000000000"
    assert len(requests) == 2


async def test_page_limit_stops_pagination():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(
            200, json={"transactions": [api_transaction(calls)], "links": {"next": f"/next/{calls}"}}
        )

    client = MirrorNodeClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    transactions = await client.list_vault_transactions(VAULT, max_pages=2)
    await client.close()

    assert calls == 2
    assert len(transactions) == 2


async def test_http_errors_become_unavailable():
    client = MirrorNodeClient(
        base_url=BASE_URL, transport=httpx.MockTransport(lambda request: httpx.Response(503))
    )
    with pytest.raises(ExternalServiceUnavailableError):
        await client.list_vault_transactions(VAULT)
    await client.close()


async def test_get_transaction_returns_top_level_record():
    requests = []
    child = api_transaction(3, memo_text="child")
    child["nonce"] = 1
    parent = api_transaction(3)
    parent["nonce"] = 0

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"transactions": [child, parent]})

    client = MirrorNodeClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    tx = await client.get_transaction("0.0.1234-1700000000-000000003")
    await client.close()

    assert requests[0].url.path == "/api/v1/transactions/0.0.1234-1700000000-000000003"
    assert tx.memo == "111111111111111111"
    assert tx.received_by(VAULT) == [("HBAR", 300)]


async def test_get_transaction_unknown_id():
    client = MirrorNodeClient(
        base_url=BASE_URL, transport=httpx.MockTransport(lambda request: httpx.Response(404))
    )
    assert await client.get_transaction("0.0.1234-1700000000-000000009") is None
    await client.close()


async def test_get_transaction_outage_is_unavailable():
    client = MirrorNodeClient(
        base_url=BASE_URL, transport=httpx.MockTransport(lambda request: httpx.Response(503))
    )
    with pytest.raises(ExternalServiceUnavailableError):
        await client.get_transaction("0.0.1234-1700000000-000000009")
    await client.close()


async def test_token_info_is_cached():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={"name": "Sauce", "symbol": "SAUCE", "decimals": "6"})

    client = MirrorNodeClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    first = await client.get_token_info(TOKEN)
    second = await client.get_token_info(TOKEN)
    await client.close()

    assert calls == 1
    assert first == second
    assert first.display_name == "SAUCE"
    assert first.decimals == 6


async def test_token_info_falls_back_on_error():
    client = MirrorNodeClient(
        base_url=BASE_URL, transport=httpx.MockTransport(lambda request: httpx.Response(404))
    )
    info = await client.get_token_info(TOKEN)
    await client.close()

    assert info.display_name == TOKEN
    assert info.decimals == 0

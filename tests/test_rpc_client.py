from __future__ import annotations

import asyncio
import json
from decimal import Decimal

import httpx
import pytest
from solders.keypair import Keypair

from fakes import NATIVE, NATIVE_ACCOUNT, POOL_WALLET, TOKEN, TOKEN_ACCOUNT, rpc_result, system_transfer_ix
from poolsdk import CoinGeckoPriceFeed, PriceFeedError, RPCError, SolanaRPC, TransferFailed
from poolsdk.rpc_client import AccountSubscription, derive_ws_url


def _rpc(handler, keypair=None) -> SolanaRPC:
    def respond(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        result = handler(body["method"], body["params"])
        if isinstance(result, httpx.Response):
            return result
        if isinstance(result, RPCError):
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"],
                                             "error": {"code": result.code, "message": result.message}})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    client = httpx.AsyncClient(transport=httpx.MockTransport(respond))
    return SolanaRPC("http://node.test", keypair=keypair, client=client, confirm_poll_s=0)


def test_ws_url_is_derived_from_rpc_url() -> None:
    assert derive_ws_url("https://api.devnet.solana.com") == "wss://api.devnet.solana.com"
    assert derive_ws_url("http://127.0.0.1:8899") == "ws://127.0.0.1:8899"
    assert SolanaRPC("http://a", ws_url="ws://b").ws_url == "ws://b"


def test_native_and_token_balances() -> None:
    def handler(method, params):
        if method == "getBalance":
            return {"context": {"slot": 1}, "value": 1_500_000_000}
        if method == "getTokenAccountBalance":
            return {"context": {"slot": 1}, "value": {"amount": "2500000", "decimals": 6}}
        raise AssertionError(method)

    rpc = _rpc(handler)
    assert asyncio.run(rpc.get_balance(NATIVE_ACCOUNT)) == Decimal("1.5")
    assert asyncio.run(rpc.get_balance(TOKEN_ACCOUNT)) == Decimal("2.5")


def test_missing_token_account_has_zero_balance() -> None:
    rpc = _rpc(lambda method, params: RPCError(-32602, "Invalid param: could not find account"))
    assert asyncio.run(rpc.get_balance(TOKEN_ACCOUNT)) == Decimal(0)


def test_rpc_errors_and_http_failures_raise() -> None:
    with pytest.raises(RPCError) as excinfo:
        asyncio.run(_rpc(lambda method, params: RPCError(-32005, "Node is behind")).get_balance(NATIVE_ACCOUNT))
    assert excinfo.value.code == -32005

    with pytest.raises(RPCError) as excinfo:
        asyncio.run(_rpc(lambda method, params: httpx.Response(503)).get_balance(NATIVE_ACCOUNT))
    assert excinfo.value.code == -1


def test_notification_balance_parsing() -> None:
    assert SolanaRPC.balance_from_account_value(NATIVE_ACCOUNT, {"lamports": 2_000_000_000}) == Decimal("2")
    assert SolanaRPC.balance_from_account_value(NATIVE_ACCOUNT, None) == Decimal(0)

    parsed = {"data": {"parsed": {"info": {"tokenAmount": {"amount": "48000000", "decimals": 6}}}}}
    assert SolanaRPC.balance_from_account_value(TOKEN_ACCOUNT, parsed) == Decimal("48")
    assert SolanaRPC.balance_from_account_value(TOKEN_ACCOUNT, {"data": ["AAAA", "base64"]}) is None


def test_recent_transactions_skip_unfetchable_entries() -> None:
    def handler(method, params):
        if method == "getSignaturesForAddress":
            assert params[1]["limit"] == 3
            return [{"signature": "sig-a"}, {"signature": "sig-b"}, {"signature": "sig-c"}]
        if params[0] == "sig-a":
            return rpc_result([system_transfer_ix("Alice", POOL_WALLET, 10)])
        if params[0] == "sig-b":
            return RPCError(-32011, "Transaction history is not available")
        return None

    txs = asyncio.run(_rpc(handler).get_recent_transactions(POOL_WALLET, 3))

    assert [tx.signature for tx in txs] == ["sig-a"]
    assert txs[0].transfers[0].source == "Alice"


def test_submit_without_key_is_refused() -> None:
    rpc = _rpc(lambda method, params: None)
    with pytest.raises(RPCError):
        asyncio.run(rpc.submit_transfer("Alice", TOKEN, 1))


def test_confirmation_detects_failure_and_expiry() -> None:
    failed = _rpc(lambda method, params: {"value": [{"err": {"InstructionError": [0, "Custom"]},
                                                      "confirmationStatus": "confirmed"}]})
    with pytest.raises(TransferFailed) as excinfo:
        asyncio.run(failed.confirm_transfer("sig-1", last_valid_height=100))
    assert excinfo.value.kind == "failed"

    def expiring(method, params):
        if method == "getSignatureStatuses":
            return {"value": [None]}
        return 101

    with pytest.raises(TransferFailed) as excinfo:
        asyncio.run(_rpc(expiring).confirm_transfer("sig-2", last_valid_height=100))
    assert excinfo.value.kind == "timeout"
    assert excinfo.value.signature == "sig-2"


def test_confirmation_returns_once_confirmed() -> None:
    statuses = iter([{"value": [None]}, {"value": [{"err": None, "confirmationStatus": "confirmed"}]}])

    def handler(method, params):
        if method == "getSignatureStatuses":
            return next(statuses)
        return 50

    asyncio.run(_rpc(handler).confirm_transfer("sig-3", last_valid_height=100))


def test_failed_confirmation_query_after_send_reports_the_signature() -> None:
    def handler(method, params):
        if method == "getLatestBlockhash":
            return {"context": {"slot": 1},
                    "value": {"blockhash": "11111111111111111111111111111111", "lastValidBlockHeight": 100}}
        if method == "sendTransaction":
            return "SENT-SIG"
        return httpx.Response(429)

    rpc = _rpc(handler, keypair=Keypair())

    with pytest.raises(TransferFailed) as excinfo:
        asyncio.run(rpc.submit_transfer(str(Keypair().pubkey()), NATIVE, 1000))

    assert excinfo.value.kind == "unconfirmed"
    assert excinfo.value.signature == "SENT-SIG"


class _ScriptedSocket:
    """Stands in for a websocket connection that replays fixed messages."""

    def __init__(self, messages):
        self.messages = [json.dumps(m) for m in messages]

    def __aiter__(self):
        return self._replay()

    async def _replay(self):
        for message in self.messages:
            yield message


def _token_notification(data) -> dict:
    return {
        "jsonrpc": "2.0",
        "method": "accountNotification",
        "params": {"subscription": 7, "result": {"context": {"slot": 5}, "value": {"data": data}}},
    }


def test_notification_is_skipped_when_fallback_balance_query_fails() -> None:
    def handler(method, params):
        assert method == "getTokenAccountBalance"
        return RPCError(-32005, "Node is behind")

    sub = AccountSubscription(_rpc(handler), TOKEN_ACCOUNT)
    sub._ws = _ScriptedSocket([
        {"jsonrpc": "2.0", "result": 7, "id": 1},
        _token_notification(["AAAA", "base64"]),
        _token_notification({"parsed": {"info": {"tokenAmount": {"amount": "48000000", "decimals": 6}}}}),
    ])

    async def collect():
        return [balance async for balance, _ in sub]

    assert asyncio.run(collect()) == [Decimal("48")]


def _feed(handler) -> CoinGeckoPriceFeed:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CoinGeckoPriceFeed("https://coingecko.test/api/v3", client=client)


def test_price_feed_reads_simple_price() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(200, json={"solana": {"usd": 151.25}})

    assert asyncio.run(_feed(handler).fetch_fiat_price("SOL")) == Decimal("151.25")
    assert seen[0].path == "/api/v3/simple/price"
    assert seen[0].params["ids"] == "solana"
    assert seen[0].params["vs_currencies"] == "usd"


def test_price_feed_failures_raise_price_feed_error() -> None:
    with pytest.raises(PriceFeedError):
        asyncio.run(_feed(lambda request: httpx.Response(429)).fetch_fiat_price("SOL"))
    with pytest.raises(PriceFeedError):
        asyncio.run(_feed(lambda request: httpx.Response(200, json={})).fetch_fiat_price("SOL"))

# Copyright (c) 2025 The Pool Swap Watcher developers
# Distributed under the MIT software license

"""
Pool Swap SDK - RPC Client

Async JSON-RPC client for a Solana node: balance queries, account
subscriptions over WebSocket, parsed transaction history, and signed
transfer submission with confirmation.
"""

import asyncio
import base64
import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import httpx
import websockets
from websockets.exceptions import ConnectionClosed
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    get_associated_token_address,
    transfer_checked,
)
from spl.token.models import TransferCheckedParams

from .errors import TransferFailed
from .pool_types import AssetKind, MonitoredAccount, ParsedTransaction, utcnow

log = logging.getLogger(__name__)

CONFIRMED = ("confirmed", "finalized")


class RPCError(Exception):
    """RPC call failed."""
    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"RPC Error {code}: {message}")


def derive_ws_url(rpc_url: str) -> str:
    """https://host -> wss://host, http://host -> ws://host"""
    if rpc_url.startswith("https://"):
        return "wss://" + rpc_url[len("https://"):]
    if rpc_url.startswith("http://"):
        return "ws://" + rpc_url[len("http://"):]
    return rpc_url


def associated_token_address(owner: str, mint: str) -> str:
    """Associated token account of owner for mint."""
    return str(get_associated_token_address(Pubkey.from_string(owner), Pubkey.from_string(mint)))


class AccountSubscription:
    """
    Live accountSubscribe stream for one monitored account.

    Iterating yields (balance, timestamp) tuples until the provider closes
    the socket. No reconnect is attempted here.
    """

    def __init__(self, rpc: "SolanaRPC", account: MonitoredAccount):
        self._rpc = rpc
        self.account = account
        self.handle: Optional[int] = None
        self._ws = None

    async def open(self) -> "AccountSubscription":
        self._ws = await websockets.connect(self._rpc.ws_url, ping_interval=20)
        await self._ws.send(json.dumps({
            "jsonrpc": "2.0",
            "id": 1,
            "method": "accountSubscribe",
            "params": [
                self.account.address,
                {"encoding": "jsonParsed", "commitment": self._rpc.commitment},
            ],
        }))
        while self.handle is None:
            msg = json.loads(await self._ws.recv())
            if msg.get("id") != 1:
                continue
            if msg.get("error"):
                await self._ws.close()
                raise RPCError(msg["error"].get("code", -1), msg["error"].get("message", ""))
            self.handle = msg["result"]
        log.debug(f"Subscribed to {self.account.label} (subscription {self.handle})")
        return self

    def __aiter__(self):
        return self._notifications()

    async def _notifications(self):
        try:
            async for raw in self._ws:
                msg = json.loads(raw)
                if msg.get("method") != "accountNotification":
                    continue
                value = msg["params"]["result"]["value"]
                balance = self._rpc.balance_from_account_value(self.account, value)
                if balance is None:
                    try:
                        balance = await self._rpc.get_balance(self.account)
                    except RPCError as e:
                        log.warning(f"Skipping {self.account.label} notification, balance query failed: {e}")
                        continue
                yield balance, utcnow()
        except ConnectionClosed as e:
            log.warning(f"Subscription {self.handle} for {self.account.label} closed: {e}")

    async def close(self):
        if self._ws is None:
            return
        try:
            if self.handle is not None:
                await self._ws.send(json.dumps({
                    "jsonrpc": "2.0",
                    "id": 2,
                    "method": "accountUnsubscribe",
                    "params": [self.handle],
                }))
        except ConnectionClosed:
            pass  # already gone
        await self._ws.close()
        self._ws = None


class SolanaRPC:
    """
    JSON-RPC client for a Solana node.

    Usage:
        rpc = SolanaRPC("https://api.devnet.solana.com", keypair=keypair)
        balance = await rpc.get_balance(account)
        signature = await rpc.submit_transfer(owner, asset, raw_amount)
    """

    def __init__(self, rpc_url: str, ws_url: str = "",
                 keypair: Optional[Keypair] = None,
                 commitment: str = "confirmed",
                 timeout: float = 30.0,
                 confirm_poll_s: float = 1.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.url = rpc_url
        self.ws_url = ws_url or derive_ws_url(rpc_url)
        self.keypair = keypair
        self.commitment = commitment
        self.confirm_poll_s = confirm_poll_s
        self._id = 0
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        await self._client.aclose()

    async def _call(self, method: str, params: list = None) -> Any:
        """Make RPC call."""
        self._id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._id,
            "method": method,
            "params": params or [],
        }

        try:
            response = await self._client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise RPCError(-1, f"Connection failed: {e}")

        result = response.json()

        if "error" in result and result["error"]:
            raise RPCError(result["error"].get("code", -1), result["error"].get("message", ""))

        return result.get("result")

    @property
    def authority(self) -> Optional[str]:
        return str(self.keypair.pubkey()) if self.keypair else None

    # ═══════════════════════════════════════════════════════════════════════
    # BALANCES
    # ═══════════════════════════════════════════════════════════════════════

    async def get_balance(self, account: MonitoredAccount) -> Decimal:
        """SOL balance of a wallet, or token balance of a token account."""
        asset = account.asset
        opts = {"commitment": self.commitment}
        if asset.is_native:
            result = await self._call("getBalance", [account.address, opts])
            return asset.from_raw(result["value"])

        try:
            result = await self._call("getTokenAccountBalance", [account.address, opts])
        except RPCError as e:
            if "could not find account" in e.message.lower():
                # Token account not created yet
                log.info(f"No {asset.symbol} token account at {account.address}")
                return Decimal(0)
            raise
        return asset.from_raw(int(result["value"]["amount"]))

    @staticmethod
    def balance_from_account_value(account: MonitoredAccount,
                                   value: Optional[Dict[str, Any]]) -> Optional[Decimal]:
        """Balance carried by an accountNotification, or None if not parsed."""
        asset = account.asset
        if value is None:
            return Decimal(0)  # account closed
        if asset.is_native:
            return asset.from_raw(value.get("lamports", 0))
        data = value.get("data")
        if isinstance(data, dict):
            token_amount = data.get("parsed", {}).get("info", {}).get("tokenAmount")
            if token_amount:
                return asset.from_raw(int(token_amount["amount"]))
        return None

    async def subscribe(self, account: MonitoredAccount) -> AccountSubscription:
        return await AccountSubscription(self, account).open()

    # ═══════════════════════════════════════════════════════════════════════
    # HISTORY
    # ═══════════════════════════════════════════════════════════════════════

    async def get_recent_transactions(self, address: str, limit: int) -> List[ParsedTransaction]:
        """Most recent confirmed transactions touching address, newest first."""
        signatures = await self._call("getSignaturesForAddress", [
            address, {"limit": limit, "commitment": self.commitment},
        ])

        transactions = []
        for item in signatures or []:
            signature = item["signature"]
            try:
                result = await self._call("getTransaction", [signature, {
                    "encoding": "jsonParsed",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                }])
            except RPCError as e:
                log.error(f"Error fetching transaction {signature}: {e}")
                continue
            if not result:
                continue
            transactions.append(ParsedTransaction.from_rpc(signature, result))
        return transactions

    # ═══════════════════════════════════════════════════════════════════════
    # TRANSFERS
    # ═══════════════════════════════════════════════════════════════════════

    async def latest_blockhash(self) -> Tuple[Hash, int]:
        result = await self._call("getLatestBlockhash", [{"commitment": self.commitment}])
        value = result["value"]
        return Hash.from_string(value["blockhash"]), int(value["lastValidBlockHeight"])

    def build_transfer_instruction(self, destination_owner: str, asset: AssetKind, raw_amount: int):
        owner = self.keypair.pubkey()
        recipient = Pubkey.from_string(destination_owner)
        if asset.is_native:
            return transfer(TransferParams(
                from_pubkey=owner,
                to_pubkey=recipient,
                lamports=raw_amount,
            ))

        mint = Pubkey.from_string(asset.mint)
        return transfer_checked(TransferCheckedParams(
            program_id=TOKEN_PROGRAM_ID,
            source=get_associated_token_address(owner, mint),
            mint=mint,
            dest=get_associated_token_address(recipient, mint),
            owner=owner,
            amount=raw_amount,
            decimals=asset.decimals,
            signers=[],
        ))

    async def submit_transfer(self, destination_owner: str, asset: AssetKind, raw_amount: int) -> str:
        """
        Sign, send and confirm a transfer from the pool authority.

        Args:
            destination_owner: recipient wallet (token transfers go to its
                associated token account)
            asset: asset to send
            raw_amount: amount in base units

        Returns:
            Confirmed transaction signature
        """
        if self.keypair is None:
            raise RPCError(-1, "No signing key configured")

        instruction = self.build_transfer_instruction(destination_owner, asset, raw_amount)
        blockhash, last_valid_height = await self.latest_blockhash()
        tx = Transaction.new_signed_with_payer(
            [instruction], self.keypair.pubkey(), [self.keypair], blockhash
        )

        signature = await self._call("sendTransaction", [
            base64.b64encode(bytes(tx)).decode(),
            {"encoding": "base64", "preflightCommitment": self.commitment},
        ])
        log.info(f"Transfer sent: {signature}")

        try:
            await self.confirm_transfer(signature, last_valid_height)
        except RPCError as e:
            # Already broadcast; it may still land
            raise TransferFailed("unconfirmed", f"Confirmation check failed: {e}", signature) from e
        return signature

    async def confirm_transfer(self, signature: str, last_valid_height: int):
        """Poll until confirmed, failed, or the blockhash expires."""
        while True:
            result = await self._call("getSignatureStatuses", [
                [signature], {"searchTransactionHistory": False},
            ])
            status = (result or {}).get("value", [None])[0]
            if status:
                if status.get("err") is not None:
                    raise TransferFailed("failed", f"Transaction error {status['err']}", signature)
                if status.get("confirmationStatus") in CONFIRMED:
                    return

            height = await self._call("getBlockHeight", [{"commitment": self.commitment}])
            if int(height) > last_valid_height:
                raise TransferFailed("timeout", "Blockhash expired before confirmation", signature)

            await asyncio.sleep(self.confirm_poll_s)

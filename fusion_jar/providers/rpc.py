"""Minimal async EVM JSON-RPC client (balances, allowances, approval txs)."""

from __future__ import annotations

import asyncio
import itertools
import time
from typing import Any, Dict, List, Optional

import httpx

ERC20_BALANCE_OF_SELECTOR = "0x70a08231"  # balanceOf(address)
ERC20_ALLOWANCE_SELECTOR = "0xdd62ed3e"  # allowance(address,address)
ERC20_APPROVE_SELECTOR = "0x095ea7b3"  # approve(address,uint256)


class RpcError(Exception):
    """JSON-RPC transport or node error."""

    def __init__(self, message: str, code: Optional[int] = None, chain_id: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.chain_id = chain_id


class ReceiptTimeoutError(RpcError):
    pass


def _encode_uint256(value: int) -> str:
    """Encode a uint256 as a 32-byte hex string (without 0x prefix)."""
    return format(value, "064x")


def _encode_address(address: str) -> str:
    """Encode an address as a 32-byte hex string (without 0x prefix)."""
    return address.lower().replace("0x", "").zfill(64)


def encode_balance_of(owner: str) -> str:
    return ERC20_BALANCE_OF_SELECTOR + _encode_address(owner)


def encode_allowance(owner: str, spender: str) -> str:
    return ERC20_ALLOWANCE_SELECTOR + _encode_address(owner) + _encode_address(spender)


def encode_approve(spender: str, amount: int) -> str:
    return ERC20_APPROVE_SELECTOR + _encode_address(spender) + _encode_uint256(amount)


def _parse_quantity(value: Any) -> int:
    if value in (None, "", "0x"):
        return 0
    if isinstance(value, int):
        return value
    return int(str(value), 16)


class EvmRpcClient:
    """JSON-RPC over HTTP for one chain."""

    _ids = itertools.count(1)

    def __init__(
        self,
        rpc_url: str,
        *,
        chain_id: Optional[int] = None,
        timeout_s: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.timeout_s = timeout_s
        self._client = client

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        try:
            if self._client is not None:
                resp = await self._client.post(self.rpc_url, json=payload, timeout=self.timeout_s)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                    resp = await client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise RpcError(
                f"{method} failed with HTTP {exc.response.status_code}",
                code=exc.response.status_code,
                chain_id=self.chain_id,
            ) from exc
        except httpx.RequestError as exc:
            raise RpcError(f"{method} request failed: {exc}", chain_id=self.chain_id) from exc

        if data.get("error"):
            err = data["error"]
            raise RpcError(
                f"{method} error: {err.get('message', err)}",
                code=err.get("code"),
                chain_id=self.chain_id,
            )
        return data.get("result")

    async def eth_call(self, to: str, data: str) -> str:
        return await self.call("eth_call", [{"to": to, "data": data}, "latest"])

    async def erc20_balance(self, token: str, owner: str) -> int:
        return _parse_quantity(await self.eth_call(token, encode_balance_of(owner)))

    async def erc20_allowance(self, token: str, owner: str, spender: str) -> int:
        return _parse_quantity(await self.eth_call(token, encode_allowance(owner, spender)))

    async def gas_price(self) -> int:
        return _parse_quantity(await self.call("eth_gasPrice"))

    async def transaction_count(self, address: str) -> int:
        return _parse_quantity(await self.call("eth_getTransactionCount", [address, "pending"]))

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return _parse_quantity(await self.call("eth_estimateGas", [tx]))

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return await self.call("eth_sendRawTransaction", [raw_tx])

    async def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_receipt(
        self,
        tx_hash: str,
        *,
        timeout_s: float = 120.0,
        poll_interval_s: float = 2.0,
    ) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout_s
        while True:
            receipt = await self.get_receipt(tx_hash)
            if receipt:
                return receipt
            if time.monotonic() >= deadline:
                raise ReceiptTimeoutError(
                    f"No receipt for {tx_hash} after {timeout_s:.0f}s",
                    chain_id=self.chain_id,
                )
            await asyncio.sleep(poll_interval_s)


def receipt_succeeded(receipt: Dict[str, Any]) -> bool:
    return _parse_quantity(receipt.get("status", "0x1")) == 1

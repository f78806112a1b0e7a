"""Async client for the 1inch Fusion (same-chain) and Fusion+ (cross-chain) APIs.

Response shapes differ between the two products and between API versions;
they are resolved here, once, into ``SameChainQuote`` / ``CrossChainQuote``
and ``OrderStatusSnapshot`` so nothing downstream inspects raw payloads.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import settings
from ..core.errors import CrossChainUnavailableError, NetworkError, RateLimitError
from ..core.errors import TimeoutError as ProviderTimeoutError
from ..core.investments.models import (
    AuctionPreset,
    CrossChainQuote,
    OrderFill,
    OrderStatus,
    OrderStatusSnapshot,
    PreparedOrder,
    SameChainQuote,
)

logger = logging.getLogger(__name__)

FUSION_QUOTER = "/fusion/quoter/v2.0"
FUSION_RELAYER = "/fusion/relayer/v2.0"
FUSION_ORDERS = "/fusion/orders/v2.0"
FUSION_PLUS_QUOTER = "/fusion-plus/quoter/v1.0"
FUSION_PLUS_RELAYER = "/fusion-plus/relayer/v1.0"
FUSION_PLUS_ORDERS = "/fusion-plus/orders/v1.0"

# Relayer statuses (Fusion uses kebab-case, Fusion+ its own set)
_STATUS_MAP: Dict[str, OrderStatus] = {
    "pending": OrderStatus.PENDING,
    "partially-filled": OrderStatus.PARTIALLY_FILLED,
    "partiallyfilled": OrderStatus.PARTIALLY_FILLED,
    "filled": OrderStatus.FILLED,
    "executed": OrderStatus.FILLED,
    "expired": OrderStatus.EXPIRED,
    "refunded": OrderStatus.EXPIRED,
    "refunding": OrderStatus.PENDING,
    "cancelled": OrderStatus.CANCELLED,
    "canceled": OrderStatus.CANCELLED,
    "false-predicate": OrderStatus.CANCELLED,
    "not-enough-balance-or-allowance": OrderStatus.CANCELLED,
    "wrong-permit": OrderStatus.CANCELLED,
    "invalid-signature": OrderStatus.CANCELLED,
}


class FusionAPIError(Exception):
    """Non-2xx response or malformed payload from the 1inch API."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


def normalize_order_status(value: Optional[str]) -> OrderStatus:
    if not value:
        return OrderStatus.PENDING
    return _STATUS_MAP.get(str(value).strip().lower(), OrderStatus.PENDING)


def _recommended_preset(data: Dict[str, Any]) -> AuctionPreset:
    presets = data.get("presets") or {}
    name = data.get("recommended_preset") or data.get("recommendedPreset") or "fast"
    preset = presets.get(name) or next(iter(presets.values()), None)
    if preset is None:
        raise FusionAPIError("Quote response has no auction presets", payload=data)
    return AuctionPreset.from_payload(preset)


def _address_value(value: Any) -> str:
    # SDK-era payloads wrap addresses as {"val": "0x..."}
    if isinstance(value, dict):
        value = value.get("val")
    return str(value or "")


def parse_same_chain_quote(data: Dict[str, Any], chain_id: int, from_token: str, to_token: str) -> SameChainQuote:
    settlement = _address_value(data.get("settlementAddress"))
    if not settlement:
        raise FusionAPIError("Quote response missing settlementAddress", payload=data)
    return SameChainQuote(
        quote_id=str(data.get("quoteId") or ""),
        chain_id=chain_id,
        from_token=from_token,
        to_token=to_token,
        from_amount=int(data.get("fromTokenAmount", 0)),
        to_amount=int(data.get("toTokenAmount", 0)),
        settlement_address=settlement,
        preset=_recommended_preset(data),
        whitelist=tuple(data.get("whitelist") or ()),
        fee_usd=_fee_usd(data),
    )


def parse_cross_chain_quote(
    data: Dict[str, Any],
    src_chain_id: int,
    dst_chain_id: int,
    from_token: str,
    to_token: str,
) -> CrossChainQuote:
    src_factory = _address_value(data.get("srcEscrowFactory"))
    if not src_factory:
        raise CrossChainUnavailableError("Fusion+ quote has no source escrow factory")
    time_locks = data.get("timeLocks") or {}
    return CrossChainQuote(
        quote_id=str(data.get("quoteId") or ""),
        src_chain_id=src_chain_id,
        dst_chain_id=dst_chain_id,
        from_token=from_token,
        to_token=to_token,
        from_amount=int(data.get("srcTokenAmount", 0)),
        to_amount=int(data.get("dstTokenAmount", 0)),
        src_escrow_factory=src_factory,
        dst_escrow_factory=_address_value(data.get("dstEscrowFactory")),
        preset=_recommended_preset(data),
        time_locks={k: int(v) for k, v in time_locks.items()},
        src_safety_deposit=int(data.get("srcSafetyDeposit", 0)),
        dst_safety_deposit=int(data.get("dstSafetyDeposit", 0)),
        whitelist=tuple(data.get("whitelist") or ()),
        fee_usd=_fee_usd(data),
    )


def _fee_usd(data: Dict[str, Any]) -> Optional[str]:
    prices = data.get("prices") or {}
    volume = data.get("volume") or {}
    fee = data.get("feeUsd") or data.get("fee_usd")
    if fee is not None:
        return str(fee)
    if prices.get("usd") and volume.get("usd"):
        src_usd = volume["usd"].get("srcToken") or volume["usd"].get("fromToken")
        dst_usd = volume["usd"].get("dstToken") or volume["usd"].get("toToken")
        if src_usd is not None and dst_usd is not None:
            try:
                return str(max(float(src_usd) - float(dst_usd), 0.0))
            except (TypeError, ValueError):
                return None
    return None


def parse_status(data: Dict[str, Any]) -> OrderStatusSnapshot:
    fills: List[OrderFill] = []
    for fill in data.get("fills") or []:
        fills.append(
            OrderFill(
                tx_hash=fill.get("txHash"),
                filled_maker_amount=fill.get("filledMakerAmount"),
                filled_taker_amount=fill.get("filledAuctionTakerAmount") or fill.get("dstTokenAmount"),
                resolver=fill.get("resolver") or fill.get("taker"),
            )
        )
    return OrderStatusSnapshot(status=normalize_order_status(data.get("status")), fills=fills, raw=data)


class FusionProvider:
    """Thin wrapper around https://api.1inch.dev Fusion and Fusion+ endpoints."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        source: Optional[str] = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.one_inch_api_key
        self.base_url = (base_url or settings.one_inch_base_url).rstrip("/")
        self.timeout_s = timeout_s or settings.request_timeout_seconds
        self.source = source or settings.swap_source

    def _headers(self) -> Dict[str, str]:
        return {
            "accept": "application/json",
            "content-type": "application/json",
            "authorization": f"Bearer {self.api_key}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_s) as client:
                response = await client.request(method, path, params=params, json=json, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(f"{method} {path} timed out", provider="1inch") from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}", provider="1inch") from exc
        if response.status_code == 429:
            raise RateLimitError("1inch API rate limit exceeded", retry_after=60.0, provider="1inch")
        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
            description = payload.get("description") if isinstance(payload, dict) else None
            raise FusionAPIError(
                f"{method} {path} failed ({response.status_code}): {description or payload}",
                status_code=response.status_code,
                payload=payload,
            )
        if not response.content:
            return {}
        return response.json()

    async def ready(self) -> bool:
        return bool(self.api_key)

    # ---------------------------
    # Fusion (same chain)
    # ---------------------------
    async def get_quote(
        self,
        chain_id: int,
        from_token: str,
        to_token: str,
        amount: int,
        wallet_address: str,
    ) -> SameChainQuote:
        params = {
            "fromTokenAddress": from_token,
            "toTokenAddress": to_token,
            "amount": str(amount),
            "walletAddress": wallet_address,
            "enableEstimate": "true",
            "source": self.source,
        }
        data = await self._request("GET", f"{FUSION_QUOTER}/{chain_id}/quote/receive", params=params)
        return parse_same_chain_quote(data, chain_id, from_token, to_token)

    async def submit_order(self, order: PreparedOrder) -> str:
        body = {
            "order": order.order,
            "signature": order.signature,
            "extension": order.extension,
            "quoteId": order.quote_id,
        }
        await self._request("POST", f"{FUSION_RELAYER}/{order.chain_id}/order/submit", json=body)
        return order.order_hash

    async def get_order_status(self, chain_id: int, order_hash: str) -> OrderStatusSnapshot:
        data = await self._request("GET", f"{FUSION_ORDERS}/{chain_id}/order/status/{order_hash}")
        return parse_status(data)

    # ---------------------------
    # Fusion+ (cross chain)
    # ---------------------------
    async def get_cross_chain_quote(
        self,
        src_chain_id: int,
        dst_chain_id: int,
        from_token: str,
        to_token: str,
        amount: int,
        wallet_address: str,
    ) -> CrossChainQuote:
        params = {
            "srcChain": src_chain_id,
            "dstChain": dst_chain_id,
            "srcTokenAddress": from_token,
            "dstTokenAddress": to_token,
            "amount": str(amount),
            "walletAddress": wallet_address,
            "enableEstimate": "true",
            "source": self.source,
        }
        try:
            data = await self._request("GET", f"{FUSION_PLUS_QUOTER}/quote/receive", params=params)
        except FusionAPIError as exc:
            if exc.status_code in (400, 404, 405, 501):
                raise CrossChainUnavailableError(f"Fusion+ route unavailable: {exc}") from exc
            raise
        return parse_cross_chain_quote(data, src_chain_id, dst_chain_id, from_token, to_token)

    async def submit_cross_chain_order(self, order: PreparedOrder) -> str:
        body = {
            "order": order.order,
            "srcChainId": order.chain_id,
            "signature": order.signature,
            "extension": order.extension,
            "quoteId": order.quote_id,
            "secretHashes": order.secret_hashes if len(order.secret_hashes) > 1 else None,
        }
        await self._request("POST", f"{FUSION_PLUS_RELAYER}/submit", json=body)
        return order.order_hash

    async def get_cross_chain_status(self, order_hash: str) -> OrderStatusSnapshot:
        data = await self._request("GET", f"{FUSION_PLUS_ORDERS}/order/status/{order_hash}")
        return parse_status(data)

    async def get_ready_secret_fills(self, order_hash: str) -> List[int]:
        data = await self._request("GET", f"{FUSION_PLUS_ORDERS}/order/ready-to-accept-secret-fills/{order_hash}")
        return [int(f.get("idx", 0)) for f in (data.get("fills") or [])]

    async def submit_secret(self, order_hash: str, secret: str) -> None:
        await self._request(
            "POST",
            f"{FUSION_PLUS_RELAYER}/submit/secret",
            json={"orderHash": order_hash, "secret": secret},
        )

    async def health_check(self) -> Dict[str, Any]:
        if not self.api_key:
            return {"status": "unavailable", "reason": "ONE_INCH_API_KEY not set"}
        return {"status": "healthy", "base_url": self.base_url}

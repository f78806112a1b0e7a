"""
Tests for the 1inch Fusion / Fusion+ provider

Payload parsing is tested directly; request building and error mapping go
through an httpx MockTransport.
"""

import json
import pytest
from unittest.mock import patch

import httpx

from fusion_jar.core.errors import CrossChainUnavailableError, RateLimitError
from fusion_jar.core.investments.models import OrderStatus, PreparedOrder
from fusion_jar.providers.fusion import (
    FusionAPIError,
    FusionProvider,
    normalize_order_status,
    parse_cross_chain_quote,
    parse_same_chain_quote,
    parse_status,
)

USDC_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
WETH_BASE = "0x4200000000000000000000000000000000000006"
WALLET = "0x1234567890123456789012345678901234567890"

PRESET = {
    "auctionDuration": 180,
    "startAuctionIn": 12,
    "initialRateBump": 50000,
    "auctionStartAmount": "10100",
    "auctionEndAmount": "9900",
    "points": [{"delay": 60, "coefficient": 20000}],
    "gasCost": {"gasBumpEstimate": 10, "gasPriceEstimate": "1000"},
}

SAME_CHAIN_QUOTE = {
    "quoteId": "q-1",
    "fromTokenAmount": "25000000",
    "toTokenAmount": "10000",
    "settlementAddress": "0xfb2809a5314473e1165f6b58018e20ed8f07b840",
    "recommended_preset": "fast",
    "presets": {"fast": PRESET, "slow": {**PRESET, "auctionDuration": 600}},
    "whitelist": ["0x" + "ab" * 20],
    "volume": {"usd": {"fromToken": "25.00", "toToken": "24.88"}},
    "prices": {"usd": {"fromToken": "1", "toToken": "2500"}},
}

CROSS_CHAIN_QUOTE = {
    "quoteId": "q-2",
    "srcTokenAmount": "25000000",
    "dstTokenAmount": "9800",
    "srcEscrowFactory": "0xa7bcb4eac8964306f9e3764f67db6a7af6ddf99a",
    "dstEscrowFactory": "0xa7bcb4eac8964306f9e3764f67db6a7af6ddf99a",
    "recommendedPreset": "fast",
    "presets": {"fast": {**PRESET, "secretsCount": 3}},
    "timeLocks": {"srcWithdrawal": "10", "dstWithdrawal": "20"},
    "srcSafetyDeposit": "1000",
    "dstSafetyDeposit": "2000",
}


def _provider_with(handler):
    """FusionProvider whose httpx client routes through ``handler``."""
    real_client = httpx.AsyncClient

    def make_client(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    provider = FusionProvider(api_key="test-key", base_url="https://api.1inch.test", timeout_s=5, source="test")
    return provider, patch("fusion_jar.providers.fusion.httpx.AsyncClient", side_effect=make_client)


# =============================================================================
# Parsing
# =============================================================================


class TestQuoteParsing:
    """Tests for quote payload parsing."""

    def test_same_chain_quote(self):
        quote = parse_same_chain_quote(SAME_CHAIN_QUOTE, 8453, USDC_BASE, WETH_BASE)

        assert quote.quote_id == "q-1"
        assert quote.from_amount == 25_000_000
        assert quote.to_amount == 10_000
        assert quote.approval_target == "0xfb2809a5314473e1165f6b58018e20ed8f07b840"
        assert quote.preset.auction_duration == 180
        assert quote.preset.auction_end_amount == 9900
        assert quote.preset.points[0].coefficient == 20000
        assert quote.preset.gas_price_estimate == 1000
        assert quote.whitelist == ("0x" + "ab" * 20,)
        assert float(quote.fee_usd) == pytest.approx(0.12)

    def test_settlement_address_wrapped_value(self):
        data = {**SAME_CHAIN_QUOTE, "settlementAddress": {"val": "0x" + "cd" * 20}}
        quote = parse_same_chain_quote(data, 8453, USDC_BASE, WETH_BASE)
        assert quote.settlement_address == "0x" + "cd" * 20

    def test_missing_settlement_address(self):
        data = {k: v for k, v in SAME_CHAIN_QUOTE.items() if k != "settlementAddress"}
        with pytest.raises(FusionAPIError):
            parse_same_chain_quote(data, 8453, USDC_BASE, WETH_BASE)

    def test_missing_presets(self):
        data = {**SAME_CHAIN_QUOTE, "presets": {}}
        with pytest.raises(FusionAPIError):
            parse_same_chain_quote(data, 8453, USDC_BASE, WETH_BASE)

    def test_cross_chain_quote(self):
        quote = parse_cross_chain_quote(CROSS_CHAIN_QUOTE, 1, 8453, USDC_BASE, WETH_BASE)

        assert quote.src_chain_id == 1
        assert quote.dst_chain_id == 8453
        assert quote.chain_id == 1
        assert quote.approval_target == "0xa7bcb4eac8964306f9e3764f67db6a7af6ddf99a"
        assert quote.preset.secrets_count == 3
        assert quote.time_locks == {"srcWithdrawal": 10, "dstWithdrawal": 20}
        assert quote.src_safety_deposit == 1000

    def test_cross_chain_quote_without_factory_is_unavailable(self):
        data = {k: v for k, v in CROSS_CHAIN_QUOTE.items() if k != "srcEscrowFactory"}
        with pytest.raises(CrossChainUnavailableError):
            parse_cross_chain_quote(data, 1, 8453, USDC_BASE, WETH_BASE)


class TestStatusParsing:
    """Tests for order status normalisation."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("pending", OrderStatus.PENDING),
            ("partially-filled", OrderStatus.PARTIALLY_FILLED),
            ("filled", OrderStatus.FILLED),
            ("executed", OrderStatus.FILLED),
            ("expired", OrderStatus.EXPIRED),
            ("refunded", OrderStatus.EXPIRED),
            ("cancelled", OrderStatus.CANCELLED),
            ("false-predicate", OrderStatus.CANCELLED),
            ("Filled", OrderStatus.FILLED),
            ("something-new", OrderStatus.PENDING),
            (None, OrderStatus.PENDING),
        ],
    )
    def test_normalize_order_status(self, raw, expected):
        assert normalize_order_status(raw) is expected

    def test_parse_fills(self):
        snapshot = parse_status({
            "status": "filled",
            "fills": [
                {"txHash": "0xa", "filledMakerAmount": "10", "filledAuctionTakerAmount": "4", "taker": "0xr"},
                {"txHash": "0xb", "filledMakerAmount": "15", "dstTokenAmount": "6", "resolver": "0xs"},
            ],
        })

        assert snapshot.status is OrderStatus.FILLED
        assert [f.tx_hash for f in snapshot.fills] == ["0xa", "0xb"]
        assert snapshot.fills[0].resolver == "0xr"
        assert snapshot.fills[1].filled_taker_amount == "6"


# =============================================================================
# HTTP
# =============================================================================


class TestRequests:
    """Tests for request building and HTTP error mapping."""

    @pytest.mark.asyncio
    async def test_get_quote_request(self):
        seen = {}

        def handler(request):
            seen["url"] = request.url
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json=SAME_CHAIN_QUOTE)

        provider, patcher = _provider_with(handler)
        with patcher:
            quote = await provider.get_quote(8453, USDC_BASE, WETH_BASE, 25_000_000, WALLET)

        assert quote.chain_id == 8453
        assert seen["url"].path == "/fusion/quoter/v2.0/8453/quote/receive"
        assert seen["url"].params["amount"] == "25000000"
        assert seen["url"].params["walletAddress"] == WALLET
        assert seen["url"].params["source"] == "test"
        assert seen["auth"] == "Bearer test-key"

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        provider, patcher = _provider_with(lambda request: httpx.Response(429, json={}))
        with patcher, pytest.raises(RateLimitError):
            await provider.get_order_status(8453, "0xorder")

    @pytest.mark.asyncio
    async def test_error_description_is_surfaced(self):
        provider, patcher = _provider_with(
            lambda request: httpx.Response(400, json={"description": "insufficient liquidity"})
        )
        with patcher, pytest.raises(FusionAPIError) as exc_info:
            await provider.get_quote(8453, USDC_BASE, WETH_BASE, 1, WALLET)

        assert exc_info.value.status_code == 400
        assert "insufficient liquidity" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_cross_chain_route_missing(self):
        provider, patcher = _provider_with(lambda request: httpx.Response(404, json={"description": "no route"}))
        with patcher, pytest.raises(CrossChainUnavailableError):
            await provider.get_cross_chain_quote(1, 8453, USDC_BASE, WETH_BASE, 1, WALLET)

    @pytest.mark.asyncio
    async def test_cross_chain_server_error_is_not_unavailable(self):
        provider, patcher = _provider_with(lambda request: httpx.Response(500, text="oops"))
        with patcher, pytest.raises(FusionAPIError) as exc_info:
            await provider.get_cross_chain_quote(1, 8453, USDC_BASE, WETH_BASE, 1, WALLET)
        assert not isinstance(exc_info.value, CrossChainUnavailableError)

    @pytest.mark.asyncio
    async def test_submit_cross_chain_order_body(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(201)

        order = PreparedOrder(
            order_hash="0xorder",
            quote_id="q-2",
            order={"salt": "1"},
            signature="0xsig",
            extension="0xext",
            chain_id=1,
            secrets=["0x01", "0x02"],
            secret_hashes=["0xh1", "0xh2"],
        )
        provider, patcher = _provider_with(handler)
        with patcher:
            order_hash = await provider.submit_cross_chain_order(order)

        assert order_hash == "0xorder"
        assert seen["path"] == "/fusion-plus/relayer/v1.0/submit"
        assert seen["body"]["srcChainId"] == 1
        assert seen["body"]["secretHashes"] == ["0xh1", "0xh2"]
        assert seen["body"]["quoteId"] == "q-2"

    @pytest.mark.asyncio
    async def test_ready_secret_fills(self):
        provider, patcher = _provider_with(
            lambda request: httpx.Response(200, json={"fills": [{"idx": 0}, {"idx": 2}]})
        )
        with patcher:
            assert await provider.get_ready_secret_fills("0xorder") == [0, 2]


@pytest.mark.asyncio
async def test_health_check_without_key():
    provider = FusionProvider(api_key="", base_url="https://api.1inch.test")
    health = await provider.health_check()
    assert health["status"] == "unavailable"
    assert await provider.ready() is False

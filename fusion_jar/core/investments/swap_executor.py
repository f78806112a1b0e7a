"""
Swap Executor

Runs one purchase through the 1inch aggregator:

1. Quote (Fusion on the source chain, or Fusion+ across chains)
2. Ensure the USDC allowance for the contract named by the quote
3. Build and sign the order, hand its hash to the caller, submit it
4. Poll the relayer until the order is terminal or the deadline passes

``execute`` never raises; every failure comes back as
``SwapResult(success=False)``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from eth_utils import to_checksum_address

from ...config import settings
from ...logging_config import get_event_logger
from ...providers.fusion import FusionAPIError, FusionProvider
from ...providers.rpc import EvmRpcClient, encode_approve, receipt_succeeded
from ..chains import ChainConfig
from ..errors import (
    ApprovalError,
    CrossChainUnavailableError,
    OrderRejectedError,
    SwapError,
    TransactionRevertedError,
    classify_error,
)
from .models import (
    OrderPollResult,
    OrderStatus,
    OrderStatusSnapshot,
    PollOutcome,
    PreparedOrder,
    Quote,
    SwapMode,
    SwapParams,
    SwapResult,
)
from .orders import OrderBuilder
from .selection import resolve_swap_mode

logger = logging.getLogger(__name__)
_slog = get_event_logger("investments.swap_executor")

OrderSignedCallback = Callable[[str, SwapMode], Awaitable[Any]]
StatusFetcher = Callable[[], Awaitable[OrderStatusSnapshot]]
PendingHook = Callable[[OrderStatusSnapshot], Awaitable[None]]

_OUTCOMES = {
    OrderStatus.FILLED: PollOutcome.FILLED,
    OrderStatus.EXPIRED: PollOutcome.EXPIRED,
    OrderStatus.CANCELLED: PollOutcome.CANCELLED,
}


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Human amount to smallest units, floored."""
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


class _Attempt:
    """Mutable trace of how far an execution got, for failure reporting."""

    def __init__(self, mode: SwapMode) -> None:
        self.mode = mode
        self.order_hash: Optional[str] = None


class SwapExecutor:
    """
    Executes swaps for the orchestrator.

    Example:
        executor = SwapExecutor(FusionProvider(), load_chain_configs())
        result = await executor.execute(params)
    """

    def __init__(
        self,
        fusion: FusionProvider,
        chains: Dict[int, ChainConfig],
        *,
        rpc_factory: Optional[Callable[[ChainConfig], EvmRpcClient]] = None,
        order_builder: Optional[OrderBuilder] = None,
        poll_interval_s: Optional[float] = None,
        order_timeout_s: Optional[float] = None,
        enable_cross_chain: Optional[bool] = None,
        approval_amount_usd: Optional[Decimal] = None,
        receipt_timeout_s: Optional[float] = None,
        gas_multiplier: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fusion = fusion
        self._chains = chains
        self._rpc_factory = rpc_factory or (lambda c: EvmRpcClient(c.rpc_url, chain_id=c.chain_id))
        self._orders = order_builder or OrderBuilder()
        self._poll_interval = poll_interval_s if poll_interval_s is not None else settings.order_poll_interval_seconds
        self._order_timeout = order_timeout_s if order_timeout_s is not None else settings.order_timeout_seconds
        self._cross_chain_enabled = settings.enable_cross_chain if enable_cross_chain is None else enable_cross_chain
        self._approval_amount_usd = (
            approval_amount_usd if approval_amount_usd is not None else settings.approval_amount_usd
        )
        self._receipt_timeout = receipt_timeout_s or settings.approval_receipt_timeout_seconds
        self._gas_multiplier = gas_multiplier or settings.approval_gas_multiplier
        self._sleep = sleep
        self._clock = clock

    # =========================================================================
    # Entry points
    # =========================================================================

    async def execute(
        self,
        params: SwapParams,
        on_order_signed: Optional[OrderSignedCallback] = None,
    ) -> SwapResult:
        """
        Execute a swap end to end.

        Args:
            params: What to swap, for whom, with which signer
            on_order_signed: Awaited with (order_hash, mode) after signing and
                before submission

        Returns:
            SwapResult; ``mode`` is the mode actually used
        """
        requested = params.mode or resolve_swap_mode(params.source_chain, params.target_chain)
        attempt = _Attempt(requested)
        _start = time.perf_counter()

        _slog.info(
            "swap_started",
            source_chain=params.source_chain,
            target_chain=params.target_chain,
            target_token=params.target_token,
            amount_usd=str(params.amount_usd),
            mode=requested.value,
        )

        try:
            if params.signer is None:
                raise SwapError("No signing credential for wallet")
            if Decimal(str(params.amount_usd)) <= 0:
                raise SwapError(f"Invalid amount: {params.amount_usd}")

            if requested is SwapMode.CROSS_CHAIN:
                try:
                    result = await self._execute_cross_chain(params, attempt, on_order_signed)
                except CrossChainUnavailableError as exc:
                    logger.warning(
                        f"Cross-chain swap {params.source_chain}->{params.target_chain} unavailable "
                        f"({exc}); falling back to same-chain on {params.source_chain}"
                    )
                    _slog.warning(
                        "cross_chain_degraded",
                        source_chain=params.source_chain,
                        target_chain=params.target_chain,
                        reason=str(exc),
                    )
                    attempt.mode = SwapMode.SAME_CHAIN
                    result = await self._execute_same_chain(params, attempt, on_order_signed)
            else:
                result = await self._execute_same_chain(params, attempt, on_order_signed)

        except Exception as e:
            context = classify_error(e)
            logger.error(f"Swap failed on chain {params.source_chain} ({context.category.value}): {e}")
            result = SwapResult.failure(str(e) or type(e).__name__, mode=attempt.mode, order_hash=attempt.order_hash)

        _slog.info(
            "swap_finished",
            success=result.success,
            mode=result.mode.value if result.mode else None,
            order_hash=result.order_hash,
            error=result.error,
            duration_ms=round((time.perf_counter() - _start) * 1000, 2),
        )
        return result

    async def resume(self, order_hash: str, mode: SwapMode, chain_id: int) -> SwapResult:
        """Poll an order submitted by an earlier, interrupted attempt."""
        if mode is SwapMode.CROSS_CHAIN:
            fetch = lambda: self._fusion.get_cross_chain_status(order_hash)  # noqa: E731
        else:
            fetch = lambda: self._fusion.get_order_status(chain_id, order_hash)  # noqa: E731
        try:
            poll = await self.poll_order(fetch)
        except Exception as e:
            logger.error(f"Resuming order {order_hash} failed: {e}")
            return SwapResult.failure(str(e), mode=mode, order_hash=order_hash)
        return self._result_from_poll(poll, mode, order_hash, quote=None)

    # =========================================================================
    # Poll loop
    # =========================================================================

    async def poll_order(
        self,
        fetch_status: StatusFetcher,
        on_pending: Optional[PendingHook] = None,
    ) -> OrderPollResult:
        """
        Poll until Filled/Expired/Cancelled or the order timeout elapses.

        A poll that raises is logged and treated like a non-terminal status.
        """
        deadline = self._clock() + self._order_timeout
        polls = 0
        last: Optional[OrderStatusSnapshot] = None

        while True:
            polls += 1
            snapshot: Optional[OrderStatusSnapshot] = None
            try:
                snapshot = await fetch_status()
            except Exception as e:
                logger.warning(f"Order status poll {polls} failed: {e}")

            if snapshot is not None:
                last = snapshot
                outcome = _OUTCOMES.get(snapshot.status)
                if outcome is not None:
                    return OrderPollResult(outcome=outcome, polls=polls, snapshot=snapshot)
                if on_pending is not None:
                    await on_pending(snapshot)

            if self._clock() >= deadline:
                return OrderPollResult(outcome=PollOutcome.TIMEOUT, polls=polls, snapshot=last)
            await self._sleep(self._poll_interval)

    # =========================================================================
    # Same chain (Fusion)
    # =========================================================================

    async def _execute_same_chain(
        self,
        params: SwapParams,
        attempt: _Attempt,
        on_order_signed: Optional[OrderSignedCallback],
    ) -> SwapResult:
        chain = self._chain(params.source_chain)
        amount = to_base_units(params.amount_usd, chain.usdc_decimals)

        quote = await self._fusion.get_quote(
            chain.chain_id,
            chain.usdc_address,
            params.target_token,
            amount,
            params.user_address,
        )
        await self.ensure_allowance(chain, params, quote.approval_target, amount)

        order = self._orders.build(quote, params.user_address, params.signer, params.idempotency_key)
        attempt.order_hash = order.order_hash
        if on_order_signed is not None:
            await on_order_signed(order.order_hash, SwapMode.SAME_CHAIN)

        await self._submit(self._fusion.submit_order, order)
        logger.info(f"Submitted Fusion order {order.order_hash} on {chain.name}")

        poll = await self.poll_order(lambda: self._fusion.get_order_status(chain.chain_id, order.order_hash))
        return self._result_from_poll(poll, SwapMode.SAME_CHAIN, order.order_hash, quote)

    # =========================================================================
    # Cross chain (Fusion+)
    # =========================================================================

    async def _execute_cross_chain(
        self,
        params: SwapParams,
        attempt: _Attempt,
        on_order_signed: Optional[OrderSignedCallback],
    ) -> SwapResult:
        if not self._cross_chain_enabled:
            raise CrossChainUnavailableError("Cross-chain swaps are disabled")

        chain = self._chain(params.source_chain)
        amount = to_base_units(params.amount_usd, chain.usdc_decimals)

        quote = await self._fusion.get_cross_chain_quote(
            chain.chain_id,
            params.target_chain,
            chain.usdc_address,
            params.target_token,
            amount,
            params.user_address,
        )
        await self.ensure_allowance(chain, params, quote.approval_target, amount)

        order = self._orders.build(quote, params.user_address, params.signer, params.idempotency_key)
        attempt.order_hash = order.order_hash
        if on_order_signed is not None:
            await on_order_signed(order.order_hash, SwapMode.CROSS_CHAIN)

        await self._submit(self._fusion.submit_cross_chain_order, order)
        logger.info(
            f"Submitted Fusion+ order {order.order_hash} "
            f"{chain.name} -> chain {params.target_chain} ({len(order.secrets)} secrets)"
        )

        shared: Set[int] = set()

        async def share_secrets(_snapshot: OrderStatusSnapshot) -> None:
            await self._share_ready_secrets(order, shared)

        poll = await self.poll_order(
            lambda: self._fusion.get_cross_chain_status(order.order_hash),
            on_pending=share_secrets,
        )
        return self._result_from_poll(poll, SwapMode.CROSS_CHAIN, order.order_hash, quote)

    async def _submit(self, submit: Callable[[PreparedOrder], Awaitable[str]], order: PreparedOrder) -> None:
        try:
            await submit(order)
        except FusionAPIError as exc:
            if exc.status_code is not None and 400 <= exc.status_code < 500:
                raise OrderRejectedError(f"Relayer rejected order {order.order_hash}: {exc}") from exc
            raise

    async def _share_ready_secrets(self, order: PreparedOrder, shared: Set[int]) -> None:
        """Reveal secrets for fills whose escrows the relayer reports as ready."""
        try:
            ready = await self._fusion.get_ready_secret_fills(order.order_hash)
        except Exception as e:
            logger.warning(f"Could not fetch ready fills for {order.order_hash}: {e}")
            return
        for idx in ready:
            if idx in shared or idx >= len(order.secrets):
                continue
            try:
                await self._fusion.submit_secret(order.order_hash, order.secrets[idx])
            except Exception as e:
                logger.warning(f"Submitting secret {idx} for {order.order_hash} failed: {e}")
                continue
            shared.add(idx)
            logger.info(f"Shared secret {idx} for {order.order_hash}")

    # =========================================================================
    # Approval
    # =========================================================================

    async def ensure_allowance(
        self,
        chain: ChainConfig,
        params: SwapParams,
        spender: str,
        required: int,
    ) -> Optional[str]:
        """
        Approve ``spender`` when the current allowance is below ``required``.

        Grants the larger of the required amount and the configured approval
        amount, then waits for the receipt.

        Returns:
            Approval tx hash, or None when no approval was needed
        """
        rpc = self._rpc_factory(chain)
        owner = params.user_address
        current = await rpc.erc20_allowance(chain.usdc_address, owner, spender)
        if current >= required:
            return None

        approve_amount = max(required, to_base_units(self._approval_amount_usd, chain.usdc_decimals))
        data = encode_approve(spender, approve_amount)

        try:
            nonce = await rpc.transaction_count(owner)
            gas_price = await rpc.gas_price()
            gas_estimate = await rpc.estimate_gas({"from": owner, "to": chain.usdc_address, "data": data})
        except Exception as e:
            raise ApprovalError(f"Could not prepare approval on {chain.name}: {e}") from e

        tx = {
            "to": to_checksum_address(chain.usdc_address),
            "value": 0,
            "data": data,
            "nonce": nonce,
            "gas": int(gas_estimate * self._gas_multiplier),
            "gasPrice": gas_price,
            "chainId": chain.chain_id,
        }
        signed = params.signer.sign_transaction(tx)
        tx_hash = await rpc.send_raw_transaction("0x" + bytes(signed.raw_transaction).hex())
        logger.info(f"Approval {tx_hash} sent on {chain.name} for {approve_amount} units to {spender}")

        receipt = await rpc.wait_for_receipt(tx_hash, timeout_s=self._receipt_timeout)
        if not receipt_succeeded(receipt):
            raise TransactionRevertedError(
                f"Approval transaction {tx_hash} reverted",
                tx_hash=tx_hash,
                chain_id=chain.chain_id,
            )
        return tx_hash

    # =========================================================================
    # Helpers
    # =========================================================================

    def _chain(self, chain_id: int) -> ChainConfig:
        chain = self._chains.get(chain_id)
        if chain is None:
            raise SwapError(f"Chain {chain_id} is not configured")
        return chain

    def _result_from_poll(
        self,
        poll: OrderPollResult,
        mode: SwapMode,
        order_hash: str,
        quote: Optional[Quote],
    ) -> SwapResult:
        if not poll.filled:
            if poll.outcome is PollOutcome.TIMEOUT:
                error = f"Order {order_hash} not filled within {self._order_timeout:.0f}s"
            else:
                error = f"Order {order_hash} {poll.outcome.value}"
            return SwapResult.failure(error, mode=mode, order_hash=order_hash)

        fills = poll.snapshot.fills if poll.snapshot else []
        amount_in = _sum_amounts(f.filled_maker_amount for f in fills)
        amount_out = _sum_amounts(f.filled_taker_amount for f in fills)
        if amount_in is None and quote is not None:
            amount_in = str(quote.from_amount)
        if amount_out is None and quote is not None:
            amount_out = str(quote.to_amount)

        return SwapResult(
            success=True,
            mode=mode,
            order_hash=order_hash,
            transaction_hash=next((f.tx_hash for f in reversed(fills) if f.tx_hash), None),
            actual_amount_in=amount_in,
            actual_amount_out=amount_out,
            fee_paid=quote.fee_usd if quote is not None else None,
            resolver_address=next((f.resolver for f in fills if f.resolver), None),
        )


def _sum_amounts(values) -> Optional[str]:
    """Sum fill amounts; None when there are none or any is unreadable."""
    total = 0
    seen = False
    for value in values:
        if value in (None, ""):
            continue
        try:
            total += int(str(value))
        except ValueError:
            logger.warning(f"Unreadable fill amount {value!r}; falling back to quoted amounts")
            return None
        seen = True
    return str(total) if seen else None

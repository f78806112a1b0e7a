"""
Execution Orchestrator

One pass over the due intents: for each, check balances, choose the funding
chain and swap mode, run the swap and persist the outcome. Intents are
processed strictly one after another; a failure in one never stops the
batch. Only a configuration problem aborts a run, and it does so before any
intent is read.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from ...config import Settings, settings as default_settings
from ...db.supabase_client import SupabaseClient
from ...logging_config import bind_run_context, clear_run_context, get_event_logger
from ...providers.fusion import FusionProvider
from ..chains import ChainConfig, load_chain_configs
from ..errors import ConfigurationError, SwapError, classify_error
from .balances import BalanceInspector
from .keys import KeyStore
from .models import (
    ExecutionStatus,
    InvestmentExecution,
    InvestmentIntent,
    RunSummary,
    SwapMode,
    SwapParams,
    SwapResult,
    _iso,
    utcnow,
)
from .orders import idempotency_key
from .selection import resolve_swap_mode, select_source_chain
from .store import IntentStore
from .swap_executor import SwapExecutor

logger = logging.getLogger(__name__)
_slog = get_event_logger("investments.orchestrator")


class IntentOutcome(str, Enum):
    FULFILLED = "fulfilled"
    FAILED = "failed"
    SKIPPED = "skipped"
    RECOVERED = "recovered"


@dataclass
class IntentResult:
    intent_id: str
    outcome: IntentOutcome
    paused: bool = False
    error: Optional[str] = None


def validate_configuration(config: Optional[Settings] = None) -> Dict[int, ChainConfig]:
    """Check credentials and the chain table; returns the chain table."""
    config = config or default_settings
    missing = config.missing_credentials()
    if missing:
        raise ConfigurationError(
            f"Missing required configuration: {', '.join(missing)}",
            missing=missing,
        )
    return load_chain_configs(config)


class InvestmentOrchestrator:
    """
    Runs due investment intents.

    Example:
        orchestrator = InvestmentOrchestrator.from_settings()
        summary = await orchestrator.run(frequency="daily")
    """

    def __init__(
        self,
        *,
        store: IntentStore,
        balances: BalanceInspector,
        executor: SwapExecutor,
        keys: KeyStore,
        config: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._balances = balances
        self._executor = executor
        self._keys = keys
        self._config = config or default_settings
        self._sleep = sleep
        self._stop_requested = False

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> InvestmentOrchestrator:
        config = config or default_settings
        chains = validate_configuration(config)
        client = SupabaseClient(
            url=config.supabase_url,
            service_role_key=config.supabase_service_role_key,
            timeout=float(config.request_timeout_seconds),
        )
        fusion = FusionProvider(
            api_key=config.one_inch_api_key,
            base_url=config.one_inch_base_url,
            timeout_s=config.request_timeout_seconds,
            source=config.swap_source,
        )
        return cls(
            store=IntentStore(client, pause_threshold=config.failure_pause_threshold),
            balances=BalanceInspector(chains),
            executor=SwapExecutor(fusion, chains),
            keys=KeyStore(config.signing_private_key),
            config=config,
        )

    @property
    def store(self) -> IntentStore:
        return self._store

    def request_stop(self) -> None:
        """Finish the current intent, then stop the run."""
        self._stop_requested = True

    # =========================================================================
    # Run
    # =========================================================================

    async def run(self, frequency: Optional[str] = None) -> RunSummary:
        """
        Process every due intent once.

        A stop requested before the run starts ends it before the first
        intent; the request is cleared once the run returns.

        Args:
            frequency: Only process intents with this frequency

        Raises:
            ConfigurationError: credentials or chain table unusable
        """
        try:
            return await self._run_batch(frequency)
        finally:
            self._stop_requested = False

    async def _run_batch(self, frequency: Optional[str]) -> RunSummary:
        summary = RunSummary(run_id=uuid.uuid4().hex[:12], started_at=utcnow(), frequency=frequency)

        validate_configuration(self._config)

        bind_run_context(run_id=summary.run_id)
        _slog.info("investment_run_started", frequency=frequency)
        try:
            intents = await self._store.fetch_due_intents(frequency=frequency)
            summary.intents_found = len(intents)
            logger.info(f"Found {len(intents)} due intents")

            delay = self._config.inter_intent_delay_seconds
            for index, intent in enumerate(intents):
                if self._stop_requested:
                    summary.stopped_early = True
                    logger.info("Stop requested; ending run before next intent")
                    break
                if index > 0 and delay > 0:
                    await self._sleep(delay)

                result = await self.process_intent(intent)
                self._tally(summary, result)
        finally:
            summary.ended_at = utcnow()
            stats = await self._store.get_execution_stats(hours=24)
            _slog.info(
                "investment_run_completed",
                intents_found=summary.intents_found,
                fulfilled=summary.fulfilled,
                failed=summary.failed,
                skipped=summary.skipped,
                recovered=summary.recovered,
                paused=summary.paused,
                stopped_early=summary.stopped_early,
                duration_s=round(summary.duration_seconds, 2),
                stats_24h=stats,
            )
            clear_run_context()
        return summary

    @staticmethod
    def _tally(summary: RunSummary, result: IntentResult) -> None:
        if result.outcome is IntentOutcome.FULFILLED:
            summary.fulfilled += 1
        elif result.outcome is IntentOutcome.SKIPPED:
            summary.skipped += 1
        elif result.outcome is IntentOutcome.RECOVERED:
            summary.recovered += 1
        else:
            summary.failed += 1
            if result.error:
                summary.errors.append(f"{result.intent_id}: {result.error}")
        if result.paused:
            summary.paused += 1

    # =========================================================================
    # Per intent
    # =========================================================================

    async def process_intent(self, intent: InvestmentIntent) -> IntentResult:
        """Process a single intent. Never raises."""
        bind_run_context(intent_id=intent.id)
        key = idempotency_key(intent.id, _iso(intent.next_execution))
        _slog.info(
            "intent_processing_started",
            jar=intent.label,
            user_address=intent.user_address,
            amount_usd=str(intent.amount),
            target_chain=intent.target_chain,
            frequency=intent.frequency,
        )

        execution: Optional[InvestmentExecution] = None
        try:
            prior = await self._store.find_execution_by_key(key)
            if prior is not None and prior.status is ExecutionStatus.FULFILLED:
                logger.info(f"Intent {intent.id} already fulfilled for this slot (execution {prior.id})")
                await self._store.advance_schedule(intent.id, intent.frequency, previous=intent.next_execution)
                return IntentResult(intent.id, IntentOutcome.RECOVERED)

            if prior is not None and prior.order_hash:
                execution = prior
                mode = prior.swap_mode or resolve_swap_mode(prior.source_chain, prior.target_chain)
                logger.info(f"Resuming order {prior.order_hash} from an interrupted run")
                result = await self._executor.resume(prior.order_hash, mode, prior.source_chain)
                return await self._finish(intent, execution, result)

            execution = InvestmentExecution.for_intent(intent, key)
            await self._store.record_execution(execution)

            signer = self._keys.signer_for(intent.user_address)
            if signer is None:
                raise SwapError(f"No signing credential available for {intent.user_address}")

            balances = await self._balances.get_balances(intent.user_address)
            source = select_source_chain(balances, intent.amount, intent.target_chain)
            if source is None:
                available = max((b.formatted_balance for b in balances), default=0)
                execution.status = ExecutionStatus.SKIPPED
                execution.error_message = (
                    f"Insufficient USDC balance: need {intent.amount}, largest chain balance {available}"
                )
                await self._store.complete_execution(execution)
                _slog.info("intent_skipped", reason="insufficient_balance", required=str(intent.amount))
                return IntentResult(intent.id, IntentOutcome.SKIPPED)

            mode = resolve_swap_mode(source.chain_id, intent.target_chain)
            execution.source_chain = source.chain_id
            execution.source_token = source.token_address
            params = SwapParams(
                source_chain=source.chain_id,
                target_chain=intent.target_chain,
                source_token=source.token_address,
                target_token=intent.target_token,
                amount_usd=intent.amount,
                user_address=intent.user_address,
                signer=signer,
                idempotency_key=key,
                mode=mode,
            )

            async def on_order_signed(order_hash: str, used_mode: SwapMode) -> None:
                await self._store.attach_order(execution, order_hash, used_mode)

            result = await self._executor.execute(params, on_order_signed=on_order_signed)
            return await self._finish(intent, execution, result)

        except Exception as e:
            context = classify_error(e)
            logger.error(f"Intent {intent.id} failed: {e}")
            _slog.error(
                "intent_failed",
                category=context.category.value,
                recoverable=context.recoverable,
                error=str(e),
            )
            if execution is None:
                execution = InvestmentExecution.for_intent(intent, key)
            execution.status = ExecutionStatus.FAILED
            execution.error_message = str(e) or type(e).__name__
            await self._store.complete_execution(execution)
            paused = await self._pause_check(intent)
            return IntentResult(intent.id, IntentOutcome.FAILED, paused=paused, error=execution.error_message)
        finally:
            clear_run_context("intent_id")

    async def _finish(
        self,
        intent: InvestmentIntent,
        execution: InvestmentExecution,
        result: SwapResult,
    ) -> IntentResult:
        execution.apply_swap_result(result)
        await self._store.complete_execution(execution)

        if result.success:
            next_execution = await self._store.advance_schedule(
                intent.id, intent.frequency, previous=intent.next_execution
            )
            _slog.info(
                "swap_completed",
                mode=result.mode.value if result.mode else None,
                order_hash=result.order_hash,
                tx_hash=result.transaction_hash,
                amount_out=result.actual_amount_out,
                next_execution=_iso(next_execution),
            )
            return IntentResult(intent.id, IntentOutcome.FULFILLED)

        _slog.warning(
            "swap_failed",
            mode=result.mode.value if result.mode else None,
            order_hash=result.order_hash,
            error=result.error,
        )
        paused = await self._pause_check(intent)
        return IntentResult(intent.id, IntentOutcome.FAILED, paused=paused, error=result.error)

    async def _pause_check(self, intent: InvestmentIntent) -> bool:
        paused = await self._store.maybe_pause(intent.id)
        if paused:
            _slog.warning("intent_paused", threshold=self._config.failure_pause_threshold)
        return paused

"""
Intent Store Accessor

Reads due intents and writes execution records on the Supabase tables
``investment_intents`` and ``investment_executions``. Every method logs and
swallows store errors so one bad row cannot stop a batch; callers see an
empty list, ``None`` or ``False`` instead.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ...config import settings
from ...db.supabase_client import SupabaseClient, SupabaseError, eq, gte, lte
from .models import (
    ExecutionStatus,
    IntentStatus,
    InvestmentExecution,
    InvestmentIntent,
    SwapMode,
    _iso,
    utcnow,
)
from .schedule import compute_next_execution

logger = logging.getLogger(__name__)

INTENTS_TABLE = "investment_intents"
EXECUTIONS_TABLE = "investment_executions"


class IntentStore:
    """Supabase-backed persistence for intents and executions."""

    def __init__(self, client: SupabaseClient, pause_threshold: Optional[int] = None) -> None:
        self._client = client
        self._pause_threshold = pause_threshold or settings.failure_pause_threshold

    async def close(self) -> None:
        await self._client.close()

    async def fetch_due_intents(
        self,
        now: Optional[datetime] = None,
        frequency: Optional[str] = None,
    ) -> List[InvestmentIntent]:
        """Active intents whose next_execution has passed, oldest first."""
        now = now or utcnow()
        filters = {
            "status": eq(IntentStatus.ACTIVE.value),
            "next_execution": lte(_iso(now)),
        }
        if frequency:
            filters["frequency"] = eq(frequency)

        try:
            rows = await self._client.select(INTENTS_TABLE, filters=filters, order="created_at.asc")
        except SupabaseError as e:
            logger.error(f"Failed to fetch due intents: {e}")
            return []

        intents: List[InvestmentIntent] = []
        for row in rows:
            try:
                intents.append(InvestmentIntent.from_row(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Skipping malformed intent row {row.get('id')}: {e}")
        return intents

    async def record_execution(self, execution: InvestmentExecution) -> Optional[str]:
        """Insert an execution row. Returns the new id, or None on failure."""
        try:
            row = await self._client.insert(EXECUTIONS_TABLE, execution.to_row())
        except SupabaseError as e:
            logger.error(f"Failed to record execution for intent {execution.intent_id}: {e}")
            return None
        execution.id = str(row["id"]) if row.get("id") is not None else None
        return execution.id

    async def complete_execution(self, execution: InvestmentExecution) -> bool:
        """Write the terminal state of an execution.

        Updates the write-ahead row in place; inserts when there is none.
        """
        if not execution.status.is_terminal:
            raise ValueError("complete_execution requires a terminal status")

        if execution.id is None:
            return await self.record_execution(execution) is not None

        values = execution.to_row()
        try:
            updated = await self._client.update(
                EXECUTIONS_TABLE,
                values,
                filters={"id": eq(execution.id), "status": eq(ExecutionStatus.PENDING.value)},
            )
        except SupabaseError as e:
            logger.error(f"Failed to complete execution {execution.id}: {e}")
            return False
        if not updated:
            logger.warning(f"Execution {execution.id} was already terminal; not overwritten")
            return False
        return True

    async def attach_order(self, execution: InvestmentExecution, order_hash: str, mode: SwapMode) -> bool:
        """Store the signed order hash on a pending row before submission."""
        execution.order_hash = order_hash
        execution.swap_mode = mode
        if execution.id is None:
            return False
        try:
            await self._client.update(
                EXECUTIONS_TABLE,
                {
                    "order_hash": order_hash,
                    "swap_mode": mode.value,
                    "source_chain": execution.source_chain,
                    "source_token": execution.source_token,
                },
                filters={"id": eq(execution.id), "status": eq(ExecutionStatus.PENDING.value)},
            )
        except SupabaseError as e:
            logger.error(f"Failed to attach order {order_hash} to execution {execution.id}: {e}")
            return False
        return True

    async def advance_schedule(
        self,
        intent_id: str,
        frequency: str,
        previous: Optional[datetime] = None,
    ) -> Optional[datetime]:
        """Move next_execution one period forward. Returns the new time."""
        next_execution = compute_next_execution(frequency, previous=previous)
        try:
            await self._client.update(
                INTENTS_TABLE,
                {"next_execution": _iso(next_execution), "updated_at": _iso(utcnow())},
                filters={"id": eq(intent_id)},
            )
        except SupabaseError as e:
            logger.error(f"Failed to advance schedule for intent {intent_id}: {e}")
            return None
        return next_execution

    async def maybe_pause(self, intent_id: str) -> bool:
        """Pause the intent if its most recent executions all failed."""
        threshold = self._pause_threshold
        try:
            rows = await self._client.select(
                EXECUTIONS_TABLE,
                columns="status",
                filters={"intent_id": eq(intent_id)},
                order="executed_at.desc",
                limit=threshold,
            )
        except SupabaseError as e:
            logger.error(f"Failed to read recent executions for intent {intent_id}: {e}")
            return False

        if len(rows) < threshold:
            return False
        if any(r.get("status") != ExecutionStatus.FAILED.value for r in rows[:threshold]):
            return False

        try:
            await self._client.update(
                INTENTS_TABLE,
                {"status": IntentStatus.PAUSED.value, "updated_at": _iso(utcnow())},
                filters={"id": eq(intent_id), "status": eq(IntentStatus.ACTIVE.value)},
            )
        except SupabaseError as e:
            logger.error(f"Failed to pause intent {intent_id}: {e}")
            return False
        logger.warning(f"Paused intent {intent_id} after {threshold} consecutive failures")
        return True

    async def find_execution_by_key(self, key: str) -> Optional[InvestmentExecution]:
        """
        Earlier attempt for the same schedule slot that still matters.

        A fulfilled row wins; otherwise a pending row that already has an
        order hash (submitted, outcome unknown). Failed and skipped attempts
        are ignored.
        """
        try:
            rows = await self._client.select(
                EXECUTIONS_TABLE,
                filters={"idempotency_key": eq(key)},
                order="executed_at.desc",
            )
        except SupabaseError as e:
            logger.error(f"Failed to look up executions for key {key}: {e}")
            return None

        executions = [InvestmentExecution.from_row(r) for r in rows]
        for execution in executions:
            if execution.status is ExecutionStatus.FULFILLED:
                return execution
        for execution in executions:
            if execution.status is ExecutionStatus.PENDING and execution.order_hash:
                return execution
        return None

    async def get_execution_stats(self, hours: int = 24) -> Dict[str, Any]:
        """Execution counts by status over the last ``hours``."""
        since = utcnow() - timedelta(hours=hours)
        stats: Dict[str, Any] = {
            "hours": hours,
            "total": 0,
            "successful": 0,
            "failed": 0,
            "pending": 0,
            "skipped": 0,
        }
        try:
            rows = await self._client.select(
                EXECUTIONS_TABLE,
                columns="status",
                filters={"executed_at": gte(_iso(since))},
            )
        except SupabaseError as e:
            logger.error(f"Failed to load execution stats: {e}")
            stats["error"] = str(e)
            return stats

        keys = {
            ExecutionStatus.FULFILLED.value: "successful",
            ExecutionStatus.FAILED.value: "failed",
            ExecutionStatus.PENDING.value: "pending",
            ExecutionStatus.SKIPPED.value: "skipped",
        }
        for row in rows:
            stats["total"] += 1
            key = keys.get(row.get("status"))
            if key:
                stats[key] += 1
        return stats

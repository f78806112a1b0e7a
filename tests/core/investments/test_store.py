"""
Tests for the Intent Store Accessor

The Supabase client is mocked; assertions check the PostgREST filters and
payloads the store sends.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

from fusion_jar.core.investments.models import (
    ExecutionStatus,
    InvestmentExecution,
    InvestmentIntent,
    SwapMode,
)
from fusion_jar.core.investments.store import EXECUTIONS_TABLE, INTENTS_TABLE, IntentStore
from fusion_jar.db.supabase_client import SupabaseMutationError, SupabaseQueryError


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_client():
    """Mock Supabase client."""
    return AsyncMock()


@pytest.fixture
def store(mock_client):
    return IntentStore(mock_client, pause_threshold=3)


@pytest.fixture
def intent_row():
    return {
        "id": "intent-1",
        "user_address": "0x1234567890123456789012345678901234567890",
        "source_token": "USDC",
        "source_chain": 8453,
        "target_token": "0x4200000000000000000000000000000000000006",
        "target_chain": 8453,
        "amount": "25",
        "frequency": "daily",
        "status": "active",
        "next_execution": "2026-03-01T09:00:00+00:00",
        "created_at": "2026-01-01T00:00:00Z",
        "jar_name": "ETH jar",
    }


@pytest.fixture
def execution():
    return InvestmentExecution(
        intent_id="intent-1",
        user_address="0x1234567890123456789012345678901234567890",
        source_token="USDC",
        source_chain=8453,
        target_token="0x4200000000000000000000000000000000000006",
        target_chain=8453,
        amount_usd=Decimal("25"),
        idempotency_key="0xabc",
    )


# =============================================================================
# fetch_due_intents
# =============================================================================


class TestFetchDueIntents:
    """Tests for fetch_due_intents."""

    @pytest.mark.asyncio
    async def test_filters_and_order(self, store, mock_client, intent_row):
        mock_client.select.return_value = [intent_row]
        now = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

        intents = await store.fetch_due_intents(now=now)

        mock_client.select.assert_awaited_once()
        args, kwargs = mock_client.select.call_args
        assert args[0] == INTENTS_TABLE
        assert kwargs["filters"]["status"] == "eq.active"
        assert kwargs["filters"]["next_execution"] == "lte.2026-03-01T10:00:00+00:00"
        assert "frequency" not in kwargs["filters"]
        assert kwargs["order"] == "created_at.asc"

        assert len(intents) == 1
        assert isinstance(intents[0], InvestmentIntent)
        assert intents[0].amount == Decimal("25")
        assert intents[0].label == "ETH jar"

    @pytest.mark.asyncio
    async def test_frequency_filter(self, store, mock_client):
        mock_client.select.return_value = []
        await store.fetch_due_intents(frequency="weekly")
        _, kwargs = mock_client.select.call_args
        assert kwargs["filters"]["frequency"] == "eq.weekly"

    @pytest.mark.asyncio
    async def test_store_error_returns_empty(self, store, mock_client):
        mock_client.select.side_effect = SupabaseQueryError("boom")
        assert await store.fetch_due_intents() == []

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, store, mock_client, intent_row):
        mock_client.select.return_value = [{"id": "broken"}, intent_row]
        intents = await store.fetch_due_intents()
        assert [i.id for i in intents] == ["intent-1"]


# =============================================================================
# Execution records
# =============================================================================


class TestExecutionRecords:
    """Tests for record_execution / complete_execution."""

    @pytest.mark.asyncio
    async def test_record_sets_id(self, store, mock_client, execution):
        mock_client.insert.return_value = {"id": 42}
        execution_id = await store.record_execution(execution)

        assert execution_id == "42"
        assert execution.id == "42"
        table, row = mock_client.insert.call_args.args
        assert table == EXECUTIONS_TABLE
        assert row["status"] == "pending"
        assert row["idempotency_key"] == "0xabc"

    def test_amount_is_sent_as_exact_decimal(self, execution):
        execution.amount_usd = Decimal("0.1") + Decimal("0.2")
        row = execution.to_row()
        assert row["amount_usd"] == "0.3"
        assert InvestmentExecution.from_row({**row, "id": 1}).amount_usd == Decimal("0.3")

    @pytest.mark.asyncio
    async def test_record_failure_returns_none(self, store, mock_client, execution):
        mock_client.insert.side_effect = SupabaseMutationError("down")
        assert await store.record_execution(execution) is None
        assert execution.id is None

    @pytest.mark.asyncio
    async def test_complete_updates_pending_row_in_place(self, store, mock_client, execution):
        execution.id = "42"
        execution.status = ExecutionStatus.FULFILLED
        mock_client.update.return_value = [{"id": "42"}]

        assert await store.complete_execution(execution) is True
        mock_client.insert.assert_not_called()
        table, values = mock_client.update.call_args.args
        filters = mock_client.update.call_args.kwargs["filters"]
        assert table == EXECUTIONS_TABLE
        assert values["status"] == "fulfilled"
        assert filters == {"id": "eq.42", "status": "eq.pending"}

    @pytest.mark.asyncio
    async def test_complete_without_id_inserts(self, store, mock_client, execution):
        execution.status = ExecutionStatus.SKIPPED
        mock_client.insert.return_value = {"id": "7"}

        assert await store.complete_execution(execution) is True
        row = mock_client.insert.call_args.args[1]
        assert row["status"] == "skipped"

    @pytest.mark.asyncio
    async def test_terminal_rows_are_not_overwritten(self, store, mock_client, execution):
        execution.id = "42"
        execution.status = ExecutionStatus.FAILED
        mock_client.update.return_value = []
        assert await store.complete_execution(execution) is False

    @pytest.mark.asyncio
    async def test_complete_requires_terminal_status(self, store, execution):
        with pytest.raises(ValueError):
            await store.complete_execution(execution)

    @pytest.mark.asyncio
    async def test_attach_order_persists_selected_source(self, store, mock_client, execution):
        execution.id = "42"
        execution.source_chain = 137
        execution.source_token = "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"
        assert await store.attach_order(execution, "0xorder", SwapMode.CROSS_CHAIN) is True
        values = mock_client.update.call_args.args[1]
        assert values == {
            "order_hash": "0xorder",
            "swap_mode": "cross_chain",
            "source_chain": 137,
            "source_token": "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
        }
        assert execution.order_hash == "0xorder"


# =============================================================================
# Schedule and pause
# =============================================================================


class TestAdvanceSchedule:
    """Tests for advance_schedule."""

    @pytest.mark.asyncio
    async def test_persists_next_execution(self, store, mock_client):
        before = datetime.now(timezone.utc)
        result = await store.advance_schedule("intent-1", "weekly")

        assert result >= before + timedelta(days=7)
        table, values = mock_client.update.call_args.args
        assert table == INTENTS_TABLE
        assert values["next_execution"] == result.isoformat()
        assert mock_client.update.call_args.kwargs["filters"] == {"id": "eq.intent-1"}

    @pytest.mark.asyncio
    async def test_never_moves_backwards(self, store, mock_client):
        previous = datetime.now(timezone.utc) + timedelta(days=30)
        result = await store.advance_schedule("intent-1", "daily", previous=previous)
        assert result > previous

    @pytest.mark.asyncio
    async def test_failure_returns_none(self, store, mock_client):
        mock_client.update.side_effect = SupabaseMutationError("nope")
        assert await store.advance_schedule("intent-1", "daily") is None


class TestMaybePause:
    """Tests for the pause-after-repeated-failures rule."""

    @pytest.mark.asyncio
    async def test_three_failures_pause(self, store, mock_client):
        mock_client.select.return_value = [{"status": "failed"}] * 3

        assert await store.maybe_pause("intent-1") is True
        _, kwargs = mock_client.select.call_args
        assert kwargs["order"] == "executed_at.desc"
        assert kwargs["limit"] == 3
        table, values = mock_client.update.call_args.args
        assert table == INTENTS_TABLE
        assert values["status"] == "paused"

    @pytest.mark.asyncio
    async def test_fewer_than_three_does_not_pause(self, store, mock_client):
        mock_client.select.return_value = [{"status": "failed"}] * 2
        assert await store.maybe_pause("intent-1") is False
        mock_client.update.assert_not_called()

    @pytest.mark.asyncio
    async def test_skipped_breaks_the_streak(self, store, mock_client):
        mock_client.select.return_value = [{"status": "failed"}, {"status": "skipped"}, {"status": "failed"}]
        assert await store.maybe_pause("intent-1") is False

    @pytest.mark.asyncio
    async def test_success_breaks_the_streak(self, store, mock_client):
        mock_client.select.return_value = [{"status": "failed"}, {"status": "failed"}, {"status": "fulfilled"}]
        assert await store.maybe_pause("intent-1") is False

    @pytest.mark.asyncio
    async def test_read_error_does_not_pause(self, store, mock_client):
        mock_client.select.side_effect = SupabaseQueryError("timeout")
        assert await store.maybe_pause("intent-1") is False


# =============================================================================
# Lookups and stats
# =============================================================================


class TestLookups:
    """Tests for find_execution_by_key and get_execution_stats."""

    @pytest.mark.asyncio
    async def test_fulfilled_row_wins(self, store, mock_client, execution):
        pending = {**execution.to_row(), "id": "2", "status": "pending", "order_hash": "0xaa"}
        fulfilled = {**execution.to_row(), "id": "1", "status": "fulfilled"}
        mock_client.select.return_value = [pending, fulfilled]

        found = await store.find_execution_by_key("0xabc")
        assert found.id == "1"
        assert found.status is ExecutionStatus.FULFILLED

    @pytest.mark.asyncio
    async def test_pending_with_order_hash(self, store, mock_client, execution):
        pending = {**execution.to_row(), "id": "2", "status": "pending", "order_hash": "0xaa"}
        failed = {**execution.to_row(), "id": "1", "status": "failed"}
        mock_client.select.return_value = [pending, failed]

        found = await store.find_execution_by_key("0xabc")
        assert found.id == "2"
        assert found.order_hash == "0xaa"

    @pytest.mark.asyncio
    async def test_failed_attempts_are_ignored(self, store, mock_client, execution):
        mock_client.select.return_value = [
            {**execution.to_row(), "id": "1", "status": "failed"},
            {**execution.to_row(), "id": "3", "status": "pending"},
        ]
        assert await store.find_execution_by_key("0xabc") is None

    @pytest.mark.asyncio
    async def test_stats_counts(self, store, mock_client):
        mock_client.select.return_value = [
            {"status": "fulfilled"},
            {"status": "fulfilled"},
            {"status": "failed"},
            {"status": "pending"},
            {"status": "skipped"},
        ]
        stats = await store.get_execution_stats(hours=12)

        assert stats["hours"] == 12
        assert stats["total"] == 5
        assert stats["successful"] == 2
        assert stats["failed"] == 1
        assert stats["pending"] == 1
        assert stats["skipped"] == 1
        filters = mock_client.select.call_args.kwargs["filters"]
        assert filters["executed_at"].startswith("gte.")

    @pytest.mark.asyncio
    async def test_stats_error(self, store, mock_client):
        mock_client.select.side_effect = SupabaseQueryError("down")
        stats = await store.get_execution_stats()
        assert stats["total"] == 0
        assert "error" in stats

    @pytest.mark.asyncio
    async def test_close_releases_client(self, store, mock_client):
        await store.close()
        mock_client.close.assert_awaited_once()

"""
Tests for the Investment Scheduler

The orchestrator is mocked; runs are gated with asyncio events so the
single-run guard and graceful shutdown can be observed mid-run.
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from fusion_jar.core.errors import ConfigurationError
from fusion_jar.core.investments.models import RunSummary
from fusion_jar.workers.investment_scheduler import (
    IDLE,
    RUNNING,
    InvestmentScheduler,
    SchedulerConfig,
)

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


# =============================================================================
# Fixtures
# =============================================================================


def _summary(frequency=None):
    return RunSummary(run_id="run-1", started_at=NOW, ended_at=NOW, frequency=frequency, fulfilled=1)


@pytest.fixture
def mock_orchestrator():
    orchestrator = MagicMock()
    orchestrator.run = AsyncMock(side_effect=lambda frequency=None: _summary(frequency))
    orchestrator.request_stop = MagicMock()
    return orchestrator


@pytest.fixture
def config():
    return SchedulerConfig(
        interval_minutes=30,
        initial_delay_seconds=5,
        calendar_triggers={"daily": "0 9 * * *"},
        shutdown_grace_seconds=1.0,
        tick_seconds=3600,
    )


@pytest.fixture
def scheduler(mock_orchestrator, config):
    return InvestmentScheduler(mock_orchestrator, config, clock=lambda: NOW)


def _gated_run(orchestrator):
    """Make orchestrator.run block until the returned event is set."""
    started = asyncio.Event()
    release = asyncio.Event()

    async def run(frequency=None):
        started.set()
        await release.wait()
        return _summary(frequency)

    orchestrator.run = AsyncMock(side_effect=run)
    return started, release


# =============================================================================
# Triggers
# =============================================================================


class TestTrigger:
    """Tests for manual triggers and the single-run guard."""

    @pytest.mark.asyncio
    async def test_trigger_returns_summary(self, scheduler, mock_orchestrator):
        summary = await scheduler.trigger("weekly")

        assert summary.frequency == "weekly"
        mock_orchestrator.run.assert_awaited_once_with(frequency="weekly")
        assert scheduler.run_count == 1
        assert scheduler.run_state == IDLE
        assert scheduler.last_summary is summary
        assert scheduler.last_run_completed == NOW

    @pytest.mark.asyncio
    async def test_trigger_while_running_is_skipped(self, scheduler, mock_orchestrator):
        started, release = _gated_run(mock_orchestrator)

        assert scheduler.trigger_in_background() is True
        await started.wait()
        assert scheduler.run_state == RUNNING

        assert await scheduler.trigger("daily") is None
        assert scheduler.trigger_in_background("daily") is False
        assert scheduler.skipped_triggers == 2

        release.set()
        await asyncio.sleep(0)
        for _ in range(5):
            if scheduler.run_state == IDLE:
                break
            await asyncio.sleep(0)

        assert scheduler.run_state == IDLE
        assert mock_orchestrator.run.await_count == 1

    @pytest.mark.asyncio
    async def test_configuration_error_is_recorded(self, scheduler, mock_orchestrator):
        mock_orchestrator.run = AsyncMock(side_effect=ConfigurationError("Missing required configuration: SUPABASE_URL"))

        assert await scheduler.trigger() is None
        assert "SUPABASE_URL" in scheduler.last_error
        assert scheduler.run_state == IDLE

        # A later successful run clears the error
        mock_orchestrator.run = AsyncMock(return_value=_summary())
        await scheduler.trigger()
        assert scheduler.last_error is None
        assert scheduler.run_count == 2

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_wedge_scheduler(self, scheduler, mock_orchestrator):
        mock_orchestrator.run = AsyncMock(side_effect=RuntimeError("boom"))

        assert await scheduler.trigger() is None
        assert scheduler.last_error == "boom"
        assert scheduler.run_state == IDLE


# =============================================================================
# Timers
# =============================================================================


class TestTimers:
    """Tests for interval and calendar triggers."""

    @pytest.mark.asyncio
    async def test_start_schedules_interval_and_calendar(self, scheduler):
        assert await scheduler.start() is True
        assert await scheduler.start() is False

        assert scheduler.is_running
        assert scheduler.next_run == NOW + timedelta(seconds=5)
        status = scheduler.status()
        assert status["calendar_triggers"]["daily"]["next_run"] == "2026-03-02T09:00:00+00:00"

        assert await scheduler.stop() is True
        assert await scheduler.stop() is False
        assert scheduler.next_run is None

    @pytest.mark.asyncio
    async def test_interval_fires_after_initial_delay(self, scheduler, mock_orchestrator):
        await scheduler.start()
        scheduler._fire_due(NOW + timedelta(seconds=1))
        assert mock_orchestrator.run.await_count == 0

        scheduler._fire_due(NOW + timedelta(seconds=5))
        await asyncio.sleep(0)
        await scheduler.stop()

        mock_orchestrator.run.assert_awaited_once_with(frequency=None)
        assert scheduler.run_count == 1

    @pytest.mark.asyncio
    async def test_calendar_trigger_passes_frequency(self, mock_orchestrator):
        config = SchedulerConfig(interval_minutes=None, calendar_triggers={"daily": "0 9 * * *"}, tick_seconds=3600)
        scheduler = InvestmentScheduler(mock_orchestrator, config, clock=lambda: NOW)
        await scheduler.start()

        scheduler._fire_due(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))
        await asyncio.sleep(0)

        mock_orchestrator.run.assert_awaited_once_with(frequency="daily")
        assert scheduler._next_calendar["daily"] == datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc)
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_invalid_cron_is_ignored(self, mock_orchestrator):
        config = SchedulerConfig(interval_minutes=None, calendar_triggers={"weekly": "not a cron"}, tick_seconds=3600)
        scheduler = InvestmentScheduler(mock_orchestrator, config, clock=lambda: NOW)

        await scheduler.start()
        assert scheduler.next_run is None
        assert scheduler.status()["calendar_triggers"] == {}
        await scheduler.stop()


# =============================================================================
# Shutdown
# =============================================================================


class TestStop:
    """Tests for graceful shutdown."""

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_run(self, scheduler, mock_orchestrator):
        started, release = _gated_run(mock_orchestrator)
        mock_orchestrator.request_stop.side_effect = release.set

        await scheduler.start()
        scheduler.trigger_in_background()
        await started.wait()

        await scheduler.stop()

        mock_orchestrator.request_stop.assert_called_once()
        assert scheduler.run_count == 1
        assert scheduler.last_summary is not None
        assert scheduler.run_state == IDLE

    @pytest.mark.asyncio
    async def test_stop_cancels_run_after_grace_period(self, mock_orchestrator):
        config = SchedulerConfig(interval_minutes=None, shutdown_grace_seconds=0.01, tick_seconds=3600)
        scheduler = InvestmentScheduler(mock_orchestrator, config, clock=lambda: NOW)
        started, _release = _gated_run(mock_orchestrator)

        await scheduler.start()
        scheduler.trigger_in_background()
        await started.wait()

        await scheduler.stop()

        assert scheduler.run_state == IDLE
        assert scheduler.last_summary is None


def test_status_before_start(scheduler):
    status = scheduler.status()
    assert status["is_running"] is False
    assert status["run_state"] == IDLE
    assert status["next_run"] is None
    assert status["run_count"] == 0
    assert status["interval_minutes"] == 30
    assert status["last_summary"] is None

"""
Investment Scheduler

Background daemon that runs the investment orchestrator on a fixed interval
and on calendar (cron) triggers. At most one orchestrator run is in flight;
triggers that arrive while a run is active are skipped, not queued.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from croniter import croniter

from fusion_jar.config import Settings, settings as default_settings
from fusion_jar.core.errors import ConfigurationError
from fusion_jar.core.investments.models import RunSummary, _iso, utcnow
from fusion_jar.core.investments.orchestrator import InvestmentOrchestrator

logger = logging.getLogger(__name__)

IDLE = "idle"
RUNNING = "running"


@dataclass
class SchedulerConfig:
    """Configuration for the investment scheduler."""
    interval_minutes: Optional[float] = 30.0  # None disables interval runs
    initial_delay_seconds: float = 5.0  # First interval run after start
    calendar_triggers: Dict[str, str] = field(default_factory=dict)  # frequency -> cron
    shutdown_grace_seconds: float = 60.0
    tick_seconds: float = 1.0

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> SchedulerConfig:
        config = config or default_settings
        return cls(
            interval_minutes=config.scheduler_interval_minutes,
            initial_delay_seconds=config.scheduler_initial_delay_seconds,
            calendar_triggers=config.calendar_triggers(),
            shutdown_grace_seconds=config.scheduler_shutdown_grace_seconds,
        )


class InvestmentScheduler:
    """
    Drives ``InvestmentOrchestrator.run`` from timers and manual triggers.

    Example:
        scheduler = InvestmentScheduler(InvestmentOrchestrator.from_settings())
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        orchestrator: InvestmentOrchestrator,
        config: Optional[SchedulerConfig] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._orchestrator = orchestrator
        self._config = config or SchedulerConfig.from_settings()
        self._clock = clock

        self._started = False
        self._run_state = IDLE
        self._loop_task: Optional[asyncio.Task] = None
        self._run_task: Optional[asyncio.Task] = None

        self._next_interval_at: Optional[datetime] = None
        self._next_calendar: Dict[str, datetime] = {}

        self.run_count = 0
        self.skipped_triggers = 0
        self.last_run_started: Optional[datetime] = None
        self.last_run_completed: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.last_summary: Optional[RunSummary] = None

    # ---------------------------
    # Lifecycle
    # ---------------------------
    @property
    def orchestrator(self) -> InvestmentOrchestrator:
        return self._orchestrator

    @property
    def is_running(self) -> bool:
        return self._started

    @property
    def run_state(self) -> str:
        return self._run_state

    async def start(self) -> bool:
        """Start the timer loop. Returns False if already started."""
        if self._started:
            return False

        now = self._clock()
        self._next_interval_at = None
        if self._config.interval_minutes:
            self._next_interval_at = now + timedelta(seconds=self._config.initial_delay_seconds)

        self._next_calendar = {}
        for frequency, expression in self._config.calendar_triggers.items():
            if not croniter.is_valid(expression):
                logger.error("Ignoring invalid cron %r for %s intents", expression, frequency)
                continue
            self._next_calendar[frequency] = croniter(expression, now).get_next(datetime)

        self._started = True
        self._loop_task = asyncio.create_task(self._run_loop(), name="investment-scheduler-loop")
        logger.info(
            "Investment scheduler started (interval=%s min, calendar=%s)",
            self._config.interval_minutes,
            sorted(self._next_calendar),
        )
        return True

    async def stop(self) -> bool:
        """
        Stop the timer loop and let an in-flight run finish.

        The orchestrator is asked to stop after its current intent; if the run
        has not ended within the grace period it is cancelled.
        """
        if not self._started:
            return False
        self._started = False
        logger.info("Investment scheduler stopping")

        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        run_task = self._run_task
        if run_task is not None and not run_task.done():
            self._orchestrator.request_stop()
            try:
                await asyncio.wait_for(asyncio.shield(run_task), timeout=self._config.shutdown_grace_seconds)
            except asyncio.TimeoutError:
                logger.warning(
                    "Run still active after %.0fs grace period; cancelling",
                    self._config.shutdown_grace_seconds,
                )
                run_task.cancel()
                try:
                    await run_task
                except asyncio.CancelledError:
                    pass

        self._next_interval_at = None
        self._next_calendar = {}
        return True

    # ---------------------------
    # Triggers
    # ---------------------------
    def _claim(self) -> bool:
        if self._run_state == RUNNING:
            self.skipped_triggers += 1
            logger.info("Run already in progress; trigger skipped")
            return False
        self._run_state = RUNNING
        return True

    async def trigger(self, frequency: Optional[str] = None) -> Optional[RunSummary]:
        """Run now and wait for the result. None if a run is already active."""
        if not self._claim():
            return None
        self._run_task = asyncio.current_task()
        return await self._execute(frequency)

    def trigger_in_background(self, frequency: Optional[str] = None) -> bool:
        """Start a run without waiting. False if a run is already active."""
        if not self._claim():
            return False
        self._run_task = asyncio.create_task(self._execute(frequency), name="investment-run")
        return True

    async def _execute(self, frequency: Optional[str]) -> Optional[RunSummary]:
        self.last_run_started = self._clock()
        summary: Optional[RunSummary] = None
        try:
            summary = await self._orchestrator.run(frequency=frequency)
            self.last_summary = summary
            self.last_error = None
        except ConfigurationError as e:
            self.last_error = str(e)
            logger.error("Investment run aborted: %s", e)
        except Exception as e:  # noqa: BLE001
            self.last_error = str(e)
            logger.error("Investment run crashed: %s", e, exc_info=True)
        finally:
            self.run_count += 1
            self.last_run_completed = self._clock()
            self._run_state = IDLE
            self._run_task = None
        return summary

    # ---------------------------
    # Timer loop
    # ---------------------------
    async def _run_loop(self) -> None:
        try:
            while self._started:
                self._fire_due(self._clock())
                await asyncio.sleep(self._config.tick_seconds)
        except asyncio.CancelledError:
            return
        except Exception as exc:  # noqa: BLE001
            self.last_error = str(exc)
            logger.error("Scheduler loop crashed: %s", exc, exc_info=True)
            self._started = False

    def _fire_due(self, now: datetime) -> None:
        if self._next_interval_at is not None and now >= self._next_interval_at:
            self._next_interval_at = now + timedelta(minutes=self._config.interval_minutes)
            self.trigger_in_background(None)

        for frequency, due in list(self._next_calendar.items()):
            if now >= due:
                expression = self._config.calendar_triggers[frequency]
                self._next_calendar[frequency] = croniter(expression, now).get_next(datetime)
                self.trigger_in_background(frequency)

    @property
    def next_run(self) -> Optional[datetime]:
        candidates = list(self._next_calendar.values())
        if self._next_interval_at is not None:
            candidates.append(self._next_interval_at)
        return min(candidates) if candidates else None

    # ---------------------------
    # Introspection
    # ---------------------------
    def status(self) -> Dict[str, Any]:
        return {
            "is_running": self._started,
            "run_state": self._run_state,
            "last_run_started": _iso(self.last_run_started),
            "last_run_completed": _iso(self.last_run_completed),
            "last_error": self.last_error,
            "next_run": _iso(self.next_run),
            "run_count": self.run_count,
            "skipped_triggers": self.skipped_triggers,
            "interval_minutes": self._config.interval_minutes,
            "calendar_triggers": {
                frequency: {
                    "cron": self._config.calendar_triggers[frequency],
                    "next_run": _iso(due),
                }
                for frequency, due in self._next_calendar.items()
            },
            "last_summary": self.last_summary.to_dict() if self.last_summary else None,
        }

#!/usr/bin/env python3
"""Command line entry points for the Fusion Jar execution engine"""

import argparse
import asyncio
import signal
import sys
from typing import Optional

from fusion_jar.core.errors import ConfigurationError
from fusion_jar.core.investments.orchestrator import InvestmentOrchestrator
from fusion_jar.core.investments.schedule import is_valid_frequency
from fusion_jar.logging_config import setup_logging
from fusion_jar.workers.investment_scheduler import InvestmentScheduler


def print_summary(summary):
    """Pretty print a run summary"""
    print("\n📊 Investment Run")
    print("=" * 50)
    print(f"Run ID:        {summary.run_id}")
    print(f"Frequency:     {summary.frequency or 'all'}")
    print(f"Duration:      {summary.duration_seconds:.1f}s")
    print(f"Intents found: {summary.intents_found}")
    print(f"Fulfilled:     {summary.fulfilled}")
    print(f"Failed:        {summary.failed}")
    print(f"Skipped:       {summary.skipped}")
    if summary.recovered:
        print(f"Recovered:     {summary.recovered}")
    if summary.paused:
        print(f"Paused:        {summary.paused}")
    if summary.stopped_early:
        print("⚠️  Stopped before all intents were processed")

    if summary.errors:
        print("\nErrors:")
        print("-" * 50)
        for error in summary.errors:
            print(f" - {error}")


def _install_signal_handlers(callback) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, callback)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            signal.signal(sig, lambda *_: callback())


async def cli_run_once(frequency: Optional[str]) -> int:
    """Process due intents once and exit"""
    orchestrator = InvestmentOrchestrator.from_settings()
    _install_signal_handlers(orchestrator.request_stop)

    print(f"🚀 Processing due intents ({frequency or 'all frequencies'})...")
    try:
        summary = await orchestrator.run(frequency=frequency)
    finally:
        await orchestrator.store.close()
    print_summary(summary)
    return 0


async def cli_daemon() -> int:
    """Run the scheduler until SIGINT/SIGTERM"""
    scheduler = InvestmentScheduler(InvestmentOrchestrator.from_settings())
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event.set)

    await scheduler.start()
    status = scheduler.status()
    print("⏰ Investment scheduler running (Ctrl+C to stop)")
    print(f"Next run: {status['next_run']}")

    await stop_event.wait()
    print("\n🛑 Shutting down, waiting for the current run to finish...")
    await scheduler.stop()
    await scheduler.orchestrator.store.close()
    print("✅ Scheduler stopped")
    return 0


async def cli_stats(hours: int) -> int:
    """Print execution statistics"""
    orchestrator = InvestmentOrchestrator.from_settings()
    try:
        stats = await orchestrator.store.get_execution_stats(hours=hours)
    finally:
        await orchestrator.store.close()

    print(f"\n📈 Executions in the last {hours}h")
    print("=" * 50)
    if stats.get("error"):
        print(f"❌ Could not load stats: {stats['error']}")
        return 1
    print(f"Total:      {stats['total']}")
    print(f"Successful: {stats['successful']}")
    print(f"Failed:     {stats['failed']}")
    print(f"Pending:    {stats['pending']}")
    print(f"Skipped:    {stats['skipped']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fusion Jar execution engine")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run-once", help="Process due intents once")
    run_parser.add_argument("--frequency", help="Only process intents with this frequency (e.g. daily)")

    subparsers.add_parser("daemon", help="Run the investment scheduler")

    stats_parser = subparsers.add_parser("stats", help="Show execution statistics")
    stats_parser.add_argument("--hours", type=int, default=24, help="Look-back window (default: 24)")

    parser.add_argument("--log-level", help="Override LOG_LEVEL")

    return parser


async def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.log_level)

    try:
        if args.command == "run-once":
            if args.frequency and not is_valid_frequency(args.frequency):
                print(f"❌ Invalid frequency: {args.frequency}")
                return 2
            return await cli_run_once(args.frequency)

        if args.command == "daemon":
            return await cli_daemon()

        if args.command == "stats":
            if args.hours <= 0:
                print("❌ --hours must be positive")
                return 2
            return await cli_stats(args.hours)

    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
        return 1

    print(f"❌ Unknown command: {args.command}")
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

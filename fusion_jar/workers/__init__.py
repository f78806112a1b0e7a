"""
Background Workers

Workers for scheduled and background tasks.
"""

from .investment_scheduler import (
    InvestmentScheduler,
    SchedulerConfig,
)

__all__ = [
    "InvestmentScheduler",
    "SchedulerConfig",
]

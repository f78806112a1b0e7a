"""
Recurring Investment Module

Finds due investment intents and executes them through 1inch Fusion and
Fusion+. Service classes live in their own modules (``orchestrator``,
``swap_executor``, ``store``) because they depend on the provider clients,
which in turn use the models exported here.
"""

from .models import (
    ChainBalance,
    CrossChainQuote,
    ExecutionStatus,
    IntentStatus,
    InvestmentExecution,
    InvestmentIntent,
    OrderPollResult,
    OrderStatus,
    PollOutcome,
    RunSummary,
    SameChainQuote,
    SwapMode,
    SwapParams,
    SwapResult,
)
from .schedule import compute_next_execution, is_valid_frequency, parse_frequency
from .selection import resolve_swap_mode, select_source_chain

__all__ = [
    # Models
    "ChainBalance",
    "CrossChainQuote",
    "ExecutionStatus",
    "IntentStatus",
    "InvestmentExecution",
    "InvestmentIntent",
    "OrderPollResult",
    "OrderStatus",
    "PollOutcome",
    "RunSummary",
    "SameChainQuote",
    "SwapMode",
    "SwapParams",
    "SwapResult",
    # Pure helpers
    "compute_next_execution",
    "is_valid_frequency",
    "parse_frequency",
    "resolve_swap_mode",
    "select_source_chain",
]

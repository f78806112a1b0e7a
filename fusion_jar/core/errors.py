"""
Error types for the investment execution pipeline.

Transient errors (network, rate limits, timeouts) are left for the next
scheduled run to retry. Unrecoverable errors fail the current execution and
count towards the auto-pause threshold. ConfigurationError is the only error
that aborts a whole orchestrator run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ErrorCategory(str, Enum):
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    TRANSACTION_REVERTED = "transaction_reverted"
    APPROVAL = "approval"
    ORDER_REJECTED = "order_rejected"
    PROVIDER = "provider"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """What the failure logs record about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    retry_after_seconds: Optional[float] = None
    suggested_action: Optional[str] = None
    provider: Optional[str] = None
    chain_id: Optional[int] = None
    tx_hash: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class FusionJarError(Exception):
    """Base class for all pipeline errors.

    Subclasses set ``category`` and ``recoverable``; keyword arguments fill in
    the remaining ``ErrorContext`` fields.
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = ErrorContext(category=self.category, recoverable=self.recoverable, **context)


class ConfigurationError(FusionJarError):
    """Missing credentials or an unusable chain table. Aborts the run."""

    category = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        self.missing = list(missing or [])
        super().__init__(
            message,
            suggested_action="Set the missing environment variables and restart",
            details={"missing": self.missing},
        )


class RecoverableError(FusionJarError):
    """Transient failure; the next scheduled run retries it."""

    recoverable = True

    def __init__(self, message: str, retry_after: Optional[float] = None, provider: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(message, retry_after_seconds=retry_after, provider=provider)


class NetworkError(RecoverableError):
    category = ErrorCategory.NETWORK


class RateLimitError(RecoverableError):
    category = ErrorCategory.RATE_LIMIT


class TimeoutError(RecoverableError):
    category = ErrorCategory.TIMEOUT


class UnrecoverableError(FusionJarError):
    """Failure of the current attempt that retrying immediately will not fix."""


class InvalidAddressError(UnrecoverableError):
    category = ErrorCategory.VALIDATION


class SwapError(UnrecoverableError):
    category = ErrorCategory.PROVIDER


class ApprovalError(SwapError):
    category = ErrorCategory.APPROVAL


class OrderRejectedError(SwapError):
    category = ErrorCategory.ORDER_REJECTED


class TransactionRevertedError(SwapError):
    """Approval transaction mined with status 0."""

    category = ErrorCategory.TRANSACTION_REVERTED

    def __init__(self, message: str = "Transaction reverted", tx_hash: Optional[str] = None, chain_id: Optional[int] = None):
        super().__init__(message, tx_hash=tx_hash, chain_id=chain_id)


class CrossChainUnavailableError(SwapError):
    """Fusion+ cannot serve this route; callers degrade to a same-chain swap."""


# (message fragments, category, recoverable, retry after seconds, suggested action)
# First match wins.
_MESSAGE_RULES: Tuple[Tuple[Tuple[str, ...], ErrorCategory, bool, Optional[float], Optional[str]], ...] = (
    (("rate limit", "too many requests", "429", "throttl", "quota exceeded"),
     ErrorCategory.RATE_LIMIT, True, 60.0, "Wait before retrying"),
    (("connection", "network", "unreachable", "refused", "dns", "socket", "ssl"),
     ErrorCategory.NETWORK, True, 5.0, "Check RPC / aggregator connectivity"),
    (("timeout", "timed out", "deadline"),
     ErrorCategory.TIMEOUT, True, 10.0, None),
    (("insufficient", "exceeds balance"),
     ErrorCategory.INSUFFICIENT_FUNDS, False, None, None),
    (("revert",),
     ErrorCategory.TRANSACTION_REVERTED, False, None, None),
    (("allowance", "approv"),
     ErrorCategory.APPROVAL, False, None, None),
)


def classify_error(error: Exception) -> ErrorContext:
    """
    Classify an exception for the failure logs.

    Pipeline errors carry their own context; anything else is matched on its
    message, falling back to a recoverable UNKNOWN.
    """
    if isinstance(error, FusionJarError):
        return error.context

    message = str(error).lower()
    for fragments, category, recoverable, retry_after, action in _MESSAGE_RULES:
        if any(fragment in message for fragment in fragments):
            return ErrorContext(
                category=category,
                recoverable=recoverable,
                retry_after_seconds=retry_after,
                suggested_action=action,
            )
    return ErrorContext()

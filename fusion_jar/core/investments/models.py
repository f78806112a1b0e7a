"""
Investment Models

Data models for recurring investment intents, their execution records and
the transient values passed between pipeline stages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class IntentStatus(str, Enum):
    """Investment intent lifecycle status."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class ExecutionStatus(str, Enum):
    """Individual execution status."""
    PENDING = "pending"
    FULFILLED = "fulfilled"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.PENDING


class SwapMode(str, Enum):
    """Same-chain Fusion swap or cross-chain Fusion+ swap."""
    SAME_CHAIN = "same_chain"
    CROSS_CHAIN = "cross_chain"


class OrderStatus(str, Enum):
    """Aggregator order status, normalised across Fusion and Fusion+."""
    PENDING = "Pending"
    PARTIALLY_FILLED = "PartiallyFilled"
    FILLED = "Filled"
    EXPIRED = "Expired"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.FILLED, OrderStatus.EXPIRED, OrderStatus.CANCELLED)


class PollOutcome(str, Enum):
    FILLED = "filled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a PostgREST timestamp (ISO string) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).replace("Z", "+00:00")
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.astimezone(timezone.utc).isoformat() if value else None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InvestmentIntent:
    """A user's standing instruction to buy ``target_token`` every period."""
    id: str
    user_address: str
    source_token: str
    source_chain: int
    target_token: str
    target_chain: int
    amount: Decimal
    frequency: str
    status: IntentStatus = IntentStatus.ACTIVE
    next_execution: Optional[datetime] = None
    created_at: Optional[datetime] = None
    jar_name: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> InvestmentIntent:
        # Older rows stored the amount as amount_usd
        amount = row.get("amount", row.get("amount_usd", 0))
        return cls(
            id=str(row["id"]),
            user_address=row["user_address"],
            source_token=row.get("source_token") or "USDC",
            source_chain=int(row.get("source_chain") or row["target_chain"]),
            target_token=row["target_token"],
            target_chain=int(row["target_chain"]),
            amount=Decimal(str(amount)),
            frequency=row.get("frequency") or "daily",
            status=IntentStatus(row.get("status", "active")),
            next_execution=_parse_datetime(row.get("next_execution")),
            created_at=_parse_datetime(row.get("created_at")),
            jar_name=row.get("jar_name"),
        )

    @property
    def label(self) -> str:
        return self.jar_name or self.id


@dataclass
class InvestmentExecution:
    """One attempt to fulfil an intent. Terminal once not pending."""
    intent_id: str
    user_address: str
    source_token: str
    source_chain: int
    target_token: str
    target_chain: int
    amount_usd: Decimal
    status: ExecutionStatus = ExecutionStatus.PENDING
    id: Optional[str] = None
    actual_amount_in: Optional[str] = None
    actual_amount_out: Optional[str] = None
    fee_paid: Optional[str] = None
    resolver_address: Optional[str] = None
    transaction_hash: Optional[str] = None
    order_hash: Optional[str] = None
    swap_mode: Optional[SwapMode] = None
    idempotency_key: Optional[str] = None
    executed_at: datetime = field(default_factory=utcnow)
    error_message: Optional[str] = None

    @classmethod
    def for_intent(cls, intent: InvestmentIntent, idempotency_key: Optional[str] = None) -> InvestmentExecution:
        return cls(
            intent_id=intent.id,
            user_address=intent.user_address,
            source_token=intent.source_token,
            source_chain=intent.source_chain,
            target_token=intent.target_token,
            target_chain=intent.target_chain,
            amount_usd=intent.amount,
            idempotency_key=idempotency_key,
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "intent_id": self.intent_id,
            "user_address": self.user_address,
            "source_token": self.source_token,
            "source_chain": self.source_chain,
            "target_token": self.target_token,
            "target_chain": self.target_chain,
            "amount_usd": str(self.amount_usd),
            "actual_amount_in": self.actual_amount_in,
            "actual_amount_out": self.actual_amount_out,
            "fee_paid": self.fee_paid,
            "resolver_address": self.resolver_address,
            "transaction_hash": self.transaction_hash,
            "order_hash": self.order_hash,
            "swap_mode": self.swap_mode.value if self.swap_mode else None,
            "idempotency_key": self.idempotency_key,
            "status": self.status.value,
            "executed_at": _iso(self.executed_at),
            "error_message": self.error_message,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> InvestmentExecution:
        mode = row.get("swap_mode")
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            intent_id=str(row["intent_id"]),
            user_address=row.get("user_address", ""),
            source_token=row.get("source_token", ""),
            source_chain=int(row.get("source_chain") or 0),
            target_token=row.get("target_token", ""),
            target_chain=int(row.get("target_chain") or 0),
            amount_usd=Decimal(str(row.get("amount_usd") or 0)),
            status=ExecutionStatus(row.get("status", "pending")),
            actual_amount_in=row.get("actual_amount_in"),
            actual_amount_out=row.get("actual_amount_out"),
            fee_paid=row.get("fee_paid"),
            resolver_address=row.get("resolver_address"),
            transaction_hash=row.get("transaction_hash"),
            order_hash=row.get("order_hash"),
            swap_mode=SwapMode(mode) if mode else None,
            idempotency_key=row.get("idempotency_key"),
            executed_at=_parse_datetime(row.get("executed_at")) or utcnow(),
            error_message=row.get("error_message"),
        )

    def apply_swap_result(self, result: SwapResult) -> None:
        self.swap_mode = result.mode
        self.order_hash = result.order_hash
        if result.success:
            self.status = ExecutionStatus.FULFILLED
            self.transaction_hash = result.transaction_hash
            self.actual_amount_in = result.actual_amount_in
            self.actual_amount_out = result.actual_amount_out
            self.fee_paid = result.fee_paid
            self.resolver_address = result.resolver_address
            self.error_message = None
        else:
            self.status = ExecutionStatus.FAILED
            self.error_message = result.error or "Swap failed"


@dataclass(frozen=True)
class ChainBalance:
    """Stablecoin balance on one chain; computed fresh every run."""
    chain_id: int
    chain_name: str
    token_address: str
    raw_balance: int
    formatted_balance: Decimal


@dataclass
class SwapParams:
    source_chain: int
    target_chain: int
    source_token: str
    target_token: str
    amount_usd: Decimal
    user_address: str
    signer: Any
    idempotency_key: Optional[str] = None
    mode: Optional[SwapMode] = None


@dataclass
class SwapResult:
    success: bool
    mode: Optional[SwapMode] = None
    transaction_hash: Optional[str] = None
    order_hash: Optional[str] = None
    actual_amount_in: Optional[str] = None
    actual_amount_out: Optional[str] = None
    fee_paid: Optional[str] = None
    resolver_address: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str, mode: Optional[SwapMode] = None, order_hash: Optional[str] = None) -> SwapResult:
        return cls(success=False, error=error, mode=mode, order_hash=order_hash)


@dataclass(frozen=True)
class AuctionPoint:
    delay: int
    coefficient: int


@dataclass(frozen=True)
class AuctionPreset:
    """Dutch auction parameters from the quote's recommended preset."""
    auction_duration: int
    start_auction_in: int
    initial_rate_bump: int
    auction_start_amount: int
    auction_end_amount: int
    points: tuple = ()
    gas_bump_estimate: int = 0
    gas_price_estimate: int = 0
    secrets_count: int = 1

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> AuctionPreset:
        points = tuple(
            AuctionPoint(delay=int(p.get("delay", 0)), coefficient=int(p.get("coefficient", 0)))
            for p in data.get("points") or []
        )
        gas = data.get("gasCost") or {}
        return cls(
            auction_duration=int(data.get("auctionDuration", 180)),
            start_auction_in=int(data.get("startAuctionIn", 0)),
            initial_rate_bump=int(data.get("initialRateBump", 0)),
            auction_start_amount=int(data.get("auctionStartAmount", 0)),
            auction_end_amount=int(data.get("auctionEndAmount", 0)),
            points=points,
            gas_bump_estimate=int(gas.get("gasBumpEstimate", 0)),
            gas_price_estimate=int(gas.get("gasPriceEstimate", 0)),
            secrets_count=int(data.get("secretsCount", 1)),
        )


@dataclass(frozen=True)
class SameChainQuote:
    """Fusion quote; approval goes to the settlement contract."""
    quote_id: str
    chain_id: int
    from_token: str
    to_token: str
    from_amount: int
    to_amount: int
    settlement_address: str
    preset: AuctionPreset
    whitelist: tuple = ()
    fee_usd: Optional[str] = None
    kind: str = "same_chain"

    @property
    def approval_target(self) -> str:
        return self.settlement_address

    @property
    def mode(self) -> SwapMode:
        return SwapMode.SAME_CHAIN


@dataclass(frozen=True)
class CrossChainQuote:
    """Fusion+ quote; approval goes to the source-chain escrow factory."""
    quote_id: str
    src_chain_id: int
    dst_chain_id: int
    from_token: str
    to_token: str
    from_amount: int
    to_amount: int
    src_escrow_factory: str
    dst_escrow_factory: str
    preset: AuctionPreset
    time_locks: Dict[str, int] = field(default_factory=dict)
    src_safety_deposit: int = 0
    dst_safety_deposit: int = 0
    whitelist: tuple = ()
    fee_usd: Optional[str] = None
    kind: str = "cross_chain"

    @property
    def approval_target(self) -> str:
        return self.src_escrow_factory

    @property
    def chain_id(self) -> int:
        return self.src_chain_id

    @property
    def mode(self) -> SwapMode:
        return SwapMode.CROSS_CHAIN


Quote = Union[SameChainQuote, CrossChainQuote]


@dataclass
class PreparedOrder:
    """Signed order ready for relayer submission."""
    order_hash: str
    quote_id: str
    order: Dict[str, Any]
    signature: str
    extension: str
    chain_id: int
    secrets: List[str] = field(default_factory=list)
    secret_hashes: List[str] = field(default_factory=list)


@dataclass
class OrderFill:
    tx_hash: Optional[str] = None
    filled_maker_amount: Optional[str] = None
    filled_taker_amount: Optional[str] = None
    resolver: Optional[str] = None


@dataclass
class OrderStatusSnapshot:
    status: OrderStatus
    fills: List[OrderFill] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class OrderPollResult:
    """Terminal outcome of polling one order."""
    outcome: PollOutcome
    polls: int
    snapshot: Optional[OrderStatusSnapshot] = None

    @property
    def filled(self) -> bool:
        return self.outcome is PollOutcome.FILLED


@dataclass
class RunSummary:
    """Result of one orchestrator pass."""
    run_id: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    frequency: Optional[str] = None
    intents_found: int = 0
    fulfilled: int = 0
    failed: int = 0
    skipped: int = 0
    paused: int = 0
    recovered: int = 0
    stopped_early: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.fulfilled + self.failed + self.skipped + self.recovered

    @property
    def duration_seconds(self) -> float:
        if not self.ended_at:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "startedAt": _iso(self.started_at),
            "endedAt": _iso(self.ended_at),
            "durationSeconds": self.duration_seconds,
            "frequency": self.frequency,
            "intentsFound": self.intents_found,
            "fulfilled": self.fulfilled,
            "failed": self.failed,
            "skipped": self.skipped,
            "paused": self.paused,
            "recovered": self.recovered,
            "stoppedEarly": self.stopped_early,
            "errors": self.errors,
        }

import os

from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Ensure we pick up legacy environment variable aliases."""

        super().model_post_init(__context)

        if not self.supabase_url:
            fallback = os.getenv("NEXT_PUBLIC_SUPABASE_URL")
            if fallback:
                object.__setattr__(self, "supabase_url", fallback)

        if not self.one_inch_api_key:
            fallback = os.getenv("INCH_API_KEY") or os.getenv("DEV_PORTAL_API_TOKEN")
            if fallback:
                object.__setattr__(self, "one_inch_api_key", fallback)

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # 1inch Fusion / Fusion+
    one_inch_api_key: str = Field(default="", description="1inch Developer Portal API key")
    one_inch_base_url: str = Field(
        default="https://api.1inch.dev",
        description="Base URL for the 1inch Fusion and Fusion+ APIs",
    )
    swap_source: str = Field(
        default="fusion-jar-cron",
        description="Source tag attached to aggregator quote requests",
    )
    enable_cross_chain: bool = Field(
        default=True,
        description="Use Fusion+ for cross-chain intents (falls back to same-chain when unavailable)",
    )
    request_timeout_seconds: int = Field(default=30, description="Request timeout")

    # Supabase (PostgREST)
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_role_key: str = Field(default="", description="Supabase service role key")

    # Signing
    signing_private_key: str = Field(
        default="",
        description="Hex private key used to sign approvals and orders",
        validation_alias=AliasChoices(
            "signing_private_key",
            "SIGNING_PRIVATE_KEY",
            "NEXT_PUBLIC_DEMO_PRIVATE_KEY",
            "DEMO_PRIVATE_KEY",
        ),
    )

    # Chain RPC overrides
    ethereum_rpc: str = Field(default="https://eth.llamarpc.com", description="Ethereum RPC URL")
    polygon_rpc: str = Field(default="https://polygon-rpc.com", description="Polygon RPC URL")
    base_rpc: str = Field(default="https://mainnet.base.org", description="Base RPC URL")
    arbitrum_rpc: str = Field(default="https://arb1.arbitrum.io/rpc", description="Arbitrum RPC URL")
    enabled_chain_ids: List[int] = Field(
        default_factory=lambda: [1, 137, 8453, 42161],
        description="Chains scanned for stablecoin balances",
    )

    # Swap execution
    order_poll_interval_seconds: float = Field(
        default=3.0,
        gt=0,
        description="Interval between order status polls",
    )
    order_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Give up on an order that is not filled within this window",
    )
    approval_amount_usd: Decimal = Field(
        default=Decimal("1000"),
        description="Allowance granted when an approval is required (human units)",
    )
    approval_receipt_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Max seconds to wait for an approval transaction receipt",
    )
    approval_gas_multiplier: float = Field(
        default=1.2,
        description="Headroom applied to the approval gas estimate",
    )

    # Orchestrator
    inter_intent_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Delay between intents to stay under aggregator/RPC rate limits",
    )
    failure_pause_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive failed executions before an intent is paused",
    )

    # Scheduler daemon
    scheduler_enabled: bool = Field(
        default=False,
        description="Start the investment scheduler alongside FastAPI",
    )
    scheduler_interval_minutes: Optional[float] = Field(
        default=30.0,
        description="Fixed polling interval; unset to rely on calendar triggers only",
    )
    scheduler_initial_delay_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Delay before the first interval run",
    )
    scheduler_daily_cron: Optional[str] = Field(
        default="0 9 * * *",
        description="Calendar trigger for daily intents",
    )
    scheduler_weekly_cron: Optional[str] = Field(
        default="0 9 * * 1",
        description="Calendar trigger for weekly intents",
    )
    scheduler_shutdown_grace_seconds: float = Field(
        default=60.0,
        ge=0,
        description="How long stop() waits for an in-flight run to finish",
    )

    @property
    def has_one_inch_key(self) -> bool:
        return bool(self.one_inch_api_key)

    @property
    def has_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)

    @property
    def has_signing_key(self) -> bool:
        return bool(self.signing_private_key)

    @property
    def rpc_overrides(self) -> Dict[int, str]:
        return {
            1: self.ethereum_rpc,
            137: self.polygon_rpc,
            8453: self.base_rpc,
            42161: self.arbitrum_rpc,
        }

    def missing_credentials(self) -> List[str]:
        """Names of required credentials that are not configured."""
        missing: List[str] = []
        if not self.has_one_inch_key:
            missing.append("ONE_INCH_API_KEY")
        if not self.supabase_url:
            missing.append("SUPABASE_URL")
        if not self.supabase_service_role_key:
            missing.append("SUPABASE_SERVICE_ROLE_KEY")
        if not self.has_signing_key:
            missing.append("SIGNING_PRIVATE_KEY")
        return missing

    def calendar_triggers(self) -> Dict[str, str]:
        triggers: Dict[str, str] = {}
        if self.scheduler_daily_cron:
            triggers["daily"] = self.scheduler_daily_cron
        if self.scheduler_weekly_cron:
            triggers["weekly"] = self.scheduler_weekly_cron
        return triggers


# Global settings instance
settings = Settings()

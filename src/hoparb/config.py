"""Application configuration using pydantic-settings.

Every tunable of the engine lives here: asset universe, fee tiers, position
sizing, gas schedule, discovery limits, execution slippage buffers and the
learning store. Values can be overridden through environment variables or
a .env file (lists and dicts as JSON).
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")
    dry_run: bool = Field(default=True, description="Trade against the simulated venue")

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/hoparb.db",
        description="Execution ledger connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="127.0.0.1", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Telegram alerts
    # ======================
    telegram_bot_token: str = Field(default="", description="Telegram bot token from BotFather")
    telegram_alert_chat_id: Optional[int] = Field(
        default=None, description="Chat that receives execution and breaker alerts"
    )

    # ======================
    # Venue
    # ======================
    venue_api_url: str = Field(
        default="https://dex-backend-prod1.defi.gala.com",
        description="Swap venue REST endpoint",
    )
    venue_timeout: float = Field(default=10.0, description="HTTP timeout for venue calls (seconds)")
    venue_status_poll_interval: float = Field(
        default=2.0, description="Seconds between transaction status polls"
    )
    wallet_address: str = Field(default="", description="Trading wallet address")
    wallet_private_key: Optional[str] = Field(default=None, description="Hex private key used to sign swaps")

    # ======================
    # Asset universe
    # ======================
    base_asset: str = Field(default="GALA", description="Asset every route starts and ends with")
    tradable_assets: list[str] = Field(
        default=["GALA", "GUSDC", "GUSDT", "GWETH", "GWBTC", "ETIME", "SILK", "TOWN", "GTON"],
        description="Asset universe explored by discovery",
    )
    deep_route_assets: list[str] = Field(
        default=["GUSDC", "GUSDT", "GWETH", "GWBTC", "ETIME"],
        description="High-liquidity subset used for routes of 5 or more hops",
    )
    cross_pair_assets: list[str] = Field(
        default=["GUSDC", "ETIME", "SILK", "GUSDT", "GWETH"],
        description="Candidate intermediates for 3-hop routes",
    )
    asset_decimals: dict[str, int] = Field(
        default={
            "GALA": 8,
            "GUSDC": 6,
            "GUSDT": 6,
            "GWETH": 18,
            "GWBTC": 8,
            "ETIME": 8,
            "SILK": 8,
            "TOWN": 8,
            "GTON": 8,
        },
        description="Decimal precision per asset",
    )

    # ======================
    # Fee tiers
    # ======================
    fee_tiers: list[int] = Field(default=[500, 3000, 10000], description="Pool fee tiers (bps * 100)")
    use_multi_fee_tier: bool = Field(default=True, description="Quote every fee tier and keep the best")

    # ======================
    # Position sizing
    # ======================
    default_trade_size: Decimal = Field(default=Decimal("10"), description="Input size without dynamic sizing")
    dynamic_sizing: bool = Field(default=True, description="Size positions from probed liquidity")
    min_position_size: Decimal = Field(default=Decimal("5"))
    max_position_size: Decimal = Field(default=Decimal("100"))
    target_price_impact: Decimal = Field(default=Decimal("1.0"), description="Target price impact (%)")
    max_price_impact: Decimal = Field(default=Decimal("3.0"), description="Impact ceiling (%) above which min size is used")
    sizing_test_amount: Decimal = Field(default=Decimal("1"), description="Trial quote size for liquidity probing")

    # ======================
    # Gas schedule (in base asset)
    # ======================
    gas_triangular: Decimal = Field(default=Decimal("0.1"))
    gas_cross_pair: Decimal = Field(default=Decimal("0.15"))
    gas_base: Decimal = Field(default=Decimal("0.08"))
    gas_per_hop: Decimal = Field(default=Decimal("0.04"))
    max_gas_budget_percent: Decimal = Field(
        default=Decimal("0.15"), description="Share of expected net profit a route may spend on gas bids"
    )

    # ======================
    # Discovery
    # ======================
    min_profit_threshold: Decimal = Field(default=Decimal("1.0"), description="Minimum net profit (%)")
    min_hops: int = Field(default=2, description="Shortest route searched (swaps)")
    max_hops: int = Field(default=4, description="Longest route searched (swaps, up to 6)")
    max_routes_to_explore: int = Field(default=150, description="Leaf route budget per multi-hop search")
    step_loss_floor_percent: Decimal = Field(
        default=Decimal("-5"), description="Single-hop return (%) below which a branch is pruned"
    )
    confidence_high_multiple: Decimal = Field(default=Decimal("2.0"))
    confidence_medium_multiple: Decimal = Field(default=Decimal("1.5"))

    # ======================
    # Execution
    # ======================
    execution_enabled: bool = Field(default=True, description="Execute discovered routes")
    exit_safety_margin: Decimal = Field(
        default=Decimal("0.02"),
        ge=Decimal("0"),
        le=Decimal("0.05"),
        description="Fraction shaved off quoted output for minimum output (at most 5%)",
    )
    inter_hop_slippage_buffer: Decimal = Field(
        default=Decimal("0.005"),
        ge=Decimal("0"),
        le=Decimal("0.05"),
        description="Fraction shaved off quoted output before the next hop (at most 5%)",
    )
    confirmation_timeout: float = Field(default=30.0, description="Seconds to wait for hop confirmation")
    timeout_grace_delay: float = Field(default=5.0, description="Extra delay after a confirmation timeout")
    scan_interval: float = Field(default=5.0, description="Seconds between discovery cycles")

    # ======================
    # Emergency stop
    # ======================
    emergency_stop: bool = Field(default=False, description="Start with execution halted")
    emergency_max_consecutive_failures: int = Field(
        default=5, ge=1, description="Failed routes in a row that halt execution"
    )
    emergency_max_realized_loss: Decimal = Field(
        default=Decimal("50"), gt=0, description="Net realized loss (base asset) that halts execution"
    )

    # ======================
    # Learning store
    # ======================
    learning_data_path: str = Field(default="./data/arbitrage-learning.json")
    learning_lock_retries: int = Field(default=5)
    learning_lock_min_wait: float = Field(default=0.1, description="Seconds")
    learning_lock_max_wait: float = Field(default=0.5, description="Seconds")
    learning_lock_stale: float = Field(default=10.0, description="Seconds before a lock file is considered stale")
    learning_max_failures: int = Field(default=5, description="Consecutive write failures before writes are disabled")

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def has_signer(self) -> bool:
        """Check if a signing key is configured."""
        return bool(self.wallet_private_key)

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "telegram_bot_token": "***" if self.telegram_bot_token else "(not set)",
            "venue": {
                "url": self.venue_api_url,
                "wallet_address": self.wallet_address or "(not set)",
                "signer_configured": self.has_signer,
            },
            "discovery": {
                "base_asset": self.base_asset,
                "assets": self.tradable_assets,
                "fee_tiers": self.fee_tiers,
                "min_profit_threshold": str(self.min_profit_threshold),
                "hops": [self.min_hops, self.max_hops],
                "max_routes_to_explore": self.max_routes_to_explore,
            },
            "execution": {
                "enabled": self.execution_enabled,
                "exit_safety_margin": str(self.exit_safety_margin),
                "inter_hop_slippage_buffer": str(self.inter_hop_slippage_buffer),
                "confirmation_timeout": self.confirmation_timeout,
            },
            "emergency": {
                "stop": self.emergency_stop,
                "max_consecutive_failures": self.emergency_max_consecutive_failures,
                "max_realized_loss": str(self.emergency_max_realized_loss),
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

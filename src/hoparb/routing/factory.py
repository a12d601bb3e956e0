"""Factory for the venue and the liquidity probe.

Creates the HTTP venue when dry_run is off, otherwise the simulated venue.
"""

import logging
from typing import Optional

from hoparb.config import Settings, get_settings
from hoparb.errors import QuoteValidationError
from hoparb.routing.base import Asset, SwapVenue, build_assets
from hoparb.routing.probe import LiquidityProbe, SizingConfig
from hoparb.utils.circuit_breaker import (
    QUOTE_BREAKER,
    CircuitBreaker,
    CircuitBreakerRegistry,
    create_preset_breakers,
)

logger = logging.getLogger(__name__)


def create_venue(
    settings: Optional[Settings] = None,
    api_breaker: Optional[CircuitBreaker] = None,
) -> SwapVenue:
    """Create the configured venue. The live venue sends every request through api_breaker."""
    settings = settings or get_settings()

    if not settings.dry_run:
        from hoparb.routing.http_venue import HttpSwapVenue

        logger.info(f"Using live venue at {settings.venue_api_url}")
        return HttpSwapVenue(
            base_url=settings.venue_api_url,
            timeout=settings.venue_timeout,
            poll_interval=settings.venue_status_poll_interval,
            api_breaker=api_breaker,
        )

    from hoparb.routing.dry_run import create_default_venue

    logger.warning("DRY_RUN enabled - trading against the simulated venue")
    return create_default_venue()


def create_assets(settings: Optional[Settings] = None) -> dict[str, Asset]:
    settings = settings or get_settings()
    return build_assets(settings.tradable_assets, settings.asset_decimals)


def create_breakers(registry: Optional[CircuitBreakerRegistry] = None) -> dict[str, CircuitBreaker]:
    """Register the preset breakers; validation errors are never counted as failures."""
    return create_preset_breakers(registry, ignored_exceptions=(QuoteValidationError,))


def create_probe(
    venue: SwapVenue,
    breakers: dict[str, CircuitBreaker],
    settings: Optional[Settings] = None,
) -> LiquidityProbe:
    settings = settings or get_settings()
    return LiquidityProbe(
        venue=venue,
        breaker=breakers[QUOTE_BREAKER],
        fee_tiers=settings.fee_tiers,
        use_multi_fee_tier=settings.use_multi_fee_tier,
        sizing=SizingConfig(
            min_size=settings.min_position_size,
            max_size=settings.max_position_size,
            target_impact=settings.target_price_impact,
            max_impact=settings.max_price_impact,
            test_amount=settings.sizing_test_amount,
        ),
    )

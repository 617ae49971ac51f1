"""
Config -> Engine Bridges.

Functions that turn ComplianceConfig sections into engine objects.  They
live here because engines must never import compliance_config.

Usage:
    config = get_active_config()
    strategy = build_penalty_strategy(config)
    engine = init_engine_from_url(url, **database_timeouts(config))
"""

from __future__ import annotations

from typing import Any

from compliance_config.schema import ComplianceConfig
from compliance_engines.penalties import (
    NoPenaltyStrategy,
    PenaltyStrategy,
    PerDayPenaltyStrategy,
)


def build_penalty_strategy(config: ComplianceConfig) -> PenaltyStrategy:
    """Instantiate the configured penalty strategy."""
    settings = config.penalties
    if settings.strategy == "per_day":
        return PerDayPenaltyStrategy(
            late_fee_per_day=settings.late_fee_per_day,
            late_fee_cap=settings.late_fee_cap,
            annual_interest_rate=settings.annual_interest_rate,
        )
    return NoPenaltyStrategy()


def database_timeouts(config: ComplianceConfig) -> dict[str, Any]:
    """Keyword arguments for ``init_engine_from_url`` taken from the timeout settings."""
    return {
        "pool_timeout": config.timeouts.db_pool_timeout_seconds,
        "statement_timeout_ms": config.timeouts.db_statement_timeout_ms,
    }

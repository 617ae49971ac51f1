"""
Compliance configuration schema.

The YAML document under ``compliance_config/sets/`` is parsed into these
frozen dataclasses by ``compliance_config.loader``.  Engine parameter types
(ReviewThresholds, DueDateRules) are reused directly so the engines never
import this package.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Self

from compliance_engines.due_dates import DueDateRules
from compliance_engines.reconciliation import ReviewThresholds
from compliance_kernel.logging_config import get_logger

logger = get_logger("config.schema")

PENALTY_STRATEGIES = ("none", "per_day")


@dataclass(frozen=True)
class TimeoutSettings:
    """Bounded timeouts for every I/O the engine performs.

    Contract: all values are positive.
    """
    source_ledger_seconds: float = 10.0
    event_publish_seconds: float = 5.0
    db_pool_timeout_seconds: int = 30
    db_statement_timeout_ms: int = 15000

    def __post_init__(self):
        for name in (
            "source_ledger_seconds",
            "event_publish_seconds",
            "db_pool_timeout_seconds",
            "db_statement_timeout_ms",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


@dataclass(frozen=True)
class WorkflowSettings:
    """Filing workflow knobs.

    Contract: ``elevated_roles`` is non-empty; ``reference_pattern``
    compiles; ``fiscal_year_start_month`` is 1..12.
    """
    elevated_roles: tuple[str, ...] = ("admin", "super_admin")
    reference_pattern: str = r"^[A-Z0-9][A-Z0-9/-]{5,29}$"
    fiscal_year_start_month: int = 4
    default_filing_frequency: str = "monthly"

    def __post_init__(self):
        if not self.elevated_roles:
            raise ValueError("elevated_roles cannot be empty")
        try:
            re.compile(self.reference_pattern)
        except re.error as exc:
            raise ValueError(f"reference_pattern does not compile: {exc}") from exc
        if not 1 <= self.fiscal_year_start_month <= 12:
            raise ValueError("fiscal_year_start_month must be between 1 and 12")
        if self.default_filing_frequency not in ("monthly", "quarterly"):
            raise ValueError(
                f"Unknown default_filing_frequency {self.default_filing_frequency!r}"
            )


@dataclass(frozen=True)
class PenaltySettings:
    """Which penalty strategy to use and its parameters."""
    strategy: str = "none"
    late_fee_per_day: Decimal = Decimal("0")
    late_fee_cap: Decimal = Decimal("0")
    annual_interest_rate: Decimal = Decimal("0")

    def __post_init__(self):
        if self.strategy not in PENALTY_STRATEGIES:
            raise ValueError(
                f"Unknown penalty strategy {self.strategy!r}; "
                f"expected one of {PENALTY_STRATEGIES}"
            )
        for name in ("late_fee_per_day", "late_fee_cap", "annual_interest_rate"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")


@dataclass(frozen=True)
class BatchSettings:
    max_workers: int = 4

    def __post_init__(self):
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")


@dataclass(frozen=True)
class ComplianceConfig:
    """
    The runtime configuration artifact.

    Contract:
        Obtained through ``compliance_config.get_active_config()`` (or
        ``with_defaults()`` in tests).  Services receive it at construction.
    """
    config_id: str = "default"
    version: int = 1
    thresholds: ReviewThresholds = field(default_factory=ReviewThresholds)
    due_dates: DueDateRules = field(default_factory=DueDateRules)
    penalties: PenaltySettings = field(default_factory=PenaltySettings)
    timeouts: TimeoutSettings = field(default_factory=TimeoutSettings)
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    batch: BatchSettings = field(default_factory=BatchSettings)
    checksum: str = ""

    @classmethod
    def with_defaults(cls) -> Self:
        """Configuration with every default in place."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict, checksum: str = "") -> Self:
        """Build from a parsed YAML mapping.  Unknown keys raise TypeError."""
        config = cls(
            config_id=str(data.get("config_id", "default")),
            version=int(data.get("version", 1)),
            thresholds=ReviewThresholds(
                **_decimals(data.get("review_thresholds", {}), exclude=("percentage_places",))
            ),
            due_dates=DueDateRules(**data.get("due_dates", {})),
            penalties=PenaltySettings(
                **_decimals(data.get("penalties", {}), exclude=("strategy",))
            ),
            timeouts=TimeoutSettings(**data.get("timeouts", {})),
            workflow=WorkflowSettings(**_tuples(data.get("workflow", {}), ("elevated_roles",))),
            batch=BatchSettings(**data.get("batch", {})),
            checksum=checksum,
        )
        logger.debug(
            "compliance_config_parsed",
            extra={"config_id": config.config_id, "version": config.version},
        )
        return config


def _decimals(section: dict, exclude: tuple[str, ...] = ()) -> dict:
    """Convert YAML numbers to Decimal via their string form."""
    return {
        key: value if key in exclude else Decimal(str(value))
        for key, value in section.items()
    }


def _tuples(section: dict, keys: tuple[str, ...]) -> dict:
    return {
        key: tuple(value) if key in keys else value
        for key, value in section.items()
    }

"""
Period Key -- the natural unique key across all engine state.

A Period Key identifies one client's compliance obligation for one calendar
month inside one fiscal year:

    PeriodKey(client_id="C1", period="2024-04", fiscal_year="2024-25")

Fiscal years are ``YYYY-YY`` tokens that start in a configurable month
(April by default), so ``2025-03`` still belongs to ``2024-25``.
"""

import re
from dataclasses import dataclass, field
from datetime import date, timedelta

from compliance_kernel.exceptions import ValidationError

DEFAULT_FISCAL_YEAR_START_MONTH = 4

_PERIOD_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
_FISCAL_YEAR_RE = re.compile(r"^(\d{4})-(\d{2})$")


def parse_period(period: str) -> tuple[int, int]:
    """Split a ``YYYY-MM`` token into (year, month)."""
    match = _PERIOD_RE.match(period or "")
    if match is None:
        raise ValidationError(
            f"Period must be a YYYY-MM token, got {period!r}", field="period"
        )
    return int(match.group(1)), int(match.group(2))


def fiscal_year_for(period: str, start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH) -> str:
    """Return the ``YYYY-YY`` fiscal year containing ``period``."""
    year, month = parse_period(period)
    first = year if month >= start_month else year - 1
    return f"{first}-{(first + 1) % 100:02d}"


def start_month_for(
    period: str, fiscal_year: str, preferred: int = DEFAULT_FISCAL_YEAR_START_MONTH
) -> int:
    """Fiscal-year start month under which ``period`` belongs to ``fiscal_year``.

    Used when rebuilding keys from storage.  ``preferred`` wins when it fits.
    """
    if fiscal_year_for(period, preferred) == fiscal_year:
        return preferred
    for month in range(1, 13):
        if fiscal_year_for(period, month) == fiscal_year:
            return month
    return preferred


def fiscal_year_periods(
    fiscal_year: str, start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH
) -> list[str]:
    """List the twelve ``YYYY-MM`` periods of a fiscal year, in order."""
    first = _parse_fiscal_year(fiscal_year)
    periods = []
    for offset in range(12):
        month_index = start_month - 1 + offset
        periods.append(f"{first + month_index // 12}-{month_index % 12 + 1:02d}")
    return periods


def _parse_fiscal_year(fiscal_year: str) -> int:
    match = _FISCAL_YEAR_RE.match(fiscal_year or "")
    if match is None:
        raise ValidationError(
            f"Fiscal year must be a YYYY-YY token, got {fiscal_year!r}",
            field="fiscal_year",
        )
    first = int(match.group(1))
    if int(match.group(2)) != (first + 1) % 100:
        raise ValidationError(
            f"Fiscal year {fiscal_year!r} does not span consecutive years",
            field="fiscal_year",
        )
    return first


@dataclass(frozen=True)
class PeriodKey:
    """
    Client + calendar period + fiscal year.

    Contract:
        Construction validates both tokens and that the period falls inside
        the fiscal year.  ``fy_start_month`` only drives that check; it does
        not take part in equality or hashing.
    """

    client_id: str
    period: str
    fiscal_year: str
    fy_start_month: int = field(
        default=DEFAULT_FISCAL_YEAR_START_MONTH, compare=False, repr=False
    )

    def __post_init__(self) -> None:
        if not self.client_id or not str(self.client_id).strip():
            raise ValidationError("client_id is required", field="client_id")
        if not 1 <= self.fy_start_month <= 12:
            raise ValidationError(
                f"Fiscal year start month must be 1-12, got {self.fy_start_month}",
                field="fy_start_month",
            )
        _parse_fiscal_year(self.fiscal_year)
        expected = fiscal_year_for(self.period, self.fy_start_month)
        if expected != self.fiscal_year:
            raise ValidationError(
                f"Period {self.period} belongs to fiscal year {expected}, "
                f"not {self.fiscal_year}",
                field="fiscal_year",
            )

    @classmethod
    def for_period(
        cls,
        client_id: str,
        period: str,
        fy_start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH,
    ) -> "PeriodKey":
        """Build a key, deriving the fiscal year from the period."""
        return cls(
            client_id=client_id,
            period=period,
            fiscal_year=fiscal_year_for(period, fy_start_month),
            fy_start_month=fy_start_month,
        )

    @property
    def year(self) -> int:
        return parse_period(self.period)[0]

    @property
    def month(self) -> int:
        return parse_period(self.period)[1]

    @property
    def period_start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def period_end(self) -> date:
        """Last calendar day of the period."""
        year, month = self.year, self.month
        if month == 12:
            return date(year, 12, 31)
        return date(year, month + 1, 1) - timedelta(days=1)

    def as_dict(self) -> dict[str, str]:
        return {
            "client_id": self.client_id,
            "period": self.period,
            "fiscal_year": self.fiscal_year,
        }

    def __str__(self) -> str:
        return f"{self.client_id}/{self.period}/{self.fiscal_year}"

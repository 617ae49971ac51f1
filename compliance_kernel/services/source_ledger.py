"""
Source ledger reader implementations.

``SqlSourceLedgerReader`` reads the ``source_records`` table through its own
short-lived session so a call abandoned by ``bounded_call`` never shares
the caller's session.  ``InMemorySourceLedgerReader`` serves fixed records
for tests and batch dry runs.
"""

import threading
import time
from collections import defaultdict
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from compliance_kernel.domain.collaborators import SourceLedgerReader
from compliance_kernel.domain.dtos import SourceLedgerRecord
from compliance_kernel.logging_config import get_logger
from compliance_kernel.models.source_record import SourceRecord

logger = get_logger("services.source_ledger")


class SqlSourceLedgerReader(SourceLedgerReader):
    """Reads source records from the database.  Never writes."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def query_records(self, client_id: str, period: str) -> list[SourceLedgerRecord]:
        session = self._session_factory()
        try:
            rows = session.scalars(
                select(SourceRecord)
                .where(
                    SourceRecord.client_id == client_id,
                    SourceRecord.period == period,
                )
                .order_by(SourceRecord.document_number)
            ).all()
            records = [row.to_dto() for row in rows]
        finally:
            session.close()

        logger.debug(
            "source_records_read",
            extra={"client_id": client_id, "period": period, "count": len(records)},
        )
        return records


class InMemorySourceLedgerReader(SourceLedgerReader):
    """
    Dictionary-backed reader keyed by (client_id, period).

    ``delay_seconds`` and ``fail_with`` make slow or failing upstreams
    reproducible.
    """

    def __init__(
        self,
        records: dict[tuple[str, str], list[SourceLedgerRecord]] | None = None,
        delay_seconds: float = 0.0,
        fail_with: Exception | None = None,
    ):
        self._records: dict[tuple[str, str], list[SourceLedgerRecord]] = defaultdict(list)
        for key, items in (records or {}).items():
            self._records[key].extend(items)
        self._lock = threading.Lock()
        self.delay_seconds = delay_seconds
        self.fail_with = fail_with
        self.calls = 0

    def add(self, client_id: str, period: str, *records: SourceLedgerRecord) -> None:
        with self._lock:
            self._records[(client_id, period)].extend(records)

    def replace(self, client_id: str, period: str, records: list[SourceLedgerRecord]) -> None:
        with self._lock:
            self._records[(client_id, period)] = list(records)

    def query_records(self, client_id: str, period: str) -> list[SourceLedgerRecord]:
        with self._lock:
            self.calls += 1
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        if self.fail_with is not None:
            raise self.fail_with
        with self._lock:
            return list(self._records.get((client_id, period), []))

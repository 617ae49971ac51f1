"""
compliance_services.reconciliation_batch -- claimed credit for many clients.

Responsibility:
    Runs ``ReconciliationService.compute_claimed_credit`` for a list of
    clients in one period on a bounded worker pool.  Each worker opens its
    own session from the session factory; no session crosses threads.

Invariants enforced:
    - Per-client failures are reported in the result, never raised, so one
      bad client does not abort the batch.
    - Results come back in input order.

Usage:
    runner = ReconciliationBatchRunner(
        session_factory=get_session_factory(),
        config=get_active_config(),
        reader=SqlSourceLedgerReader(get_session_factory()),
        publisher=LoggingEventPublisher(),
    )
    result = runner.compute_claimed_credit_for_clients(["C001", "C002"], "2024-05", actor_id)
"""

from __future__ import annotations

import contextvars
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from compliance_config.schema import ComplianceConfig
from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.domain.collaborators import EventPublisher, SourceLedgerReader
from compliance_kernel.domain.dtos import ReconciliationInfo
from compliance_kernel.domain.period_key import PeriodKey
from compliance_kernel.exceptions import ComplianceKernelError
from compliance_kernel.logging_config import LogContext, get_logger
from compliance_services.reconciliation_service import ReconciliationService

logger = get_logger("services.reconciliation_batch")


@dataclass(frozen=True)
class BatchItemResult:
    client_id: str
    reconciliation: ReconciliationInfo | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error_code is None


@dataclass(frozen=True)
class BatchResult:
    period: str
    items: tuple[BatchItemResult, ...]

    @property
    def succeeded(self) -> tuple[BatchItemResult, ...]:
        return tuple(i for i in self.items if i.succeeded)

    @property
    def failed(self) -> tuple[BatchItemResult, ...]:
        return tuple(i for i in self.items if not i.succeeded)


class ReconciliationBatchRunner:
    """
    Concurrent claimed-credit computation across clients.

    Contract:
        ``session_factory`` returns a new Session per call.  Worker count
        comes from ``config.batch.max_workers``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: ComplianceConfig,
        reader: SourceLedgerReader,
        publisher: EventPublisher,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config
        self._reader = reader
        self._publisher = publisher
        self._clock = clock or SystemClock()

    def compute_claimed_credit_for_clients(
        self,
        client_ids: Sequence[str],
        period: str,
        actor_id: UUID,
    ) -> BatchResult:
        t0 = time.monotonic()
        with LogContext.bind(correlation_id=uuid4(), actor_id=actor_id, period=period):
            logger.info(
                "reconciliation_batch_started",
                extra={"client_count": len(client_ids)},
            )
            with ThreadPoolExecutor(
                max_workers=self._config.batch.max_workers,
                thread_name_prefix="reconciliation-batch",
            ) as pool:
                futures = [
                    pool.submit(
                        contextvars.copy_context().run,
                        self._run_one,
                        client_id,
                        period,
                        actor_id,
                    )
                    for client_id in client_ids
                ]
                items = tuple(f.result() for f in futures)

            result = BatchResult(period=period, items=items)
            logger.info(
                "reconciliation_batch_completed",
                extra={
                    "succeeded": len(result.succeeded),
                    "failed": len(result.failed),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return result

    def _run_one(self, client_id: str, period: str, actor_id: UUID) -> BatchItemResult:
        session = self._session_factory()
        try:
            period_key = PeriodKey.for_period(
                client_id, period, self._config.workflow.fiscal_year_start_month
            )
            service = ReconciliationService(
                session=session,
                config=self._config,
                reader=self._reader,
                publisher=self._publisher,
                clock=self._clock,
            )
            info = service.compute_claimed_credit(period_key, actor_id)
            return BatchItemResult(client_id=client_id, reconciliation=info)
        except ComplianceKernelError as exc:
            logger.warning(
                "reconciliation_batch_item_failed",
                extra={"client_id": client_id, "error_code": exc.code},
            )
            return BatchItemResult(
                client_id=client_id, error_code=exc.code, error_message=str(exc)
            )
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(
                "reconciliation_batch_item_failed",
                extra={"client_id": client_id, "error_code": "DATABASE_ERROR"},
                exc_info=True,
            )
            return BatchItemResult(
                client_id=client_id, error_code="DATABASE_ERROR", error_message=str(exc)
            )
        finally:
            session.close()

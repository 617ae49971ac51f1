"""
Module: compliance_kernel.models.filing_step
Responsibility: ORM persistence for the step ledger -- one row per
    transition attempt against a filing record.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Append-only: a row is inserted non-terminal (pending / in_progress),
      updated exactly once to completed / failed / skipped, and never
      changed or deleted afterwards (db/immutability.py).
    - ``seq`` is monotonic per filing (uq_filing_step_seq) and is the
      canonical replay order.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import Base, UUIDString
from compliance_kernel.domain.dtos import StepEntryInfo, StepStatus, StepType


class FilingStep(Base):
    """
    One step ledger entry.

    Contract:
        Written only by StepLedgerService.  The filing record does not hold
        a relationship to its steps; queries go through filing_id.
    """

    __tablename__ = "filing_steps"
    __table_args__ = (
        UniqueConstraint("filing_id", "seq", name="uq_filing_step_seq"),
        Index("idx_filing_step_filing", "filing_id"),
        Index("idx_filing_step_status", "status"),
    )

    filing_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("filing_records.id"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    step_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)

    performed_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_role: Mapped[str | None] = mapped_column(String(50), nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<FilingStep #{self.seq} {self.step_type}: {self.status}>"

    @property
    def is_terminal(self) -> bool:
        return StepStatus(self.status).is_terminal

    def to_dto(self) -> StepEntryInfo:
        return StepEntryInfo(
            id=self.id,
            filing_id=self.filing_id,
            seq=self.seq,
            step_type=StepType(self.step_type),
            status=StepStatus(self.status),
            performed_by_id=self.performed_by_id,
            actor_role=self.actor_role,
            started_at=self.started_at,
            completed_at=self.completed_at,
            comments=self.comments,
            changes=dict(self.changes or {}),
            error_code=self.error_code,
            error_message=self.error_message,
        )

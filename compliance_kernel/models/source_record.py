"""
Module: compliance_kernel.models.source_record
Responsibility: Read model over purchase/sale line items.  Populated by the
    external ingestion system; the engine only reads it through
    SqlSourceLedgerReader.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import Base
from compliance_kernel.domain.dtos import SourceLedgerRecord, SourceRecordType


class SourceRecord(Base):
    """One purchase or sale document line for a client period."""

    __tablename__ = "source_records"
    __table_args__ = (
        Index("idx_source_client_period", "client_id", "period", "record_type"),
    )

    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    fiscal_year: Mapped[str] = mapped_column(String(7), nullable=False)
    record_type: Mapped[str] = mapped_column(String(20), nullable=False)
    document_number: Mapped[str] = mapped_column(String(64), nullable=False)
    counterparty_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    document_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    taxable_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    central_tax: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    state_tax: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    integrated_tax: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<SourceRecord {self.record_type} {self.document_number}>"

    def to_dto(self) -> SourceLedgerRecord:
        return SourceLedgerRecord(
            document_number=self.document_number,
            record_type=SourceRecordType(self.record_type),
            central_tax=self.central_tax,
            state_tax=self.state_tax,
            integrated_tax=self.integrated_tax,
            taxable_amount=self.taxable_amount,
            total_amount=self.total_amount,
            counterparty_ref=self.counterparty_ref,
            document_date=self.document_date,
        )

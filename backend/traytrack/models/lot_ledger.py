"""LotLedgerEntry — append-only record of every lot minted for a tray.

Rows are inserted by ``services.lot_ledger.mint_lot`` and never updated or
deleted.  ``run_sequence_no`` is the per-tray, per-day running number the
lot number is derived from, so sorting on it gives mint order.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from traytrack.database import Base, utcnow


class LotLedgerEntry(Base):
    __tablename__ = "lot_ledger"

    run_sequence_no: Mapped[str] = mapped_column(String(40), primary_key=True)
    lot_number: Mapped[str] = mapped_column(String(150), unique=True, nullable=False)

    tray_document_id: Mapped[str] = mapped_column(
        String(20), ForeignKey("tray_documents.id"), nullable=False
    )
    part_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("parts.id"), nullable=False
    )
    # Null for the root lot minted at document creation
    scan_record_id: Mapped[str | None] = mapped_column(
        String(20), ForeignKey("scan_records.id")
    )

    created_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    tray_document = relationship("TrayDocument", back_populates="lots")
    part = relationship("Part")

    __table_args__ = (
        Index("ix_lot_ledger_tray_lot", "tray_document_id", "lot_number"),
    )

"""TransferRecord — one edge of the lot lineage graph.

Immutable and append-only.  A MASTER finish writes one edge, a SPLIT one
edge per output lot (all sharing ``from_lot_number``) and a MERGE one edge
per input lot (all sharing ``to_lot_number``).
"""

import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from traytrack.database import Base, utcnow


class TransferReason(enum.IntEnum):
    MASTER = 1
    SPLIT = 2
    MERGE = 3


class TransferRecord(Base):
    __tablename__ = "transfer_records"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)

    from_lot_number: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    to_lot_number: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    transfer_reason_code: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    scan_record_id: Mapped[str] = mapped_column(
        String(20), ForeignKey("scan_records.id"), nullable=False, index=True
    )
    tray_document_id: Mapped[str] = mapped_column(
        String(20), ForeignKey("tray_documents.id"), nullable=False, index=True
    )
    machine_id: Mapped[str] = mapped_column(
        String(20), ForeignKey("machines.id"), nullable=False
    )
    station_id: Mapped[str | None] = mapped_column(
        String(20), ForeignKey("stations.id")
    )

    created_by: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    scan_record = relationship("ScanRecord", back_populates="transfers")

"""ScanRecord — one station visit of a tray (open → closed).

A scan is OPEN while ``finished_at`` is null.  At most one open scan may
exist per tray document; the partial unique index below enforces that in
the database as well as in the scan lifecycle.  Finishing is a single
terminal write: quantities, reason code and ``finished_at`` are set once.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from traytrack.database import Base, utcnow


class ScanRecord(Base):
    __tablename__ = "scan_records"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)

    tray_document_id: Mapped[str] = mapped_column(
        String(20), ForeignKey("tray_documents.id"), nullable=False, index=True
    )
    station_id: Mapped[str | None] = mapped_column(
        String(20), ForeignKey("stations.id")
    )
    machine_id: Mapped[str] = mapped_column(
        String(20), ForeignKey("machines.id"), nullable=False
    )
    operator_id: Mapped[str] = mapped_column(String(36), nullable=False)

    # Lot the tray carried when the scan was opened
    lot_number_at_start: Mapped[str | None] = mapped_column(String(150))

    # ── Quantities (zero until finish) ───────────────────────
    total_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    scrap_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    good_qty: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # 1 = master, 2 = split, 3 = merge (last group processed)
    transfer_reason_code: Mapped[int | None] = mapped_column(Integer)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, index=True)
    finished_by: Mapped[str | None] = mapped_column(String(36))

    tray_document = relationship("TrayDocument", back_populates="scans")
    station = relationship("Station")
    transfers = relationship(
        "TransferRecord",
        back_populates="scan_record",
        order_by="TransferRecord.id",
    )

    __table_args__ = (
        Index(
            "uq_scan_records_open_per_tray",
            "tray_document_id",
            unique=True,
            postgresql_where=text("finished_at IS NULL"),
            sqlite_where=text("finished_at IS NULL"),
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.finished_at is None

    @property
    def result(self) -> str | None:
        """OK / NG summary of the recorded quantities."""
        if self.good_qty > 0 and self.scrap_qty > 0:
            return "OK, NG"
        if self.good_qty > 0:
            return "OK"
        if self.scrap_qty > 0:
            return "NG"
        return None

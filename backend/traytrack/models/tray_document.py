"""TrayDocument — one physical tray's journey through the stations.

The aggregate root of the lineage core.  ``current_lot_number`` and
``current_part_id`` always point at the most recently minted lot and are
written only by ``services.lot_ledger.mint_lot``; ``status`` is written only
by the scan lifecycle.

Lifecycle:  not_started → in_progress ⇄ partial_done → finished
"""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from traytrack.database import Base, utcnow


class TrayStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PARTIAL_DONE = "partial_done"
    FINISHED = "finished"


# Forward-only; partial_done re-opens on the next start
ALLOWED_TRANSITIONS: dict[TrayStatus, set[TrayStatus]] = {
    TrayStatus.NOT_STARTED: {TrayStatus.IN_PROGRESS},
    TrayStatus.IN_PROGRESS: {TrayStatus.PARTIAL_DONE, TrayStatus.FINISHED},
    TrayStatus.PARTIAL_DONE: {TrayStatus.IN_PROGRESS},
    TrayStatus.FINISHED: set(),
}


class TrayDocument(Base):
    __tablename__ = "tray_documents"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)

    # ── Current lineage pointer ──────────────────────────────
    current_lot_number: Mapped[str | None] = mapped_column(String(150))
    current_part_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("parts.id")
    )

    status: Mapped[TrayStatus] = mapped_column(
        SAEnum(TrayStatus, native_enum=False, length=20),
        default=TrayStatus.NOT_STARTED,
        nullable=False,
        index=True,
    )

    # ── Origin ───────────────────────────────────────────────
    origin_machine_id: Mapped[str | None] = mapped_column(
        String(20), ForeignKey("machines.id")
    )
    origin_station_id: Mapped[str | None] = mapped_column(
        String(20), ForeignKey("stations.id")
    )

    created_by: Mapped[str | None] = mapped_column(String(36))  # operator / admin id
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    current_part = relationship("Part")
    lots = relationship(
        "LotLedgerEntry",
        back_populates="tray_document",
        order_by="LotLedgerEntry.run_sequence_no",
    )
    scans = relationship("ScanRecord", back_populates="tray_document")

    def advance_status(self, new_status: TrayStatus) -> None:
        """Move to ``new_status``; a no-op when already there."""
        if new_status == self.status:
            return
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise ValueError(
                f"Tray document {self.id}: illegal status transition "
                f"{self.status.value} -> {new_status.value}"
            )
        self.status = new_status

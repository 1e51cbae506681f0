"""Tray document creation and read models (lineage, summary)."""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from traytrack.middleware.exceptions import InvalidInputError, ReferenceNotFoundError
from traytrack.models.lot_ledger import LotLedgerEntry
from traytrack.models.master import Machine, Part, Station
from traytrack.models.scan_record import ScanRecord
from traytrack.models.transfer_record import TransferRecord
from traytrack.models.tray_document import TrayDocument, TrayStatus
from traytrack.services.lot_ledger import get_part_by_number, list_lots, mint_lot
from traytrack.services.scan_lifecycle import last_finished_scan
from traytrack.services.stations import (
    first_active_station,
    get_station,
    next_active_after,
    station_ref,
)
from traytrack.utils.numbering import generate_code

logger = logging.getLogger(__name__)


async def create_tray_document(
    db: AsyncSession,
    *,
    part_number: str,
    machine_id: str,
    actor_id: str,
) -> tuple[TrayDocument, LotLedgerEntry]:
    """Create a tray document and mint its root lot.

    The root lot has no parent, so no transfer record is written.
    """
    part = await get_part_by_number(db, part_number)

    machine = await db.get(Machine, machine_id)
    if machine is None:
        raise ReferenceNotFoundError("Machine", machine_id)
    if not machine.active:
        raise ReferenceNotFoundError("Machine", machine_id, reason="is inactive")
    if not machine.assigned_station_id:
        raise InvalidInputError(
            f"Machine {machine_id} is not assigned to a station",
            error_code="MACHINE_UNASSIGNED",
            machine_id=machine_id,
        )
    station = await get_station(db, machine.assigned_station_id, machine_id=machine.id)

    tray = TrayDocument(
        id=await generate_code(db, "tray_document"),
        status=TrayStatus.NOT_STARTED,
        origin_machine_id=machine.id,
        origin_station_id=station.id,
        created_by=actor_id,
    )
    db.add(tray)
    await db.flush()

    root_lot = await mint_lot(db, tray, part, actor_id)
    logger.info("Tray document %s created at station %s by %s", tray.id, station.id, actor_id)
    return tray, root_lot


async def get_tray_document(db: AsyncSession, tray_document_id: str) -> TrayDocument:
    tray = await db.get(TrayDocument, tray_document_id)
    if tray is None:
        raise ReferenceNotFoundError("TrayDocument", tray_document_id)
    return tray


async def list_tray_documents(
    db: AsyncSession,
    *,
    status: TrayStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[TrayDocument], int]:
    base_stmt = select(TrayDocument)
    if status is not None:
        base_stmt = base_stmt.where(TrayDocument.status == status)

    count_stmt = select(func.count()).select_from(base_stmt.subquery())
    total = await db.scalar(count_stmt) or 0

    result = await db.execute(
        base_stmt
        .order_by(TrayDocument.created_at.desc(), TrayDocument.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def get_lineage(
    db: AsyncSession, tray_document_id: str
) -> tuple[list[LotLedgerEntry], list[TransferRecord]]:
    """Lots in mint order and transfer records in creation order."""
    await get_tray_document(db, tray_document_id)
    lots = await list_lots(db, tray_document_id)
    result = await db.execute(
        select(TransferRecord)
        .where(TransferRecord.tray_document_id == tray_document_id)
        .order_by(TransferRecord.created_at, TransferRecord.id)
    )
    return lots, list(result.scalars().all())


async def get_tray_summary(db: AsyncSession, tray_document_id: str) -> dict:
    tray = await get_tray_document(db, tray_document_id)

    result = await db.execute(
        select(ScanRecord, Station.sequence_position)
        .outerjoin(Station, Station.id == ScanRecord.station_id)
        .where(ScanRecord.tray_document_id == tray.id)
        .order_by(ScanRecord.started_at, ScanRecord.id)
    )
    rows = result.all()

    visits = []
    active_scan_id = None
    for scan, position in rows:
        if scan.is_open:
            active_scan_id = scan.id
            continue
        visits.append({
            "scan_record_id": scan.id,
            "station_id": scan.station_id,
            "sequence_position": position,
            "good_qty": scan.good_qty,
            "scrap_qty": scan.scrap_qty,
            "finished_at": scan.finished_at,
        })

    next_station = None
    if tray.status != TrayStatus.FINISHED:
        previous = await last_finished_scan(db, tray.id)
        if previous is None:
            next_station = await first_active_station(db)
        else:
            position = next(
                (v["sequence_position"] for v in visits if v["scan_record_id"] == previous.id),
                None,
            )
            if position is not None:
                next_station = await next_active_after(db, position)

    # Good units carry forward station to station; scrap leaves the tray at each one
    latest = max(visits, key=lambda v: (v["finished_at"], v["scan_record_id"]), default=None)
    part = await db.get(Part, tray.current_part_id) if tray.current_part_id else None

    return {
        "tray_document_id": tray.id,
        "status": tray.status,
        "current_lot_number": tray.current_lot_number,
        "current_part_id": tray.current_part_id,
        "current_part_number": part.number if part else None,
        "total_good_qty": latest["good_qty"] if latest else 0,
        "total_scrap_qty": sum(v["scrap_qty"] for v in visits),
        "stations_visited": visits,
        "active_scan_id": active_scan_id,
        "next_station": station_ref(next_station),
    }

"""Scan lifecycle — the tray-lineage state machine.

    start_scan   open a scan at the operator's station
    finish_scan  close it, applying MASTER / SPLIT / MERGE transforms

Both run inside the caller's ``atomic(db)`` block.  Rows are locked in a
fixed order (tray document, then its open scan, then identifier scopes)
so two requests against the same tray queue behind each other and
requests against different trays never contend.

Every check runs before the first write.  A rejected request leaves no
trace; an accepted one commits the scan, lots and transfers together.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from traytrack.database import utcnow
from traytrack.middleware.exceptions import (
    ActiveScanConflictError,
    AlreadyFinishedError,
    BackwardMovementRejectedError,
    InvalidInputError,
    MachineStationMismatchError,
    QuantityMismatchError,
    ReferenceNotFoundError,
)
from traytrack.models.lot_ledger import LotLedgerEntry
from traytrack.models.master import Machine, Part
from traytrack.models.scan_record import ScanRecord
from traytrack.models.transfer_record import TransferReason, TransferRecord
from traytrack.models.tray_document import TrayDocument, TrayStatus
from traytrack.schemas.scan import FinishScanRequest, MasterGroup, MergeGroup, SplitGroup
from traytrack.services.lot_ledger import get_part_by_number, lot_exists, mint_lot
from traytrack.services.stations import (
    get_station,
    is_terminal,
    next_active_after,
    sequence_of,
    station_ref,
)
from traytrack.utils.numbering import generate_code

logger = logging.getLogger(__name__)

MAX_ACTIVE_SCANS = 200


@dataclass
class FinishOutcome:
    scan: ScanRecord
    tray_document: TrayDocument
    minted_lots: list[LotLedgerEntry] = field(default_factory=list)
    transfers: list[TransferRecord] = field(default_factory=list)


# ── Locking reads ────────────────────────────────────────────

async def lock_tray_document(db: AsyncSession, tray_document_id: str) -> TrayDocument:
    result = await db.execute(
        select(TrayDocument)
        .where(TrayDocument.id == tray_document_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    tray = result.scalar_one_or_none()
    if tray is None:
        raise ReferenceNotFoundError("TrayDocument", tray_document_id)
    return tray


async def _lock_scan(db: AsyncSession, scan_record_id: str) -> ScanRecord:
    result = await db.execute(
        select(ScanRecord)
        .where(ScanRecord.id == scan_record_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _open_scan(
    db: AsyncSession, tray_document_id: str, *, lock: bool = False
) -> ScanRecord | None:
    stmt = select(ScanRecord).where(
        ScanRecord.tray_document_id == tray_document_id,
        ScanRecord.finished_at.is_(None),
    )
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def last_finished_scan(db: AsyncSession, tray_document_id: str) -> ScanRecord | None:
    result = await db.execute(
        select(ScanRecord)
        .where(
            ScanRecord.tray_document_id == tray_document_id,
            ScanRecord.finished_at.is_not(None),
        )
        .order_by(ScanRecord.finished_at.desc(), ScanRecord.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


# ── Start ────────────────────────────────────────────────────

async def start_scan(
    db: AsyncSession,
    *,
    tray_document_id: str,
    machine_id: str,
    operator_id: str,
    station_id: str | None,
) -> ScanRecord:
    """Open a scan for ``tray_document_id`` at the operator's bound station.

    Raises:
        InvalidInputError: operator is not bound to a station
        ReferenceNotFoundError: tray, machine or station missing/inactive
        MachineStationMismatchError: machine belongs to another station
        ActiveScanConflictError: the tray already has an open scan
        AlreadyFinishedError: the tray finished its last station
        BackwardMovementRejectedError: station is not after the last finished one
    """
    if not station_id:
        raise InvalidInputError(
            "Operator is not bound to a station",
            error_code="STATION_NOT_BOUND",
            operator_id=operator_id,
            tray_document_id=tray_document_id,
        )

    tray = await lock_tray_document(db, tray_document_id)

    machine = await db.get(Machine, machine_id)
    if machine is None:
        raise ReferenceNotFoundError("Machine", machine_id, tray_document_id=tray.id)
    if not machine.active:
        raise ReferenceNotFoundError(
            "Machine", machine_id, reason="is inactive", tray_document_id=tray.id
        )
    station = await get_station(db, station_id, tray_document_id=tray.id, machine_id=machine.id)
    if machine.assigned_station_id != station.id:
        raise MachineStationMismatchError(
            machine.id, station.id, machine.assigned_station_id, tray_document_id=tray.id
        )

    open_scan = await _open_scan(db, tray.id, lock=True)
    if open_scan is not None:
        raise ActiveScanConflictError(tray.id, open_scan.id, station_id=open_scan.station_id)

    if tray.status == TrayStatus.FINISHED:
        raise AlreadyFinishedError(
            f"Tray document {tray.id} has already finished",
            tray_document_id=tray.id,
            lot_number=tray.current_lot_number,
        )

    previous = await last_finished_scan(db, tray.id)
    if previous is not None and previous.station_id is not None:
        last_position = await sequence_of(db, previous.station_id, tray_document_id=tray.id)
        if station.sequence_position <= last_position:
            suggestion = await next_active_after(db, last_position)
            raise BackwardMovementRejectedError(
                tray.id,
                station.id,
                previous.station_id,
                station_ref(suggestion),
                scan_record_id=previous.id,
            )

    scan = ScanRecord(
        id=await generate_code(db, "scan_record"),
        tray_document_id=tray.id,
        station_id=station.id,
        machine_id=machine.id,
        operator_id=operator_id,
        lot_number_at_start=tray.current_lot_number,
        started_at=utcnow(),
    )
    db.add(scan)
    tray.advance_status(TrayStatus.IN_PROGRESS)
    await db.flush()

    logger.info(
        "Scan %s started: tray %s at station %s (machine %s, operator %s)",
        scan.id, tray.id, station.id, machine.id, operator_id,
    )
    return scan


# ── Finish ───────────────────────────────────────────────────

async def _resolve_parts(
    db: AsyncSession, scan: ScanRecord, tray: TrayDocument, body: FinishScanRequest
) -> dict[int, list[Part]]:
    """Output parts per group index, in mint order."""
    cache: dict[str, Part] = {}

    async def resolve(number: str) -> Part:
        if number not in cache:
            cache[number] = await get_part_by_number(
                db, number, scan_record_id=scan.id, tray_document_id=tray.id
            )
        return cache[number]

    resolved: dict[int, list[Part]] = {}
    for idx, group in enumerate(body.transform_groups):
        if isinstance(group, MasterGroup):
            resolved[idx] = [await resolve(group.out_part_no)]
        elif isinstance(group, SplitGroup):
            resolved[idx] = [await resolve(e.out_part_no) for e in group.entries]
        else:
            if group.out_part_no:
                resolved[idx] = [await resolve(group.out_part_no)]
            else:
                current = await db.get(Part, tray.current_part_id) if tray.current_part_id else None
                if current is None:
                    raise ReferenceNotFoundError(
                        "Part", str(tray.current_part_id), scan_record_id=scan.id, tray_document_id=tray.id
                    )
                resolved[idx] = [current]
    return resolved


async def _validate_finish(
    db: AsyncSession, scan: ScanRecord, tray: TrayDocument, body: FinishScanRequest
) -> None:
    ids = {"scan_record_id": scan.id, "tray_document_id": tray.id}

    group_total = sum(g.qty for g in body.transform_groups)
    if group_total != body.good_qty:
        raise QuantityMismatchError(
            "Transform group quantities must add up to good_qty",
            expected=body.good_qty, actual=group_total, **ids,
        )

    consumed: list[str] = []
    for idx, group in enumerate(body.transform_groups):
        if isinstance(group, SplitGroup):
            entry_total = sum(e.qty for e in group.entries)
            if entry_total != group.qty:
                raise QuantityMismatchError(
                    "Split entries must add up to the group quantity",
                    expected=group.qty, actual=entry_total, group_index=idx, **ids,
                )
        if isinstance(group, MergeGroup):
            input_total = sum(i.qty for i in group.inputs)
            if input_total != group.qty:
                raise QuantityMismatchError(
                    "Merge inputs must add up to the group quantity",
                    expected=group.qty, actual=input_total, group_index=idx, **ids,
                )
            for item in group.inputs:
                if not await lot_exists(db, tray.id, item.from_lot_number):
                    raise ReferenceNotFoundError(
                        "Lot",
                        item.from_lot_number,
                        reason="not minted for this tray document",
                        group_index=idx,
                        **ids,
                    )
                consumed.append(item.from_lot_number)
        else:
            consumed.append(tray.current_lot_number)

    seen: set[str] = set()
    for lot_number in consumed:
        if lot_number in seen:
            raise InvalidInputError(
                f"Lot {lot_number} is consumed by more than one transform group",
                error_code="LOT_CONSUMED_TWICE",
                lot_number=lot_number,
                **ids,
            )
        seen.add(lot_number)

    previous = await last_finished_scan(db, tray.id)
    if previous is not None:
        entering = group_total + body.scrap_qty
        if entering != previous.good_qty:
            raise QuantityMismatchError(
                "Quantity at this station must equal the previous station's good quantity",
                expected=previous.good_qty,
                actual=entering,
                previous_scan_record_id=previous.id,
                **ids,
            )


async def _record_transfer(
    db: AsyncSession,
    scan: ScanRecord,
    *,
    from_lot: str,
    to_lot: str,
    reason: TransferReason,
    quantity: int,
    actor_id: str,
) -> TransferRecord:
    transfer = TransferRecord(
        id=await generate_code(db, "transfer_record"),
        from_lot_number=from_lot,
        to_lot_number=to_lot,
        transfer_reason_code=int(reason),
        quantity=quantity,
        scan_record_id=scan.id,
        tray_document_id=scan.tray_document_id,
        machine_id=scan.machine_id,
        station_id=scan.station_id,
        created_by=actor_id,
    )
    db.add(transfer)
    await db.flush()
    return transfer


async def finish_scan(
    db: AsyncSession,
    scan_record_id: str,
    body: FinishScanRequest,
    *,
    operator_id: str,
) -> FinishOutcome:
    """Close an open scan and apply its lineage transforms.

    The tray becomes FINISHED when the scan's station is terminal.  A full-scrap
    finish (good_qty == 0, no transform groups) mints nothing and also
    finishes the tray at any station.
    Otherwise the tray goes to PARTIAL_DONE.

    Raises:
        ReferenceNotFoundError: scan, output part or merge input lot missing
        AlreadyFinishedError: the scan was closed by an earlier request
        QuantityMismatchError: a sum rule does not hold
        InvalidInputError: a lot is consumed by two groups
    """
    found = await db.get(ScanRecord, scan_record_id)
    if found is None:
        raise ReferenceNotFoundError("ScanRecord", scan_record_id)

    # tray first, then scan: same order as start_scan
    tray = await lock_tray_document(db, found.tray_document_id)
    scan = await _lock_scan(db, scan_record_id)
    if not scan.is_open:
        raise AlreadyFinishedError(
            f"Scan record {scan.id} is already finished",
            scan_record_id=scan.id,
            tray_document_id=tray.id,
            finished_at=scan.finished_at.isoformat(),
        )

    await _validate_finish(db, scan, tray, body)
    parts = await _resolve_parts(db, scan, tray, body)
    station = await get_station(
        db, scan.station_id, require_active=False,
        scan_record_id=scan.id, tray_document_id=tray.id,
    )

    # ── Writes ──
    outcome = FinishOutcome(scan=scan, tray_document=tray)
    source_lot = tray.current_lot_number

    async def mint(part: Part) -> LotLedgerEntry:
        lot = await mint_lot(db, tray, part, operator_id, scan_record_id=scan.id)
        outcome.minted_lots.append(lot)
        return lot

    for idx, group in enumerate(body.transform_groups):
        if isinstance(group, MasterGroup):
            lot = await mint(parts[idx][0])
            outcome.transfers.append(await _record_transfer(
                db, scan, from_lot=source_lot, to_lot=lot.lot_number,
                reason=TransferReason.MASTER, quantity=group.qty, actor_id=operator_id,
            ))
        elif isinstance(group, SplitGroup):
            for entry, part in zip(group.entries, parts[idx]):
                lot = await mint(part)
                outcome.transfers.append(await _record_transfer(
                    db, scan, from_lot=source_lot, to_lot=lot.lot_number,
                    reason=TransferReason.SPLIT, quantity=entry.qty, actor_id=operator_id,
                ))
        else:
            lot = await mint(parts[idx][0])
            for item in group.inputs:
                outcome.transfers.append(await _record_transfer(
                    db, scan, from_lot=item.from_lot_number, to_lot=lot.lot_number,
                    reason=TransferReason.MERGE, quantity=item.qty, actor_id=operator_id,
                ))

    scan.good_qty = body.good_qty
    scan.scrap_qty = body.scrap_qty
    scan.total_qty = body.good_qty + body.scrap_qty
    if body.transform_groups:
        scan.transfer_reason_code = body.transform_groups[-1].transfer_reason_code
    scan.finished_at = utcnow()
    scan.finished_by = operator_id

    if body.good_qty == 0 or await is_terminal(db, station):
        tray.advance_status(TrayStatus.FINISHED)
    else:
        tray.advance_status(TrayStatus.PARTIAL_DONE)
    await db.flush()

    logger.info(
        "Scan %s finished: tray %s -> %s, good=%d scrap=%d, %d lot(s) minted",
        scan.id, tray.id, tray.status.value, scan.good_qty, scan.scrap_qty,
        len(outcome.minted_lots),
    )
    return outcome


# ── Reads ────────────────────────────────────────────────────

async def get_scan(db: AsyncSession, scan_record_id: str) -> ScanRecord:
    scan = await db.get(ScanRecord, scan_record_id)
    if scan is None:
        raise ReferenceNotFoundError("ScanRecord", scan_record_id)
    return scan


async def get_active_scan(db: AsyncSession, tray_document_id: str) -> ScanRecord | None:
    """The open scan of a tray document, or None when it is idle."""
    if await db.get(TrayDocument, tray_document_id) is None:
        raise ReferenceNotFoundError("TrayDocument", tray_document_id)
    return await _open_scan(db, tray_document_id)


async def list_active_scans(db: AsyncSession, limit: int = 50) -> list[ScanRecord]:
    result = await db.execute(
        select(ScanRecord)
        .where(ScanRecord.finished_at.is_(None))
        .order_by(ScanRecord.started_at.desc(), ScanRecord.id.desc())
        .limit(min(limit, MAX_ACTIVE_SCANS))
    )
    return list(result.scalars().all())


async def list_scans_for_tray(db: AsyncSession, tray_document_id: str) -> list[ScanRecord]:
    if await db.get(TrayDocument, tray_document_id) is None:
        raise ReferenceNotFoundError("TrayDocument", tray_document_id)
    result = await db.execute(
        select(ScanRecord)
        .where(ScanRecord.tray_document_id == tray_document_id)
        .order_by(ScanRecord.started_at.desc(), ScanRecord.id.desc())
    )
    return list(result.scalars().all())

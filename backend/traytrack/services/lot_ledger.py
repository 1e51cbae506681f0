"""Lot ledger — minting lots and checking lot ownership.

Every lot a tray document ever carried is appended here.  ``mint_lot`` is
the only code path that writes a tray document's current lot/part pointer,
and it must run inside the transaction of the operation it serves (document
creation or scan finish) so a lot is never minted without being applied.

Lot number:  {YYMMDD}-{part number}-{run sequence}
  e.g. 260209-382-B42-002D-TK26020900012602090003

The run sequence embeds the tray document id and the day, so lot numbers
are globally unique and sort in mint order within a tray.
"""

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from traytrack.middleware.exceptions import ReferenceNotFoundError
from traytrack.models.lot_ledger import LotLedgerEntry
from traytrack.models.master import Part
from traytrack.models.tray_document import TrayDocument
from traytrack.utils.numbering import business_date, generate_code

logger = logging.getLogger(__name__)


def build_lot_number(on: date, part_number: str, run_sequence_no: str) -> str:
    return f"{on:%y%m%d}-{part_number.strip()}-{run_sequence_no}"


async def get_part_by_number(db: AsyncSession, part_number: str, **context) -> Part:
    """Resolve a part by number; ``context`` ids are attached to the error."""
    result = await db.execute(select(Part).where(Part.number == part_number.strip()))
    part = result.scalar_one_or_none()
    if part is None:
        raise ReferenceNotFoundError("Part", part_number, **context)
    return part


async def mint_lot(
    db: AsyncSession,
    tray_document: TrayDocument,
    part: Part,
    actor_id: str,
    *,
    scan_record_id: str | None = None,
) -> LotLedgerEntry:
    """Append a new lot for ``tray_document`` and point the document at it.

    The caller must hold the tray document's row lock.
    """
    today = business_date()
    run_sequence_no = await generate_code(
        db, "lot_run", on=today, tray_document_id=tray_document.id
    )
    entry = LotLedgerEntry(
        run_sequence_no=run_sequence_no,
        lot_number=build_lot_number(today, part.number, run_sequence_no),
        tray_document_id=tray_document.id,
        part_id=part.id,
        scan_record_id=scan_record_id,
        created_by=actor_id,
    )
    db.add(entry)

    tray_document.current_lot_number = entry.lot_number
    tray_document.current_part_id = part.id
    await db.flush()

    logger.info(
        "Minted lot %s for tray document %s (part %s)",
        entry.lot_number, tray_document.id, part.number,
    )
    return entry


async def lot_exists(db: AsyncSession, tray_document_id: str, lot_number: str) -> bool:
    """True if ``lot_number`` was minted for this tray document."""
    result = await db.execute(
        select(LotLedgerEntry.run_sequence_no).where(
            LotLedgerEntry.tray_document_id == tray_document_id,
            LotLedgerEntry.lot_number == lot_number,
        )
    )
    return result.first() is not None


async def list_lots(db: AsyncSession, tray_document_id: str) -> list[LotLedgerEntry]:
    """All lots of a tray document in mint order."""
    result = await db.execute(
        select(LotLedgerEntry)
        .where(LotLedgerEntry.tray_document_id == tray_document_id)
        .order_by(LotLedgerEntry.created_at, LotLedgerEntry.run_sequence_no)
    )
    return list(result.scalars().all())

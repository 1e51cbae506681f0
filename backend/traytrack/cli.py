"""Management CLI.

Usage:
    python -m traytrack.cli init-db            # Create all tables (local development)
    python -m traytrack.cli show-tray <id>     # Print a tray's summary and lineage
"""

import asyncio
import sys

from traytrack.database import Base, async_session, engine
from traytrack.middleware.exceptions import ReferenceNotFoundError
from traytrack.models import *  # noqa: F401,F403  register every table
from traytrack.models.transfer_record import TransferReason
from traytrack.services import tray_documents


async def init_db():
    """Create every table. Production databases use Alembic instead."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print(f"Created {len(Base.metadata.tables)} table(s).")


async def show_tray(tray_document_id: str) -> int:
    async with async_session() as db:
        try:
            summary = await tray_documents.get_tray_summary(db, tray_document_id)
            lots, transfers = await tray_documents.get_lineage(db, tray_document_id)
        except ReferenceNotFoundError as exc:
            print(exc.message)
            return 1

    print(f"Tray document {summary['tray_document_id']}  [{summary['status'].value}]")
    print(f"  Current lot:  {summary['current_lot_number']} (part {summary['current_part_number']})")
    print(f"  Good / scrap: {summary['total_good_qty']} / {summary['total_scrap_qty']}")
    if summary["active_scan_id"]:
        print(f"  Active scan:  {summary['active_scan_id']}")
    if summary["next_station"]:
        print(f"  Next station: {summary['next_station']['id']}")

    print("\n  Stations visited:")
    for visit in summary["stations_visited"]:
        print(
            f"    {visit['station_id']:<10} {visit['scan_record_id']}  "
            f"good={visit['good_qty']} scrap={visit['scrap_qty']}"
        )

    print("\n  Lots:")
    for lot in lots:
        print(f"    {lot.lot_number}")

    print("\n  Transfers:")
    for t in transfers:
        reason = TransferReason(t.transfer_reason_code).name
        print(f"    {t.id}  {reason:<6} {t.from_lot_number} -> {t.to_lot_number}  qty={t.quantity}")
    return 0


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "init-db":
        asyncio.run(init_db())
    elif cmd == "show-tray" and len(sys.argv) > 2:
        sys.exit(asyncio.run(show_tray(sys.argv[2])))
    else:
        print("Usage: python -m traytrack.cli [init-db|show-tray <tray_document_id>]")

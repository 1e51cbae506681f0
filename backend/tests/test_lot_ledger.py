"""Lot ledger and tray document creation tests."""

from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from traytrack.database import atomic
from traytrack.middleware.exceptions import InvalidInputError, ReferenceNotFoundError
from traytrack.models import LotLedgerEntry, Part, TransferRecord, TrayStatus
from traytrack.services import lot_ledger, tray_documents
from traytrack.utils.numbering import business_date


@pytest.mark.unit
class TestBuildLotNumber:

    def test_format(self):
        lot = lot_ledger.build_lot_number(date(2026, 2, 9), " 382-B42 ", "TK26020900012602090001")
        assert lot == "260209-382-B42-TK26020900012602090001"


@pytest.mark.integration
@pytest.mark.asyncio
class TestCreateTrayDocument:

    async def test_creates_document_with_root_lot(self, db_session: AsyncSession):
        async with atomic(db_session):
            tray, root = await tray_documents.create_tray_document(
                db_session, part_number="P1", machine_id="M1", actor_id="admin-1"
            )

        today = business_date().strftime("%y%m%d")
        assert tray.id == f"TK{today}0001"
        assert tray.status == TrayStatus.NOT_STARTED
        assert tray.origin_station_id == "STA001"
        assert tray.origin_machine_id == "M1"
        assert tray.current_lot_number == root.lot_number
        assert tray.current_part_id == "part-1"
        assert root.run_sequence_no == f"{tray.id}{today}0001"
        assert root.lot_number == f"{today}-P1-{root.run_sequence_no}"
        assert root.scan_record_id is None

        transfers = await db_session.scalar(select(func.count(TransferRecord.id)))
        assert transfers == 0

    async def test_unknown_part(self, db_session: AsyncSession):
        with pytest.raises(ReferenceNotFoundError):
            async with atomic(db_session):
                await tray_documents.create_tray_document(
                    db_session, part_number="NOPE", machine_id="M1", actor_id="admin-1"
                )

    async def test_inactive_machine(self, db_session: AsyncSession):
        with pytest.raises(ReferenceNotFoundError, match="inactive"):
            async with atomic(db_session):
                await tray_documents.create_tray_document(
                    db_session, part_number="P1", machine_id="M9", actor_id="admin-1"
                )

    async def test_unassigned_machine(self, db_session: AsyncSession):
        with pytest.raises(InvalidInputError) as exc_info:
            async with atomic(db_session):
                await tray_documents.create_tray_document(
                    db_session, part_number="P1", machine_id="M0", actor_id="admin-1"
                )
        assert exc_info.value.error_code == "MACHINE_UNASSIGNED"


@pytest.mark.integration
@pytest.mark.asyncio
class TestMintLot:

    async def test_mint_advances_current_pointer(self, db_session: AsyncSession, tray):
        root_lot = tray.current_lot_number
        part = await db_session.get(Part, "part-2")

        async with atomic(db_session):
            entry = await lot_ledger.mint_lot(db_session, tray, part, "op-1")

        assert entry.lot_number != root_lot
        assert tray.current_lot_number == entry.lot_number
        assert tray.current_part_id == "part-2"
        assert entry.run_sequence_no.endswith("0002")

    async def test_lot_numbers_increase_within_tray(self, db_session: AsyncSession, tray):
        part = await db_session.get(Part, "part-1")
        async with atomic(db_session):
            for _ in range(3):
                await lot_ledger.mint_lot(db_session, tray, part, "op-1")

        lots = await lot_ledger.list_lots(db_session, tray.id)
        runs = [lot.run_sequence_no for lot in lots]
        assert len(runs) == 4
        assert runs == sorted(runs)
        assert len(set(lot.lot_number for lot in lots)) == 4

    async def test_lot_exists_is_scoped_to_tray(self, db_session: AsyncSession, tray):
        async with atomic(db_session):
            other, _ = await tray_documents.create_tray_document(
                db_session, part_number="P1", machine_id="M1", actor_id="admin-1"
            )

        assert await lot_ledger.lot_exists(db_session, tray.id, tray.current_lot_number)
        assert not await lot_ledger.lot_exists(db_session, tray.id, other.current_lot_number)
        assert not await lot_ledger.lot_exists(db_session, tray.id, "260209-P1-missing")

    async def test_ledger_rows_are_append_only(self, db_session: AsyncSession, tray):
        part = await db_session.get(Part, "part-3")
        async with atomic(db_session):
            await lot_ledger.mint_lot(db_session, tray, part, "op-1")

        count = await db_session.scalar(
            select(func.count(LotLedgerEntry.run_sequence_no))
            .where(LotLedgerEntry.tray_document_id == tray.id)
        )
        assert count == 2

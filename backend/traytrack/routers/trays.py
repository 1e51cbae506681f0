"""Tray document router — creation and read models.

Endpoints:
    POST  /api/trays                  Create a tray document (mints root lot)
    GET   /api/trays                  List tray documents
    GET   /api/trays/{id}             Single tray document
    GET   /api/trays/{id}/summary     Status, quantities, stations visited
    GET   /api/trays/{id}/lineage     Lots and transfer records
    GET   /api/trays/{id}/scans       Scan history, newest first
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from traytrack.auth.deps import Actor, require_permission
from traytrack.database import atomic, get_db
from traytrack.models.tray_document import TrayStatus
from traytrack.schemas.common import PaginatedResponse
from traytrack.schemas.scan import ScanRecordOut
from traytrack.schemas.tray import (
    LineageOut,
    LotLedgerEntryOut,
    TransferRecordOut,
    TrayDocumentCreate,
    TrayDocumentCreated,
    TrayDocumentOut,
    TraySummaryOut,
)
from traytrack.services import scan_lifecycle, tray_documents

router = APIRouter()


@router.post("", response_model=TrayDocumentCreated, status_code=status.HTTP_201_CREATED)
async def create_tray_document(
    body: TrayDocumentCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("tray.create")),
):
    async with atomic(db):
        tray, root_lot = await tray_documents.create_tray_document(
            db,
            part_number=body.part_number,
            machine_id=body.machine_id,
            actor_id=actor.id,
        )
    return TrayDocumentCreated(
        tray_document=TrayDocumentOut.model_validate(tray),
        root_lot=LotLedgerEntryOut.model_validate(root_lot),
    )


@router.get("", response_model=PaginatedResponse[TrayDocumentOut])
async def list_tray_documents(
    tray_status: TrayStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("tray.read")),
):
    items, total = await tray_documents.list_tray_documents(
        db, status=tray_status, limit=limit, offset=offset
    )
    return PaginatedResponse(
        items=[TrayDocumentOut.model_validate(t) for t in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{tray_document_id}", response_model=TrayDocumentOut)
async def get_tray_document(
    tray_document_id: str,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("tray.read")),
):
    return await tray_documents.get_tray_document(db, tray_document_id)


@router.get("/{tray_document_id}/summary", response_model=TraySummaryOut)
async def get_tray_summary(
    tray_document_id: str,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("tray.read")),
):
    return await tray_documents.get_tray_summary(db, tray_document_id)


@router.get("/{tray_document_id}/lineage", response_model=LineageOut)
async def get_lineage(
    tray_document_id: str,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("tray.read")),
):
    lots, transfers = await tray_documents.get_lineage(db, tray_document_id)
    return LineageOut(
        tray_document_id=tray_document_id,
        lots=[LotLedgerEntryOut.model_validate(lot) for lot in lots],
        transfers=[TransferRecordOut.model_validate(t) for t in transfers],
    )


@router.get("/{tray_document_id}/scans", response_model=list[ScanRecordOut])
async def list_scans_for_tray(
    tray_document_id: str,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("scan.read")),
):
    return await scan_lifecycle.list_scans_for_tray(db, tray_document_id)

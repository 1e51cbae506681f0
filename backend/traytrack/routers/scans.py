"""Scan router — station visits from handheld clients.

Endpoints:
    POST  /api/scans/start                     Open a scan at the operator's station
    POST  /api/scans/{id}/finish               Close a scan, apply lineage transforms
    GET   /api/scans/active                    All open scans, newest first
    GET   /api/scans/active/{tray_document_id} Open scan of one tray (or null)
    GET   /api/scans/{id}                      Single scan record
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from traytrack.auth.deps import HANDHELD, Actor, require_client_type, require_permission
from traytrack.database import atomic, get_db
from traytrack.schemas.scan import (
    FinishScanRequest,
    FinishScanResponse,
    ScanRecordOut,
    StartScanRequest,
)
from traytrack.schemas.tray import LotLedgerEntryOut, TransferRecordOut, TrayDocumentOut
from traytrack.services import scan_lifecycle

router = APIRouter()


# ── Start / finish ───────────────────────────────────────────

@router.post("/start", response_model=ScanRecordOut, status_code=status.HTTP_201_CREATED)
async def start_scan(
    body: StartScanRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("scan.start")),
    _client: str = Depends(require_client_type(HANDHELD)),
):
    async with atomic(db):
        scan = await scan_lifecycle.start_scan(
            db,
            tray_document_id=body.tray_document_id,
            machine_id=body.machine_id,
            operator_id=actor.id,
            station_id=actor.station_id,
        )
    return scan


@router.post("/{scan_record_id}/finish", response_model=FinishScanResponse)
async def finish_scan(
    scan_record_id: str,
    body: FinishScanRequest,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("scan.finish")),
    _client: str = Depends(require_client_type(HANDHELD)),
):
    async with atomic(db):
        outcome = await scan_lifecycle.finish_scan(
            db, scan_record_id, body, operator_id=actor.id
        )
    return FinishScanResponse(
        scan=ScanRecordOut.model_validate(outcome.scan),
        tray_document=TrayDocumentOut.model_validate(outcome.tray_document),
        minted_lots=[LotLedgerEntryOut.model_validate(lot) for lot in outcome.minted_lots],
        transfers=[TransferRecordOut.model_validate(t) for t in outcome.transfers],
    )


# ── Reads ────────────────────────────────────────────────────

@router.get("/active", response_model=list[ScanRecordOut])
async def list_active_scans(
    limit: int = Query(50, ge=1, le=scan_lifecycle.MAX_ACTIVE_SCANS),
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("scan.read")),
):
    return await scan_lifecycle.list_active_scans(db, limit=limit)


@router.get("/active/{tray_document_id}", response_model=ScanRecordOut | None)
async def get_active_scan(
    tray_document_id: str,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("scan.read")),
):
    return await scan_lifecycle.get_active_scan(db, tray_document_id)


@router.get("/{scan_record_id}", response_model=ScanRecordOut)
async def get_scan(
    scan_record_id: str,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("scan.read")),
):
    return await scan_lifecycle.get_scan(db, scan_record_id)

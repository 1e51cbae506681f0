"""Pydantic schemas for tray documents, lots and lineage."""

from datetime import datetime

from pydantic import BaseModel, Field

from traytrack.models.tray_document import TrayStatus


# ── Create ───────────────────────────────────────────────────

class TrayDocumentCreate(BaseModel):
    """Payload for POST /api/trays."""
    part_number: str = Field(..., min_length=1, max_length=50)
    machine_id: str = Field(..., min_length=1, max_length=20)


# ── Response ─────────────────────────────────────────────────

class TrayDocumentOut(BaseModel):
    id: str
    status: TrayStatus
    current_lot_number: str | None
    current_part_id: str | None
    origin_machine_id: str | None
    origin_station_id: str | None
    created_by: str | None
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class LotLedgerEntryOut(BaseModel):
    run_sequence_no: str
    lot_number: str
    tray_document_id: str
    part_id: str
    scan_record_id: str | None
    created_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class TransferRecordOut(BaseModel):
    id: str
    from_lot_number: str
    to_lot_number: str
    transfer_reason_code: int
    quantity: int
    scan_record_id: str
    tray_document_id: str
    machine_id: str
    station_id: str | None
    created_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class TrayDocumentCreated(BaseModel):
    """Response from POST /api/trays."""
    tray_document: TrayDocumentOut
    root_lot: LotLedgerEntryOut


class LineageOut(BaseModel):
    tray_document_id: str
    lots: list[LotLedgerEntryOut]
    transfers: list[TransferRecordOut]


class StationRef(BaseModel):
    id: str
    code: str
    name: str
    sequence_position: int


class StationVisit(BaseModel):
    scan_record_id: str
    station_id: str | None
    sequence_position: int | None
    good_qty: int
    scrap_qty: int
    finished_at: datetime | None


class TraySummaryOut(BaseModel):
    tray_document_id: str
    status: TrayStatus
    current_lot_number: str | None
    current_part_id: str | None
    current_part_number: str | None
    total_good_qty: int
    total_scrap_qty: int
    stations_visited: list[StationVisit]
    active_scan_id: str | None
    next_station: StationRef | None

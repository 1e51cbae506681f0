"""Pydantic schemas for starting and finishing scans.

Transform groups are a tagged union on ``transfer_reason_code``:

  1 MASTER  {qty, out_part_no}
  2 SPLIT   {qty, entries: [{qty, out_part_no}, …≥2]}
  3 MERGE   {qty, inputs: [{from_lot_number, qty}, …≥2], out_part_no?}

Shape is checked here; quantity sums and lot ownership are checked by the
scan lifecycle against the database.
"""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, model_validator

from traytrack.schemas.tray import LotLedgerEntryOut, TransferRecordOut, TrayDocumentOut


# ── Start ────────────────────────────────────────────────────

class StartScanRequest(BaseModel):
    """Payload for POST /api/scans/start.

    Operator and bound station come from the identity token.
    """
    tray_document_id: str = Field(..., min_length=1, max_length=20)
    machine_id: str = Field(..., min_length=1, max_length=20)


# ── Transform groups ─────────────────────────────────────────

class MasterGroup(BaseModel):
    transfer_reason_code: Literal[1] = 1
    qty: int = Field(..., gt=0)
    out_part_no: str = Field(..., min_length=1, max_length=50)


class SplitEntry(BaseModel):
    qty: int = Field(..., gt=0)
    out_part_no: str = Field(..., min_length=1, max_length=50)


class SplitGroup(BaseModel):
    transfer_reason_code: Literal[2] = 2
    qty: int = Field(..., gt=0)
    entries: list[SplitEntry] = Field(..., min_length=2)


class MergeInput(BaseModel):
    from_lot_number: str = Field(..., min_length=1, max_length=150)
    qty: int = Field(..., gt=0)


class MergeGroup(BaseModel):
    transfer_reason_code: Literal[3] = 3
    qty: int = Field(..., gt=0)
    inputs: list[MergeInput] = Field(..., min_length=2)
    # Defaults to the tray's current part
    out_part_no: str | None = Field(None, min_length=1, max_length=50)

    @model_validator(mode="after")
    def distinct_inputs(self):
        lots = [i.from_lot_number for i in self.inputs]
        if len(set(lots)) != len(lots):
            raise ValueError("A merge group may not list the same input lot twice")
        return self


TransformGroup = Annotated[
    Union[MasterGroup, SplitGroup, MergeGroup],
    Field(discriminator="transfer_reason_code"),
]


# ── Finish ───────────────────────────────────────────────────

class FinishScanRequest(BaseModel):
    """Payload for POST /api/scans/{id}/finish."""
    good_qty: int = Field(..., ge=0)
    scrap_qty: int = Field(0, ge=0)
    transform_groups: list[TransformGroup] = Field(default_factory=list)

    @model_validator(mode="after")
    def quantities_and_groups(self):
        if self.good_qty == 0 and self.scrap_qty == 0:
            raise ValueError("good_qty and scrap_qty cannot both be zero")
        if self.good_qty > 0 and not self.transform_groups:
            raise ValueError("transform_groups is required when good_qty > 0")
        if self.good_qty == 0 and self.transform_groups:
            raise ValueError("A full-scrap finish cannot carry transform_groups")
        return self


# ── Response ─────────────────────────────────────────────────

class ScanRecordOut(BaseModel):
    id: str
    tray_document_id: str
    station_id: str | None
    machine_id: str
    operator_id: str
    lot_number_at_start: str | None
    total_qty: int
    good_qty: int
    scrap_qty: int
    transfer_reason_code: int | None
    result: str | None
    started_at: datetime
    finished_at: datetime | None
    finished_by: str | None

    model_config = {"from_attributes": True}


class FinishScanResponse(BaseModel):
    """Response from POST /api/scans/{id}/finish."""
    scan: ScanRecordOut
    tray_document: TrayDocumentOut
    minted_lots: list[LotLedgerEntryOut]
    transfers: list[TransferRecordOut]

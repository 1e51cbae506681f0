"""Aggregate model imports for Alembic auto-detection."""

# Master data (read-only to the lineage core)
from traytrack.models.master import Machine, Part, Station  # noqa: F401

# Lineage core
from traytrack.models.tray_document import TrayDocument, TrayStatus  # noqa: F401
from traytrack.models.lot_ledger import LotLedgerEntry  # noqa: F401
from traytrack.models.scan_record import ScanRecord  # noqa: F401
from traytrack.models.transfer_record import TransferReason, TransferRecord  # noqa: F401

__all__ = [
    "Machine", "Part", "Station",
    "TrayDocument", "TrayStatus",
    "LotLedgerEntry", "ScanRecord",
    "TransferReason", "TransferRecord",
]

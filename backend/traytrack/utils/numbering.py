"""Sequential identifier generation, scoped to a calendar day.

Format tokens:
  {date}       → YYMMDD in the plant timezone
  {tray}       → owning tray document id (lot run numbers only)
  {seq:N}      → zero-padded running number, N digits, restarts per prefix

Default formats:
  tray_document:   TK{date}{seq:4}
  scan_record:     SC{date}{seq:4}
  transfer_record: TF{date}{seq:4}
  lot_run:         {tray}{date}{seq:4}

The prefix (everything before {seq:N}) is the scope.  The next number is
read from the highest existing identifier with that prefix under a locking
read, so concurrent callers queue behind each other inside their
transactions instead of racing.  Zero padding keeps identifiers sortable as
plain strings, which is what makes "highest" well defined.
"""

import re
from datetime import date, datetime
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from traytrack.config import settings
from traytrack.middleware.exceptions import FatalError, SequenceExhaustedError
from traytrack.models.lot_ledger import LotLedgerEntry
from traytrack.models.scan_record import ScanRecord
from traytrack.models.transfer_record import TransferRecord
from traytrack.models.tray_document import TrayDocument

DEFAULT_FORMATS = {
    "tray_document": "TK{date}{seq:4}",
    "scan_record": "SC{date}{seq:4}",
    "transfer_record": "TF{date}{seq:4}",
    "lot_run": "{tray}{date}{seq:4}",
}

# Map entity types to the column holding their identifier
ENTITY_COLUMN_MAP = {
    "tray_document": TrayDocument.id,
    "scan_record": ScanRecord.id,
    "transfer_record": TransferRecord.id,
    "lot_run": LotLedgerEntry.run_sequence_no,
}

_SEQ_TOKEN = re.compile(r"\{seq:(\d+)\}")


def business_date() -> date:
    """Today's date on the plant floor."""
    return datetime.now(ZoneInfo(settings.plant_timezone)).date()


def _get_format(entity: str) -> str:
    """Get the format template for an entity type (settings override defaults)."""
    if entity not in DEFAULT_FORMATS:
        raise ValueError(f"Unknown identifier entity: {entity}")
    return settings.number_formats.get(entity) or DEFAULT_FORMATS[entity]


def _seq_width(fmt: str) -> int:
    seq_match = _SEQ_TOKEN.search(fmt)
    return int(seq_match.group(1)) if seq_match else 4


def _build_prefix(fmt: str, date_str: str, tray_document_id: str | None = None) -> str:
    """Build the prefix portion of the code (everything before {seq:N}).

    Returns the static prefix so we can find existing codes with this prefix.
    """
    prefix = fmt.replace("{date}", date_str)
    if "{tray}" in prefix:
        if tray_document_id is None:
            raise ValueError("tray_document_id is required for this format")
        prefix = prefix.replace("{tray}", tray_document_id)
    # Remove the {seq:N} part and everything after it
    prefix = _SEQ_TOKEN.split(prefix, maxsplit=1)[0]
    return prefix


async def _latest_existing(db: AsyncSession, entity: str, prefix: str) -> str | None:
    """Highest identifier with the given prefix, locked for the transaction."""
    column = ENTITY_COLUMN_MAP[entity]
    result = await db.execute(
        select(column)
        .where(column.startswith(prefix, autoescape=True))
        .order_by(column.desc())
        .limit(1)
        .with_for_update()
    )
    return result.scalar_one_or_none()


def _parse_running(entity: str, prefix: str, last_code: str) -> int:
    digits = re.match(r"\d+", last_code[len(prefix):])
    if digits is None:
        raise FatalError(
            f"Cannot parse running number of {entity} identifier {last_code!r} "
            f"(scope {prefix!r})"
        )
    return int(digits.group(0))


async def generate_code(
    db: AsyncSession,
    entity: str,
    *,
    on: date | None = None,
    tray_document_id: str | None = None,
) -> str:
    """Generate the next sequential identifier for ``entity``.

    Must be called inside the transaction that inserts the identifier.

    Args:
        db: Database session with an open transaction
        entity: One of "tray_document", "scan_record", "transfer_record", "lot_run"
        on: Calendar day of the scope (defaults to today's business date)
        tray_document_id: Owning tray document (required for "lot_run")

    Returns:
        Generated code string, e.g. "SC2602090007"

    Raises:
        SequenceExhaustedError if the running number no longer fits its width.
    """
    fmt = _get_format(entity)
    date_str = (on or business_date()).strftime("%y%m%d")
    prefix = _build_prefix(fmt, date_str, tray_document_id)
    seq_width = _seq_width(fmt)

    last_code = await _latest_existing(db, entity, prefix)
    seq_num = 1
    if last_code is not None:
        seq_num = _parse_running(entity, prefix, last_code) + 1

    if seq_num >= 10 ** seq_width:
        raise SequenceExhaustedError(entity, prefix, seq_width)

    code = fmt.replace("{date}", date_str)
    if tray_document_id is not None:
        code = code.replace("{tray}", tray_document_id)
    code = _SEQ_TOKEN.sub(f"{seq_num:0{seq_width}d}", code, count=1)

    return code

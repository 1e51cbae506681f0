"""Station directory — read-only view of the line's station order.

Stations are owned by master data; this module only looks them up to
compute the next station and to detect backward movement.  Terminality:

  flag      only stations with ``is_terminal`` set are terminal
  sequence  the active station with the highest sequence position is terminal
  auto      flags win when any active station is flagged, else sequence
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from traytrack.config import settings
from traytrack.middleware.exceptions import ReferenceNotFoundError
from traytrack.models.master import Station

TERMINAL_MODES = {"auto", "flag", "sequence"}


async def get_station(
    db: AsyncSession, station_id: str, *, require_active: bool = True, **context
) -> Station:
    station = await db.get(Station, station_id)
    if station is None:
        raise ReferenceNotFoundError("Station", station_id, **context)
    if require_active and not station.active:
        raise ReferenceNotFoundError("Station", station_id, reason="is inactive", **context)
    return station


async def sequence_of(db: AsyncSession, station_id: str, **context) -> int:
    station = await get_station(db, station_id, require_active=False, **context)
    return station.sequence_position


async def next_active_after(db: AsyncSession, sequence_position: int) -> Station | None:
    """First active station strictly after ``sequence_position``."""
    result = await db.execute(
        select(Station)
        .where(Station.active == True, Station.sequence_position > sequence_position)  # noqa: E712
        .order_by(Station.sequence_position)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def first_active_station(db: AsyncSession) -> Station | None:
    result = await db.execute(
        select(Station)
        .where(Station.active == True)  # noqa: E712
        .order_by(Station.sequence_position)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def is_terminal(db: AsyncSession, station: Station) -> bool:
    mode = settings.terminal_station_mode
    if mode not in TERMINAL_MODES:
        raise ValueError(f"terminal_station_mode must be one of {sorted(TERMINAL_MODES)}")

    if mode in ("flag", "auto"):
        if station.is_terminal:
            return True
        if mode == "flag":
            return False
        flagged = (
            await db.execute(
                select(func.count(Station.id)).where(
                    Station.active == True,  # noqa: E712
                    Station.is_terminal == True,  # noqa: E712
                )
            )
        ).scalar() or 0
        if flagged:
            return False

    last_position = (
        await db.execute(
            select(func.max(Station.sequence_position)).where(Station.active == True)  # noqa: E712
        )
    ).scalar()
    return last_position is not None and station.sequence_position >= last_position


def station_ref(station: Station | None) -> dict | None:
    """Compact station description used in responses and error details."""
    if station is None:
        return None
    return {
        "id": station.id,
        "code": station.code,
        "name": station.name,
        "sequence_position": station.sequence_position,
    }

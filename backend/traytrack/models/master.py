"""Master data — parts, stations and machines.

Owned by the master-data service; the tray-lineage core only reads them.

  - Part     what a lot is made of (looked up by part number)
  - Station  one step of the line; ``sequence_position`` is the total order
             that defines forward movement
  - Machine  equipment bound to (at most) one station
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from traytrack.database import Base, utcnow


class Part(Base):
    __tablename__ = "parts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Station(Base):
    __tablename__ = "stations"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)
    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    sequence_position: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    # Explicit end-of-line marker; see services.stations.is_terminal
    is_terminal: Mapped[bool] = mapped_column(Boolean, default=False)

    machines = relationship("Machine", back_populates="station")


class Machine(Base):
    __tablename__ = "machines"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    assigned_station_id: Mapped[str | None] = mapped_column(
        String(20), ForeignKey("stations.id"), index=True
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True)

    station = relationship("Station", back_populates="machines")

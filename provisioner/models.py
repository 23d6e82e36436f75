from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from provisioner.db import Base


def now_utc() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class VirtualMachineRecord(Base):
    """Ownership record of a VM already initialized on the control plane."""

    __tablename__ = "virtual_machines"
    __table_args__ = (
        UniqueConstraint("item_path", name="uq_virtual_machines_item_path"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    item_path: Mapped[str] = mapped_column(String(512), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=now_utc, nullable=False
    )
    deployed_at: Mapped[datetime | None] = mapped_column(DateTime)


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, default=now_utc, nullable=False
    )
    vm_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("virtual_machines.id")
    )
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)


class SchemaMigration(Base):
    __tablename__ = "schema_migrations"

    version: Mapped[str] = mapped_column(String(32), primary_key=True)
    applied_at: Mapped[datetime] = mapped_column(
        DateTime, default=now_utc, nullable=False
    )

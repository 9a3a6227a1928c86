from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, utcnow


class AutomationLog(Base):
    """
    Audit trail of everything the automation pass did.

    Reminder throttling and maintenance-alert throttling are decided by
    querying this table, never by in-memory state, so overlapping or
    retried invocations see each other's work. A send is claimed by
    inserting its row before the email goes out; the unique claim_key
    lets only one of two overlapping passes through.
    """
    __tablename__ = "automation_logs"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        index=True
    )

    reservation_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("reservations.id"),
        nullable=True,
        index=True
    )

    vehicle_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("vehicles.id"),
        nullable=True,
        index=True
    )

    action_type: Mapped[str] = mapped_column(
        String,
        index=True
    )  # see models.enums.AutomationAction

    recipient: Mapped[str | None] = mapped_column(
        String,
        nullable=True
    )

    detail: Mapped[str | None] = mapped_column(
        String,
        nullable=True
    )

    # "<action>:<target>:<local day>" while a send is claimed or done;
    # cleared when the send fails so a later pass can claim it again
    claim_key: Mapped[str | None] = mapped_column(
        String,
        nullable=True,
        unique=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        index=True
    )

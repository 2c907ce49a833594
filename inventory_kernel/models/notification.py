"""
Module: inventory_kernel.models.notification
Responsibility: In-app notification rows written after successful document
    transitions.
Architecture position: Kernel > Models.  May import from db/ only.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString


class Notification(Base):
    """A user-facing message about a stock document."""

    __tablename__ = "notifications"

    __table_args__ = (
        Index("idx_notification_unread", "is_read", "created_at"),
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)

    message: Mapped[str] = mapped_column(String(1000), nullable=False)

    category: Mapped[str] = mapped_column(String(30), nullable=False)

    document_type: Mapped[str | None] = mapped_column(String(30), nullable=True)

    document_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

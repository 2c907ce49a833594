"""
Module: inventory_kernel.models.counters
Responsibility: Locked counter rows -- named monotonic sequences (lot
    creation order) and per (document type, warehouse, year) document
    number counters.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - SequenceCounter.name is unique.
    - One DocumentNumberCounter per (document_type, warehouse_id, year).
    - Counters only move forward; the row is the lock target.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import BigInteger, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString


class SequenceCounter(Base):
    """Named sequence; row-level locking keeps it strictly monotonic."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class DocumentNumberCounter(Base):
    """Last issued document number for one (type, warehouse, year)."""

    __tablename__ = "document_number_counters"

    __table_args__ = (
        UniqueConstraint(
            "document_type", "warehouse_id", "year", name="uq_doc_number_counter"
        ),
    )

    document_type: Mapped[str] = mapped_column(String(30), nullable=False)

    warehouse_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    year: Mapped[int] = mapped_column(Integer, nullable=False)

    last_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

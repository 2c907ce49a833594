"""
inventory_services.numbering_service -- Human-readable document numbers.

Responsibility:
    Issues numbers such as ``PN240315-0007`` from a locked counter per
    (document type, warehouse, year) and a configurable format string.
    Formats without a {WH} or {WHID} token share one counter per
    (document type, year) across warehouses.

Architecture position:
    Services.  Called by DocumentWorkflowService when a document is
    created.  Flushes only; the counter increment commits or rolls back
    with the document that consumed it.

Invariants enforced:
    - The counter row is read with SELECT ... FOR UPDATE, so two
      concurrent creations never receive the same sequence number.
    - A missing counter row is inserted inside a savepoint; a unique
      violation from a concurrent insert is retried, at most
      ``max_retries`` times, then DocumentNumberingError.
    - ``peek`` never writes.

Format tokens:
    {Prefix} {yyyy} {yy} {MM} {dd} {yyMM} {yyMMdd}
    {WH}     warehouse name
    {WHID}   warehouse id
    {No}     sequence, unpadded; {No:0000} zero-padded to the zero count
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_config.schema import NumberingSettings
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.values import DocumentType
from inventory_kernel.exceptions import DocumentNumberingError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.counters import DocumentNumberCounter
from inventory_services.lookup_cache import WarehouseDirectory

logger = get_logger("services.numbering")

_TOKEN = re.compile(r"\{(Prefix|yyyy|yyMMdd|yyMM|yy|MM|dd|WHID|WH|No(?::(0+))?)\}")
_WAREHOUSE_TOKEN = re.compile(r"\{WH(?:ID)?\}")

# Counter scope for formats that do not mention the warehouse
SHARED_COUNTER_SCOPE = UUID(int=0)


def format_number(
    fmt: str,
    *,
    prefix: str,
    day: date,
    sequence: int,
    warehouse_name: str = "",
    warehouse_id: UUID | None = None,
) -> str:
    """Expand the format tokens.  Unknown ``{...}`` text is left alone."""

    def replace(match: re.Match) -> str:
        token = match.group(1)
        if token.startswith("No"):
            zeros = match.group(2)
            return str(sequence).zfill(len(zeros)) if zeros else str(sequence)
        match token:
            case "Prefix":
                return prefix
            case "yyyy":
                return f"{day:%Y}"
            case "yy":
                return f"{day:%y}"
            case "MM":
                return f"{day:%m}"
            case "dd":
                return f"{day:%d}"
            case "yyMM":
                return f"{day:%y%m}"
            case "yyMMdd":
                return f"{day:%y%m%d}"
            case "WH":
                return warehouse_name
            case "WHID":
                return str(warehouse_id) if warehouse_id else ""
        return match.group(0)

    return _TOKEN.sub(replace, fmt)


class DocumentNumberingService:
    """
    Allocates document numbers.

    Contract:
        ``next_number`` consumes a sequence value; ``peek`` predicts the
        next one.  ``is_taken`` lets the caller skip numbers already used
        by another warehouse when the format has no warehouse token.
    """

    def __init__(
        self,
        session: Session,
        settings: NumberingSettings | None = None,
        clock: Clock | None = None,
        directory: WarehouseDirectory | None = None,
    ):
        self._session = session
        self._settings = settings or NumberingSettings()
        self._clock = clock or SystemClock()
        self._directory = directory

    def _counter(
        self, document_type: DocumentType, warehouse_id: UUID, year: int
    ) -> DocumentNumberCounter | None:
        return self._session.execute(
            select(DocumentNumberCounter)
            .where(
                DocumentNumberCounter.document_type == document_type.value,
                DocumentNumberCounter.warehouse_id == warehouse_id,
                DocumentNumberCounter.year == year,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def counter_scope(self, warehouse_id: UUID) -> UUID:
        """Per-warehouse counters only when the number names the warehouse."""
        if _WAREHOUSE_TOKEN.search(self._settings.format):
            return warehouse_id
        return SHARED_COUNTER_SCOPE

    def _format(self, document_type: DocumentType, warehouse_id: UUID, day: date, seq: int) -> str:
        return format_number(
            self._settings.format,
            prefix=self._settings.prefix_for(document_type),
            day=day,
            sequence=seq,
            warehouse_name=self._directory.name(warehouse_id) if self._directory else "",
            warehouse_id=warehouse_id,
        )

    def next_number(
        self,
        document_type: DocumentType,
        warehouse_id: UUID,
        is_taken: Callable[[str], bool] | None = None,
    ) -> str:
        """
        Consume and format the next number.

        Raises:
            DocumentNumberingError: counter contention or number collisions
                outlasted ``max_retries`` attempts.
        """
        day = self._clock.today()
        attempts = self._settings.max_retries
        scope = self.counter_scope(warehouse_id)

        for attempt in range(1, attempts + 1):
            counter = self._counter(document_type, scope, day.year)
            if counter is None:
                savepoint = self._session.begin_nested()
                try:
                    counter = DocumentNumberCounter(
                        document_type=document_type.value,
                        warehouse_id=scope,
                        year=day.year,
                        last_number=0,
                    )
                    self._session.add(counter)
                    self._session.flush()
                    savepoint.commit()
                except IntegrityError:
                    savepoint.rollback()
                    logger.warning("numbering_counter_race", extra={
                        "document_type": document_type.value,
                        "warehouse_id": str(warehouse_id),
                        "attempt": attempt,
                    })
                    continue

            counter.last_number += 1
            self._session.flush()
            number = self._format(document_type, warehouse_id, day, counter.last_number)

            if is_taken is not None and is_taken(number):
                logger.warning("numbering_collision", extra={
                    "document_type": document_type.value,
                    "number": number,
                    "attempt": attempt,
                })
                continue

            logger.info("document_number_issued", extra={
                "document_type": document_type.value,
                "warehouse_id": str(warehouse_id),
                "number": number,
            })
            return number

        raise DocumentNumberingError(document_type.value, warehouse_id, attempts)

    def peek(self, document_type: DocumentType, warehouse_id: UUID) -> str:
        """The number ``next_number`` would return now, without consuming it."""
        day = self._clock.today()
        last = self._session.execute(
            select(DocumentNumberCounter.last_number).where(
                DocumentNumberCounter.document_type == document_type.value,
                DocumentNumberCounter.warehouse_id == self.counter_scope(warehouse_id),
                DocumentNumberCounter.year == day.year,
            )
        ).scalar_one_or_none()
        return self._format(document_type, warehouse_id, day, (last or 0) + 1)

"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing sequence numbers, used for lot creation
    order (the FEFO tie-breaker and FIFO age).  A dedicated counter row is
    locked with ``SELECT ... FOR UPDATE`` so concurrent postings never share
    or reorder values.

Architecture position:
    Kernel > Services.  Called by LotLedger whenever a lot is created.

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth for
      the next value.  max(lot_seq)+1 is never used.
    - Transactional: an increment is only visible once the caller commits;
      rollback returns the value.

Failure modes:
    - IntegrityError on a concurrent counter-creation race is absorbed by a
      savepoint rollback and a locked re-read.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.counters import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Guarantees:
        - Strictly monotonic values per sequence name.
        - Never commits; caller controls boundaries.
    """

    STOCK_LOT = "stock_lot"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock, increment and return the next value for ``sequence_name``.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously returned for this name.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use; another transaction may race us to the INSERT
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing; None if never used."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

"""
BaseService -- abstract base for kernel and application services.

Responsibility:
    Common constructor and session-handling contract.  Services receive a
    SQLAlchemy ``Session`` and use ``session.flush()`` -- never
    ``session.commit()``.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back themselves.  The caller (InventoryFacade,
    session_scope, or the test harness) owns commit/rollback.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for stateful services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``; savepoints it opens are released or rolled
          back before the method returns.

    Non-goals:
        - Read-only queries belong in ``inventory_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

"""
BaseService / BaseSelector -- abstract bases for persistence-facing classes.

Responsibility:
    BaseService receives a SQLAlchemy ``Session`` and writes through
    ``session.flush()`` -- never ``session.commit()``.  BaseSelector receives a
    ``Session`` and only reads.

Architecture position:
    Kernel > Services.  Repositories and selectors in pos_cash extend these.

Invariants enforced:
    Transaction boundaries: these classes flush within the caller's
    transaction and never commit or roll back.  The orchestrating service
    (CashSessionService) owns commit/rollback.

Failure modes:
    - A subclass calling ``session.commit()`` breaks the atomicity of the
      close flow (status flip + closing artifacts in one transaction).
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from pos_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for write-side persistence classes.

    Guarantees:
        - Never calls ``session.commit()`` or ``session.rollback()``.
    """

    def __init__(self, session: Session):
        self.session = session


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for read-only query classes.

    Guarantees:
        - No commit, flush, add, or delete operations are performed.
        - Results are frozen DTOs, not ORM instances.
    """

    def __init__(self, session: Session):
        self.session = session

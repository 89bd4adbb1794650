"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for the
    closing processors.  Every processor receives a SQLAlchemy ``Session``
    that it uses via ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back themselves.  The coordinators in
    ``closing_services`` own one transaction per closing key (fan-out) or
    per recalculated period, and the per-key lock around it.

Failure modes:
    - A subclass that commits on its own would publish a closing record
      before its revision row and run progress, breaking atomicity.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from closing_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only methods -- those belong in
          ``closing_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

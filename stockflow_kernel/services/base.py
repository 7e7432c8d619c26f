"""
BaseService -- abstract base for all stockflow services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service.  Concrete services receive a SQLAlchemy ``Session`` that
    they use via ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services.  Module services in ``stockflow_modules`` extend this
    class as well.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The caller
      (``session_scope()`` or a test harness) owns commit/rollback, so a
      failed operation leaves no inventory change and no activity log row.

Failure modes:
    - If a subclass calls ``session.commit()``, a multi-step operation
      (status change + batch writes + activity log) is no longer atomic.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockflow_kernel.db.base import Base
from stockflow_kernel.domain.clock import Clock, SystemClock
from stockflow_kernel.exceptions import NotFoundError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Initialize the service.

        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source; defaults to SystemClock.
        """
        self.session = session
        self.clock = clock or SystemClock()

    def _get_or_raise(
        self,
        model: type[Base],
        entity_id: int,
        error: type[NotFoundError],
        *,
        lock: bool = False,
    ):
        """
        Load ``model`` by primary key.

        With ``lock=True`` the row is read with SELECT ... FOR UPDATE and
        any cached instance is refreshed from the database.
        """
        stmt = select(model).where(model.id == entity_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        row = self.session.execute(stmt).scalar_one_or_none()
        if row is None:
            raise error(entity_id)
        return row

"""
ORM-level immutability enforcement for the order activity log.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners registered here intercept them for append-only
entities:

    session.flush()
         |
         v
    [before_update] --> _check_activity_log_immutability() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_activity_log_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Protected entities:

    Entity            | When immutable
    ------------------|------------------------
    OrderActivityLog  | Always (from creation)

Bulk ``UPDATE``/``DELETE`` statements issued with ``session.execute`` bypass
mapper events.  No service issues them against the activity log.

Usage::

    from stockflow_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (tests only)::

    unregister_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.exc import InvalidRequestError

from stockflow_kernel.exceptions import ImmutabilityViolationError
from stockflow_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(target, operation: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "OrderActivityLog",
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="OrderActivityLog",
        entity_id=str(target.id),
        reason="Activity log entries are append-only",
    )


def _check_activity_log_immutability(mapper, connection, target):
    """Prevent any update to an OrderActivityLog row."""
    _block(target, "UPDATE")


def _check_activity_log_delete(mapper, connection, target):
    """Prevent deletion of an OrderActivityLog row."""
    _block(target, "DELETE")


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    from stockflow_kernel.models.activity_log import OrderActivityLog

    if not event.contains(OrderActivityLog, "before_update", _check_activity_log_immutability):
        event.listen(OrderActivityLog, "before_update", _check_activity_log_immutability)
    if not event.contains(OrderActivityLog, "before_delete", _check_activity_log_delete):
        event.listen(OrderActivityLog, "before_delete", _check_activity_log_delete)

    logger.info("immutability_listeners_registered", extra={"entities": ["OrderActivityLog"]})


def _safe_remove_listener(target, event_name, listener_fn) -> None:
    """Remove an event listener, ignoring it if not registered."""
    try:
        event.remove(target, event_name, listener_fn)
    except InvalidRequestError:
        pass


def unregister_immutability_listeners() -> None:
    """Remove immutability listeners.  FOR TESTING ONLY."""
    from stockflow_kernel.models.activity_log import OrderActivityLog

    _safe_remove_listener(OrderActivityLog, "before_update", _check_activity_log_immutability)
    _safe_remove_listener(OrderActivityLog, "before_delete", _check_activity_log_delete)

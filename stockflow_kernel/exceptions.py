"""
Typed exception hierarchy for stockflow.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from StockflowError:

    StockflowError (base)
    |
    +-- NotFoundError
    |   +-- ProductNotFoundError
    |   +-- BatchNotFoundError
    |   +-- CustomerNotFoundError
    |   +-- OrderNotFoundError
    |   +-- SupplierNotFoundError
    |   +-- CourierNotFoundError
    |
    +-- InvalidStateError
    |   +-- PreparerAlreadyActiveError
    |   +-- PreparerNotActiveError
    |
    +-- InsufficientStockError
    +-- InvalidBatchError
    +-- StateConflictError
    |
    +-- ValidationError
    |   +-- InvalidAllocationSnapshotError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                    | When Raised
------------------------|-----------------------------------------------------
NOT_FOUND               | Product, batch, order, customer, supplier or courier
                        | does not exist
INVALID_STATE           | Requested transition is illegal from current status
                        | or for the caller's role
PREPARER_ALREADY_ACTIVE | Worker already holds a working preparer on the order
PREPARER_NOT_ACTIVE     | Worker completing preparation holds no working row
INSUFFICIENT_STOCK      | FIFO or manual allocation cannot cover the quantity
INVALID_BATCH           | Allocation names a batch of another product, would
                        | overdraw a batch, or does not sum to the item quantity
STATE_CONFLICT          | A concurrent transaction completed the transition
                        | first; re-read the order and retry
VALIDATION_ERROR        | Malformed input
INVALID_ALLOCATION_SNAPSHOT | Persisted batchAllocation cannot be parsed
IMMUTABILITY_VIOLATION  | Attempt to update or delete an activity log entry

Every class carries a ``code`` class attribute and stores its context as
instance attributes, so callers catch by type and read structured data
rather than parsing messages.  Advisory conditions (NEAR_EXPIRY,
MULTIPLE_BATCHES, DATE_CONFLICT) are returned as data and never raised.
"""


class StockflowError(Exception):
    """
    Base exception for all stockflow errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "STOCKFLOW_ERROR"


# Not-found exceptions


class NotFoundError(StockflowError):
    """An entity with the given identifier does not exist."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, entity_id: int | str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class ProductNotFoundError(NotFoundError):
    entity_type = "Product"


class BatchNotFoundError(NotFoundError):
    entity_type = "Batch"


class CustomerNotFoundError(NotFoundError):
    entity_type = "Customer"


class OrderNotFoundError(NotFoundError):
    entity_type = "Order"


class SupplierNotFoundError(NotFoundError):
    entity_type = "Supplier"


class CourierNotFoundError(NotFoundError):
    entity_type = "Courier"


# State-machine exceptions


class InvalidStateError(StockflowError):
    """Requested transition is not legal from the current status."""

    code: str = "INVALID_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: int | str,
        current_status: str,
        target_status: str,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason
        message = (
            f"Cannot move {entity_type} {entity_id} "
            f"from {current_status} to {target_status}"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class PreparerAlreadyActiveError(InvalidStateError):
    """The worker already holds a working preparer row for the order."""

    code: str = "PREPARER_ALREADY_ACTIVE"

    def __init__(self, order_id: int, worker_id: object):
        self.worker_id = worker_id
        super().__init__(
            "CustomerOrder",
            order_id,
            "Preparing",
            "Preparing",
            reason=f"worker {worker_id} is already preparing this order",
        )


class PreparerNotActiveError(InvalidStateError):
    """The worker has no working preparer row for the order."""

    code: str = "PREPARER_NOT_ACTIVE"

    def __init__(self, order_id: int, worker_id: object, current_status: str):
        self.worker_id = worker_id
        super().__init__(
            "CustomerOrder",
            order_id,
            current_status,
            "Prepared",
            reason=f"worker {worker_id} is not preparing this order",
        )


# Inventory exceptions


class InsufficientStockError(StockflowError):
    """Available stock cannot cover the required quantity."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: int,
        required: int,
        available: int,
        batch_id: int | None = None,
    ):
        self.product_id = product_id
        self.required = required
        self.available = available
        self.batch_id = batch_id
        where = f"batch {batch_id}" if batch_id is not None else f"product {product_id}"
        super().__init__(
            f"Insufficient stock in {where}: required {required}, available {available}"
        )


class InvalidBatchError(StockflowError):
    """An allocation line references an unusable batch."""

    code: str = "INVALID_BATCH"

    def __init__(self, batch_id: int | None, product_id: int | None, reason: str):
        self.batch_id = batch_id
        self.product_id = product_id
        self.reason = reason
        super().__init__(f"Invalid batch {batch_id} for product {product_id}: {reason}")


# Concurrency exceptions


class StateConflictError(StockflowError):
    """
    A concurrent transaction changed the order first.

    The caller should re-read the order state and decide whether to retry.
    """

    code: str = "STATE_CONFLICT"

    def __init__(self, entity_type: str, entity_id: int | str, expected_status: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_status = expected_status
        super().__init__(
            f"State conflict on {entity_type} {entity_id}: "
            f"no longer in {expected_status}"
        )


# Input exceptions


class ValidationError(StockflowError):
    """Malformed or out-of-range input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidAllocationSnapshotError(ValidationError):
    """A persisted batch allocation snapshot cannot be parsed."""

    code: str = "INVALID_ALLOCATION_SNAPSHOT"

    def __init__(self, reason: str, version: int | None = None):
        self.reason = reason
        self.version = version
        super().__init__(f"Invalid batch allocation snapshot: {reason}", field="batch_allocation")


# Immutability exceptions


class ImmutabilityViolationError(StockflowError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )

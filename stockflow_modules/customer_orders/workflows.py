"""
Customer Order Workflow.

State machine for a customer order from placement to shipment, including
who may cancel in each state and which exits return prepared stock.
"""

from stockflow_kernel.logging_config import get_logger
from stockflow_kernel.models.customer_order import CustomerOrderStatus as S
from stockflow_modules.workflow import Guard, Transition, Workflow

logger = get_logger("modules.customer_orders.workflows")

ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"
ROLE_COURIER = "courier"

ADMIN_OR_CUSTOMER = frozenset({ROLE_ADMIN, ROLE_CUSTOMER})
ADMIN_ONLY = frozenset({ROLE_ADMIN})
ADMIN_OR_COURIER = frozenset({ROLE_ADMIN, ROLE_COURIER})


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

STOCK_ALLOCATED = Guard(
    name="stock_allocated",
    description="Every item is covered by FIFO or manual batch allocation",
)

PREPARER_ACTIVE = Guard(
    name="preparer_active",
    description="The completing worker holds a working preparer session",
)

PAYMENT_VALID = Guard(
    name="payment_valid",
    description="Amount paid matches the payment method",
)

logger.info(
    "customer_order_workflow_guards_defined",
    extra={
        "guards": [
            STOCK_ALLOCATED.name,
            PREPARER_ACTIVE.name,
            PAYMENT_VALID.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Customer Order Workflow
# -----------------------------------------------------------------------------

def _exits(from_state: S, cancel_roles: frozenset[str], restores: bool) -> tuple[Transition, ...]:
    return (
        Transition(from_state.value, S.REJECTED.value, action="reject", restores_inventory=restores),
        Transition(
            from_state.value,
            S.CANCELLED.value,
            action="cancel",
            roles=cancel_roles,
            restores_inventory=restores,
        ),
    )


CUSTOMER_ORDER_WORKFLOW = Workflow(
    name="customer_order",
    description="Customer order placement, preparation and delivery",
    initial_state=S.PENDING.value,
    states=tuple(s.value for s in S),
    transitions=(
        Transition(S.PENDING.value, S.ACCEPTED.value, action="accept"),
        *_exits(S.PENDING, ADMIN_OR_CUSTOMER, restores=False),
        Transition(S.ACCEPTED.value, S.PREPARING.value, action="start_preparation"),
        *_exits(S.ACCEPTED, ADMIN_OR_CUSTOMER, restores=False),
        Transition(S.PREPARING.value, S.PREPARING.value, action="join_preparation"),
        Transition(
            S.PREPARING.value,
            S.PREPARED.value,
            action="complete_preparation",
            guard=PREPARER_ACTIVE,
        ),
        *_exits(S.PREPARING, ADMIN_OR_CUSTOMER, restores=False),
        Transition(S.PREPARED.value, S.ASSIGNED.value, action="assign_courier"),
        *_exits(S.PREPARED, ADMIN_ONLY, restores=True),
        Transition(S.ASSIGNED.value, S.ON_THE_WAY.value, action="start_delivery"),
        *_exits(S.ASSIGNED, ADMIN_ONLY, restores=True),
        Transition(
            S.ON_THE_WAY.value,
            S.SHIPPED.value,
            action="complete_delivery",
            guard=PAYMENT_VALID,
        ),
        Transition(S.ON_THE_WAY.value, S.RETURNED.value, action="return"),
        *_exits(S.ON_THE_WAY, ADMIN_OR_COURIER, restores=True),
        Transition(
            S.SHIPPED.value, S.CANCELLED.value,
            action="cancel", roles=ADMIN_ONLY, restores_inventory=True,
        ),
        Transition(
            S.RETURNED.value, S.CANCELLED.value,
            action="cancel", roles=ADMIN_ONLY, restores_inventory=True,
        ),
    ),
)

logger.info(
    "customer_order_workflow_registered",
    extra={
        "workflow_name": CUSTOMER_ORDER_WORKFLOW.name,
        "state_count": len(CUSTOMER_ORDER_WORKFLOW.states),
        "transition_count": len(CUSTOMER_ORDER_WORKFLOW.transitions),
        "initial_state": CUSTOMER_ORDER_WORKFLOW.initial_state,
    },
)

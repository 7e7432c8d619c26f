"""
Supplier Order Workflow.

State machine for restock orders, from placement through the supplier's
response to receipt at the warehouse.
"""

from stockflow_kernel.logging_config import get_logger
from stockflow_kernel.models.supplier import SupplierOrderStatus as S
from stockflow_modules.workflow import Guard, Transition, Workflow

logger = get_logger("modules.supplier_orders.workflows")


SOME_ITEMS_DECLINED = Guard(
    name="some_items_declined",
    description="At least one item was declined and at least one accepted",
)

ADMIN_CONFIRMED = Guard(
    name="admin_confirmed",
    description="An administrator accepted the reduced order",
)

SUPPLIER_ORDER_WORKFLOW = Workflow(
    name="supplier_order",
    description="Supplier restock order",
    initial_state=S.PENDING.value,
    states=tuple(s.value for s in S),
    transitions=(
        Transition(S.PENDING.value, S.ACCEPTED.value, action="respond"),
        Transition(S.PENDING.value, S.PARTIALLY_ACCEPTED.value, action="respond", guard=SOME_ITEMS_DECLINED),
        Transition(S.PENDING.value, S.DECLINED.value, action="decline"),
        Transition(
            S.PARTIALLY_ACCEPTED.value, S.ACCEPTED.value,
            action="confirm_partial", guard=ADMIN_CONFIRMED, roles=frozenset({"admin"}),
        ),
        Transition(S.PARTIALLY_ACCEPTED.value, S.DELIVERED.value, action="deliver"),
        Transition(S.ACCEPTED.value, S.DELIVERED.value, action="deliver"),
    ),
)

logger.info(
    "supplier_order_workflow_registered",
    extra={
        "workflow_name": SUPPLIER_ORDER_WORKFLOW.name,
        "state_count": len(SUPPLIER_ORDER_WORKFLOW.states),
        "transition_count": len(SUPPLIER_ORDER_WORKFLOW.transitions),
        "initial_state": SUPPLIER_ORDER_WORKFLOW.initial_state,
    },
)

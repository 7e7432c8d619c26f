"""
Delivery Workflow.

State machine for one courier assignment record.
"""

from stockflow_kernel.logging_config import get_logger
from stockflow_kernel.models.courier import DeliveryStatus
from stockflow_modules.workflow import Transition, Workflow

logger = get_logger("modules.delivery.workflows")


DELIVERY_WORKFLOW = Workflow(
    name="delivery",
    description="Courier assignment, transit and hand-over",
    initial_state=DeliveryStatus.ASSIGNED.value,
    states=tuple(s.value for s in DeliveryStatus),
    transitions=(
        Transition(DeliveryStatus.ASSIGNED.value, DeliveryStatus.IN_PROGRESS.value, action="start"),
        # Cancelling an assigned order closes its record as returned
        Transition(DeliveryStatus.ASSIGNED.value, DeliveryStatus.RETURNED.value, action="release"),
        Transition(DeliveryStatus.IN_PROGRESS.value, DeliveryStatus.COMPLETED.value, action="complete"),
        Transition(DeliveryStatus.IN_PROGRESS.value, DeliveryStatus.RETURNED.value, action="return"),
    ),
)

logger.info(
    "delivery_workflow_registered",
    extra={
        "workflow_name": DELIVERY_WORKFLOW.name,
        "state_count": len(DELIVERY_WORKFLOW.states),
        "transition_count": len(DELIVERY_WORKFLOW.transitions),
        "initial_state": DELIVERY_WORKFLOW.initial_state,
    },
)

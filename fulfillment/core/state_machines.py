"""
Order and Consignment State Machines

Every status change in the pipeline is validated here. The tables are fixed;
services attach their own post-transition hooks per target state and run them
inside the transaction that writes the status.
"""

from typing import Dict, List, Optional

from fulfillment.core.enum_utils import get_enum_value
from fulfillment.core.exceptions import InvalidStatusTransitionError
from fulfillment.models.order import OrderStatus
from fulfillment.models.consignment import ConsignmentStatus


class StateMachine:
    """A fixed transition table for one entity type."""

    def __init__(self, entity: str, transitions: Dict[str, List[str]]):
        self.entity = entity
        self.transitions = {
            get_enum_value(state): [get_enum_value(t) for t in targets]
            for state, targets in transitions.items()
        }

    @property
    def states(self) -> List[str]:
        return list(self.transitions)

    def can_transition(self, current_status, new_status) -> bool:
        """Check if a transition is allowed. Self-transitions never are."""
        return get_enum_value(new_status) in self.transitions.get(get_enum_value(current_status), [])

    def get_allowed_transitions(self, current_status) -> List[str]:
        return list(self.transitions.get(get_enum_value(current_status), []))

    def is_terminal(self, status) -> bool:
        return not self.transitions.get(get_enum_value(status))

    def validate_transition(self, current_status, new_status) -> None:
        """Raise InvalidStatusTransitionError unless current -> new is in the table."""
        if not self.can_transition(current_status, new_status):
            raise InvalidStatusTransitionError(
                self.entity,
                get_enum_value(current_status),
                get_enum_value(new_status),
                allowed=self.get_allowed_transitions(current_status),
            )


ORDER_TRANSITIONS: Dict[OrderStatus, List[OrderStatus]] = {
    OrderStatus.PENDING: [
        OrderStatus.CONFIRMED,
        OrderStatus.CANCELLED,
    ],
    OrderStatus.CONFIRMED: [
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
    ],
    OrderStatus.PROCESSING: [
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    ],
    OrderStatus.SHIPPED: [
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.RETURNED,
    ],
    OrderStatus.DELIVERED: [
        OrderStatus.RETURNED,
    ],
    OrderStatus.CANCELLED: [],   # Terminal
    OrderStatus.RETURNED: [],    # Terminal
}

CONSIGNMENT_TRANSITIONS: Dict[ConsignmentStatus, List[ConsignmentStatus]] = {
    ConsignmentStatus.PENDING: [
        ConsignmentStatus.ASSIGNED,
        ConsignmentStatus.CANCELLED,
    ],
    ConsignmentStatus.ASSIGNED: [
        ConsignmentStatus.PICKED,
        ConsignmentStatus.PICKED_UP,
        ConsignmentStatus.CANCELLED,
    ],
    ConsignmentStatus.PICKED: [
        ConsignmentStatus.PICKED_UP,
        ConsignmentStatus.CANCELLED,
    ],
    ConsignmentStatus.PICKED_UP: [
        ConsignmentStatus.IN_TRANSIT,
        ConsignmentStatus.CANCELLED,
    ],
    ConsignmentStatus.IN_TRANSIT: [
        ConsignmentStatus.DELIVERED,
        ConsignmentStatus.FAILED,
        ConsignmentStatus.CANCELLED,
    ],
    ConsignmentStatus.DELIVERED: [],  # Terminal
    ConsignmentStatus.FAILED: [
        ConsignmentStatus.PENDING,    # Retry
    ],
    ConsignmentStatus.CANCELLED: [],  # Terminal
}

ORDER_STATE_MACHINE = StateMachine("order", ORDER_TRANSITIONS)
CONSIGNMENT_STATE_MACHINE = StateMachine("consignment", CONSIGNMENT_TRANSITIONS)

# Orders a fully delivered set of consignments may complete.
ORDER_AUTO_COMPLETE_FROM: List[str] = [
    OrderStatus.CONFIRMED.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.SHIPPED.value,
]

# Order states that allow consignments to be created.
CONSIGNABLE_ORDER_STATUSES: List[str] = [
    OrderStatus.CONFIRMED.value,
    OrderStatus.PROCESSING.value,
]

# Consignment states a driver is physically carrying goods in.
DRIVER_ACTIVE_STATUSES: List[str] = [
    ConsignmentStatus.PICKED_UP.value,
    ConsignmentStatus.IN_TRANSIT.value,
]


def transition_label(machine: StateMachine, current_status, new_status: Optional[str]) -> str:
    return f"{machine.entity} {get_enum_value(current_status)} -> {get_enum_value(new_status)}"

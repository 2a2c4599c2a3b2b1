from dataclasses import dataclass
from enum import Enum

from marketplace.domain.errors import InvalidTransition, Unauthorized


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ALTERNATIVE_PROPOSED = "alternative_proposed"
    DECLINED = "declined"
    TIMEOUT = "timeout"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderEvent(str, Enum):
    CONFIRM = "confirm"
    DECLINE = "decline"
    PROPOSE_TIME = "propose_time"
    EXPIRE = "expire"
    ACCEPT = "accept"
    DECLINE_PROPOSAL = "decline_proposal"
    COMPLETE = "complete"
    CANCEL = "cancel"


class ActorRole(str, Enum):
    CLIENT = "client"
    PROVIDER = "provider"
    SYSTEM = "system"


class CompletedBy(str, Enum):
    MASTER = "master"
    CLIENT = "client"
    AUTO = "auto"


@dataclass(frozen=True)
class Transition:
    target: OrderStatus
    roles: frozenset[ActorRole]


ORDER_TRANSITIONS: dict[tuple[OrderStatus, OrderEvent], Transition] = {
    (OrderStatus.PENDING, OrderEvent.CONFIRM): Transition(
        OrderStatus.CONFIRMED, frozenset({ActorRole.PROVIDER})
    ),
    (OrderStatus.PENDING, OrderEvent.DECLINE): Transition(
        OrderStatus.DECLINED, frozenset({ActorRole.PROVIDER})
    ),
    (OrderStatus.PENDING, OrderEvent.PROPOSE_TIME): Transition(
        OrderStatus.ALTERNATIVE_PROPOSED, frozenset({ActorRole.PROVIDER})
    ),
    (OrderStatus.PENDING, OrderEvent.EXPIRE): Transition(
        OrderStatus.TIMEOUT, frozenset({ActorRole.SYSTEM})
    ),
    (OrderStatus.ALTERNATIVE_PROPOSED, OrderEvent.ACCEPT): Transition(
        OrderStatus.CONFIRMED, frozenset({ActorRole.CLIENT})
    ),
    (OrderStatus.ALTERNATIVE_PROPOSED, OrderEvent.DECLINE_PROPOSAL): Transition(
        OrderStatus.CANCELLED, frozenset({ActorRole.CLIENT})
    ),
    (OrderStatus.CONFIRMED, OrderEvent.COMPLETE): Transition(
        OrderStatus.COMPLETED, frozenset({ActorRole.PROVIDER, ActorRole.SYSTEM})
    ),
    (OrderStatus.CONFIRMED, OrderEvent.CANCEL): Transition(
        OrderStatus.CANCELLED, frozenset({ActorRole.CLIENT})
    ),
}

TERMINAL_STATUSES = frozenset(
    {
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
        OrderStatus.DECLINED,
        OrderStatus.TIMEOUT,
    }
)

# Events answered by the provider; they are rejected once the response deadline passes.
PROVIDER_RESPONSE_EVENTS = frozenset(
    {OrderEvent.CONFIRM, OrderEvent.DECLINE, OrderEvent.PROPOSE_TIME}
)


def resolve_transition(current: str, event: OrderEvent, role: str) -> OrderStatus:
    """Look up the target status for ``event`` or raise.

    Role is checked only for transitions that exist, so an event fired at a
    terminal order is always reported as an invalid transition.
    """

    status = OrderStatus(current)
    transition = ORDER_TRANSITIONS.get((status, event))
    if transition is None:
        if status in TERMINAL_STATUSES:
            raise InvalidTransition(detail=f"Order is already in terminal status: {status.value}")
        raise InvalidTransition(detail=f"Cannot {event.value} an order in status {status.value}")
    if ActorRole(role) not in transition.roles:
        raise Unauthorized(detail=f"Role {role} cannot {event.value} this order")
    return transition.target

"""Escrow Order State Machine Guard.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter what the API or a stale client asks for, an illegal transition
(e.g., paid -> released) raises TransitionNotAllowed.

The state machine is instantiated per-order and validates transitions before
the repository's compare-and-swap status write.

Transition table:
    pending    -> paid        (payment_confirmed)
    pending    -> cancelled   (payment_cancelled)
    paid       -> shipped     (designer_ships)
    shipped    -> delivered   (customer_confirms_delivery)
    delivered  -> released    (funds_released)
    shipped    -> refunded    (dispute_resolved_for_customer)
    delivered  -> refunded    (dispute_resolved_for_customer)
    shipped    -> released    (dispute_resolved_for_designer)
    delivered  -> released    (dispute_resolved_for_designer)
"""

from __future__ import annotations

from functools import lru_cache

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from phasion_escrow.domain.enums import OrderStatus


class OrderStateMachine(StateMachine):
    """State machine that guards escrow order lifecycle transitions.

    Usage:
        sm = OrderStateMachine(current_status="paid")
        sm.designer_ships()  # transitions to shipped
        sm.status            # "shipped"
    """

    # --- States ---
    pending = State("Pending", value="pending", initial=True)
    paid = State("Paid", value="paid")
    shipped = State("Shipped", value="shipped")
    delivered = State("Delivered", value="delivered")
    released = State("Released", value="released", final=True)
    refunded = State("Refunded", value="refunded", final=True)
    cancelled = State("Cancelled", value="cancelled", final=True)

    # --- Events / Transitions ---

    # Deposit reconciliation
    payment_confirmed = pending.to(paid)
    payment_cancelled = pending.to(cancelled)

    # Fulfilment
    designer_ships = paid.to(shipped)
    customer_confirms_delivery = shipped.to(delivered)

    # Settlement
    funds_released = delivered.to(released)

    # Dispute shortcuts (require an open dispute, checked by the coordinator)
    dispute_resolved_for_customer = shipped.to(refunded) | delivered.to(refunded)
    dispute_resolved_for_designer = shipped.to(released) | delivered.to(released)

    def __init__(self, current_status: str = "pending") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current OrderStatus value (e.g., "paid").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches OrderStatus enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [getattr(event, "id", None) or event.name for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a state transition and return the new status.

    Args:
        current_status: Current OrderStatus value.
        event_name: The event to fire (e.g., "designer_ships").

    Returns:
        The new status string after the transition.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = OrderStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status


@lru_cache(maxsize=None)
def source_states(event_name: str) -> tuple[str, ...]:
    """Return the statuses from which `event_name` may fire.

    Used to build the `status IN (...)` guard of a compare-and-swap write.
    """
    sources = []
    for status in OrderStatus:
        try:
            validate_transition(status.value, event_name)
        except TransitionNotAllowed:
            continue
        sources.append(status.value)
    return tuple(sources)

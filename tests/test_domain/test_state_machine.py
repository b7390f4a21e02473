"""Tests for the OrderStateMachine domain guard.

These tests verify that:
    1. The happy-path lifecycle is allowed.
    2. Dispute shortcuts work from shipped and delivered only.
    3. Terminal states accept nothing.
    4. The convenience helpers validate_transition / source_states work.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from phasion_escrow.domain.state_machine import (
    OrderStateMachine,
    source_states,
    validate_transition,
)


class TestHappyPath:
    """pending -> paid -> shipped -> delivered -> released."""

    def test_full_lifecycle(self) -> None:
        sm = OrderStateMachine("pending")
        assert sm.status == "pending"

        sm.payment_confirmed()
        assert sm.status == "paid"

        sm.designer_ships()
        assert sm.status == "shipped"

        sm.customer_confirms_delivery()
        assert sm.status == "delivered"

        sm.funds_released()
        assert sm.status == "released"

    def test_cancel_from_pending(self) -> None:
        sm = OrderStateMachine("pending")
        sm.payment_cancelled()
        assert sm.status == "cancelled"


class TestDisputePath:
    @pytest.mark.parametrize("start", ["shipped", "delivered"])
    def test_refund_shortcut(self, start: str) -> None:
        sm = OrderStateMachine(start)
        sm.dispute_resolved_for_customer()
        assert sm.status == "refunded"

    @pytest.mark.parametrize("start", ["shipped", "delivered"])
    def test_release_shortcut(self, start: str) -> None:
        sm = OrderStateMachine(start)
        sm.dispute_resolved_for_designer()
        assert sm.status == "released"

    def test_no_refund_from_paid(self) -> None:
        sm = OrderStateMachine("paid")
        with pytest.raises(TransitionNotAllowed):
            sm.dispute_resolved_for_customer()


class TestInvalidTransitions:
    def test_paid_cannot_release(self) -> None:
        sm = OrderStateMachine("paid")
        with pytest.raises(TransitionNotAllowed):
            sm.funds_released()

    def test_shipped_cannot_release_without_delivery(self) -> None:
        sm = OrderStateMachine("shipped")
        with pytest.raises(TransitionNotAllowed):
            sm.funds_released()

    def test_paid_cannot_cancel(self) -> None:
        sm = OrderStateMachine("paid")
        with pytest.raises(TransitionNotAllowed):
            sm.payment_cancelled()

    @pytest.mark.parametrize("terminal", ["released", "refunded", "cancelled"])
    def test_terminal_states_are_final(self, terminal: str) -> None:
        sm = OrderStateMachine(terminal)
        assert sm.get_allowed_events() == []

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            OrderStateMachine("lost_in_transit")


class TestValidateTransition:
    def test_returns_new_status(self) -> None:
        assert validate_transition("paid", "designer_ships") == "shipped"

    def test_illegal_raises(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition("pending", "designer_ships")

    def test_unknown_event(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            validate_transition("pending", "teleport")


class TestSourceStates:
    def test_refund_sources(self) -> None:
        assert set(source_states("dispute_resolved_for_customer")) == {"shipped", "delivered"}

    def test_release_sources(self) -> None:
        assert source_states("funds_released") == ("delivered",)


class TestAllowedEvents:
    def test_from_shipped(self) -> None:
        sm = OrderStateMachine("shipped")
        assert set(sm.get_allowed_events()) == {
            "customer_confirms_delivery",
            "dispute_resolved_for_customer",
            "dispute_resolved_for_designer",
        }

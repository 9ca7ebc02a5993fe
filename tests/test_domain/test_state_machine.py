"""Tests for the lifecycle state machine guards.

These tests verify that:
    1. The happy and dispute paths of each machine are allowed.
    2. Illegal transitions are blocked and terminal states allow nothing.
    3. fire_transition reports errors the way callers expect.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from resale_escrow.domain.exceptions import InvalidStateTransitionError
from resale_escrow.domain.state_machine import (
    DisputeStateMachine,
    OrderStateMachine,
    TransferStateMachine,
    VerificationStateMachine,
)
from resale_escrow.services.guards import fire_transition


class TestOrderHappyPath:
    """pending -> completed through transfer and receipt."""

    def test_full_lifecycle(self) -> None:
        sm = OrderStateMachine("pending")
        sm.payment_captured()
        assert sm.status == "confirmed"

        sm.seller_submits_proof()
        assert sm.status == "transfer_pending"

        sm.buyer_confirms()
        assert sm.status == "transferred"

        sm.payout_released()
        assert sm.status == "completed"


class TestOrderDisputePath:
    def test_reported_issue_disputes(self) -> None:
        sm = OrderStateMachine("transfer_pending")
        sm.buyer_reports_issue()
        assert sm.status == "disputed"

    @pytest.mark.parametrize(
        ("event", "expected"),
        [
            ("resolved_for_buyer", "refunded"),
            ("resolved_partially", "refunded"),
            ("resolved_for_seller", "completed"),
            ("dispute_withdrawn", "completed"),
        ],
    )
    def test_dispute_outcomes(self, event: str, expected: str) -> None:
        assert fire_transition(OrderStateMachine, "order", "disputed", event) == expected


class TestOrderCancellation:
    @pytest.mark.parametrize("event", ["payment_failed", "payment_expired"])
    def test_pending_cancels(self, event: str) -> None:
        assert fire_transition(OrderStateMachine, "order", "pending", event) == "cancelled"

    def test_seller_default_cancels(self) -> None:
        assert fire_transition(
            OrderStateMachine, "order", "confirmed", "seller_defaulted"
        ) == "cancelled"


class TestIllegalTransitions:
    def test_pending_to_completed(self) -> None:
        sm = OrderStateMachine("pending")
        with pytest.raises(TransitionNotAllowed):
            sm.payout_released()

    def test_confirmed_cannot_dispute(self) -> None:
        sm = OrderStateMachine("confirmed")
        with pytest.raises(TransitionNotAllowed):
            sm.buyer_reports_issue()

    @pytest.mark.parametrize("status", ["completed", "refunded", "cancelled"])
    def test_terminal_order_states(self, status: str) -> None:
        assert OrderStateMachine(status).get_allowed_events() == []

    def test_confirmed_transfer_is_final(self) -> None:
        assert TransferStateMachine("confirmed").get_allowed_events() == []


class TestTransferMachine:
    def test_proof_then_issue(self) -> None:
        sm = TransferStateMachine("awaiting_proof")
        sm.submit_proof()
        sm.report_issue()
        assert sm.status == "issue_reported"

    def test_cannot_confirm_without_proof(self) -> None:
        sm = TransferStateMachine("awaiting_proof")
        with pytest.raises(TransitionNotAllowed):
            sm.confirm_receipt()


class TestDisputeMachine:
    def test_open_allowed(self) -> None:
        allowed = DisputeStateMachine("open").get_allowed_events()
        assert allowed == ["begin_review", "deadline_lapsed", "respond", "withdraw"]

    @pytest.mark.parametrize("status", ["awaiting_seller", "awaiting_buyer"])
    def test_response_returns_to_review(self, status: str) -> None:
        assert fire_transition(DisputeStateMachine, "dispute", status, "respond") == "under_review"

    def test_escalated_can_resolve(self) -> None:
        assert fire_transition(
            DisputeStateMachine, "dispute", "escalated", "resolve_partial"
        ) == "resolved_partial"

    def test_escalated_cannot_withdraw(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            fire_transition(DisputeStateMachine, "dispute", "escalated", "withdraw")

    def test_resolved_only_closes(self) -> None:
        sm = DisputeStateMachine("resolved_seller_favor")
        assert sm.get_allowed_events() == ["close"]


class TestVerificationMachine:
    def test_flagged_can_be_approved(self) -> None:
        sm = VerificationStateMachine("pending")
        sm.flag()
        sm.approve()
        assert sm.status == "approved"

    def test_rejected_is_final(self) -> None:
        assert VerificationStateMachine("rejected").get_allowed_events() == []


class TestMachineConstruction:
    def test_invalid_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            OrderStateMachine("shipped")


class TestFireTransition:
    def test_returns_new_status(self) -> None:
        status = fire_transition(
            TransferStateMachine, "transfer", "awaiting_proof", "submit_proof"
        )
        assert status == "proof_submitted"

    def test_unknown_event_is_conflict(self) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            fire_transition(OrderStateMachine, "order", "pending", "nonexistent_event")
        assert exc_info.value.details["current_status"] == "pending"

    def test_illegal_transition_is_conflict(self) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            fire_transition(OrderStateMachine, "order", "completed", "buyer_reports_issue")
        assert exc_info.value.code == "INVALID_STATE_TRANSITION"
        assert exc_info.value.details["current_status"] == "completed"

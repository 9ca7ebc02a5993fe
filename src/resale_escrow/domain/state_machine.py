"""Lifecycle State Machine Guards.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter what the API or the deadline sweep asks for, an illegal transition
(e.g., pending -> completed) raises TransitionNotAllowed before any row is
touched.

A machine is instantiated per-entity at its persisted status and validates a
transition before the ORM model's status field is updated. The optimistic
version check in the repositories covers the race between two valid callers.

Order transition table:
    pending          -> confirmed         (payment_captured)
    pending          -> cancelled         (payment_failed | payment_expired)
    confirmed        -> transfer_pending  (seller_submits_proof)
    confirmed        -> cancelled         (seller_defaulted)
    transfer_pending -> transferred       (buyer_confirms)
    transfer_pending -> disputed          (buyer_reports_issue)
    transferred      -> completed         (payout_released)
    disputed         -> refunded          (resolved_for_buyer | resolved_partially)
    disputed         -> completed         (resolved_for_seller | dispute_withdrawn)

Transfer transition table:
    awaiting_proof   -> proof_submitted   (submit_proof)
    proof_submitted  -> confirmed         (confirm_receipt)
    proof_submitted  -> issue_reported    (report_issue)

Dispute transition table:
    open                         -> under_review     (respond | begin_review)
    awaiting_seller/buyer        -> under_review     (respond)
    under_review                 -> awaiting_seller  (request_seller_response)
    under_review                 -> awaiting_buyer   (request_buyer_response)
    open | awaiting_seller/buyer -> escalated        (deadline_lapsed)
    under_review                 -> escalated        (escalate)
    under_review | escalated     -> resolved_*       (resolve_*)
    open | under_review | awaiting_seller/buyer -> closed (withdraw)
    resolved_*                   -> closed           (close)

Verification request transition table:
    pending           -> approved | rejected | flagged
    flagged           -> approved | rejected
"""

from __future__ import annotations

from statemachine import State, StateMachine


class _StatusGuard:
    """Shared constructor and helpers for the lifecycle machines."""

    def __init__(self, current_status: str | None = None) -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The persisted status value (e.g., "confirmed").
                Must match one of the State values exactly. Defaults to
                the initial state.
        """
        if current_status is not None:
            valid_values = {s.value for s in self.states}
            if current_status not in valid_values:
                valid = ", ".join(sorted(valid_values))
                raise ValueError(
                    f"Unknown status '{current_status}'. Valid states: {valid}"
                )
        # start_value expects the string value, not the State object
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches the status enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return sorted({event.name for event in self.allowed_events})


# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------


class OrderStateMachine(_StatusGuard, StateMachine):
    """Guards the escrow order lifecycle.

    Usage:
        sm = OrderStateMachine(current_status="confirmed")
        sm.seller_submits_proof()  # transitions to transfer_pending
        sm.status                  # "transfer_pending"
    """

    # --- States ---
    pending = State("Pending", initial=True)
    confirmed = State("Confirmed")
    transfer_pending = State("Transfer pending")
    transferred = State("Transferred")
    disputed = State("Disputed")
    completed = State("Completed", final=True)
    refunded = State("Refunded", final=True)
    cancelled = State("Cancelled", final=True)

    # --- Events / Transitions ---

    # Payment
    payment_captured = pending.to(confirmed)
    payment_failed = pending.to(cancelled)
    payment_expired = pending.to(cancelled)

    # Transfer
    seller_submits_proof = confirmed.to(transfer_pending)
    seller_defaulted = confirmed.to(cancelled)
    buyer_confirms = transfer_pending.to(transferred)
    buyer_reports_issue = transfer_pending.to(disputed)

    # Settlement
    payout_released = transferred.to(completed)

    # Dispute outcomes
    resolved_for_buyer = disputed.to(refunded)
    resolved_partially = disputed.to(refunded)
    resolved_for_seller = disputed.to(completed)
    dispute_withdrawn = disputed.to(completed)


# ---------------------------------------------------------------------------
# Transfer
# ---------------------------------------------------------------------------


class TransferStateMachine(_StatusGuard, StateMachine):
    """Guards the ticket hand-over sub-workflow of one order."""

    awaiting_proof = State("Awaiting proof", initial=True)
    proof_submitted = State("Proof submitted")
    confirmed = State("Confirmed", final=True)
    issue_reported = State("Issue reported", final=True)

    submit_proof = awaiting_proof.to(proof_submitted)
    confirm_receipt = proof_submitted.to(confirmed)
    report_issue = proof_submitted.to(issue_reported)


# ---------------------------------------------------------------------------
# Dispute
# ---------------------------------------------------------------------------


class DisputeStateMachine(_StatusGuard, StateMachine):
    """Guards the dispute case lifecycle."""

    open = State("Open", initial=True)
    under_review = State("Under review")
    awaiting_seller = State("Awaiting seller")
    awaiting_buyer = State("Awaiting buyer")
    escalated = State("Escalated")
    resolved_buyer_favor = State("Resolved for buyer")
    resolved_seller_favor = State("Resolved for seller")
    resolved_partial = State("Resolved partially")
    closed = State("Closed", final=True)

    # Party statements move an open or awaiting case into review
    respond = (
        open.to(under_review)
        | awaiting_seller.to(under_review)
        | awaiting_buyer.to(under_review)
    )
    begin_review = open.to(under_review)

    # Reviewer requests
    request_seller_response = under_review.to(awaiting_seller)
    request_buyer_response = under_review.to(awaiting_buyer)
    escalate = under_review.to(escalated)

    # Deadline sweep
    deadline_lapsed = (
        open.to(escalated)
        | awaiting_seller.to(escalated)
        | awaiting_buyer.to(escalated)
    )

    # Resolution
    resolve_buyer_favor = under_review.to(resolved_buyer_favor) | escalated.to(
        resolved_buyer_favor
    )
    resolve_seller_favor = under_review.to(resolved_seller_favor) | escalated.to(
        resolved_seller_favor
    )
    resolve_partial = under_review.to(resolved_partial) | escalated.to(resolved_partial)

    # Exit
    withdraw = (
        open.to(closed)
        | under_review.to(closed)
        | awaiting_seller.to(closed)
        | awaiting_buyer.to(closed)
    )
    close = (
        resolved_buyer_favor.to(closed)
        | resolved_seller_favor.to(closed)
        | resolved_partial.to(closed)
    )


# ---------------------------------------------------------------------------
# Verification request
# ---------------------------------------------------------------------------


class VerificationStateMachine(_StatusGuard, StateMachine):
    """Guards reviewer decisions on a verification request."""

    pending = State("Pending", initial=True)
    flagged = State("Flagged")
    approved = State("Approved", final=True)
    rejected = State("Rejected", final=True)

    approve = pending.to(approved) | flagged.to(approved)
    reject = pending.to(rejected) | flagged.to(rejected)
    flag = pending.to(flagged)

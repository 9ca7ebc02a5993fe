"""Tests for domain enumerations."""

from __future__ import annotations

from resale_escrow.domain.enums import (
    APPROVABLE_LEVELS,
    REQUIRED_PROOFS,
    DisputeStatus,
    OrderStatus,
    ProofType,
    TransferStatus,
    VerificationLevel,
)


class TestOrderStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {
            "pending", "confirmed", "transfer_pending", "transferred",
            "completed", "disputed", "refunded", "cancelled",
        }
        assert {s.value for s in OrderStatus} == expected

    def test_status_is_str_enum(self) -> None:
        assert isinstance(OrderStatus.PENDING, str)
        assert OrderStatus.TRANSFER_PENDING == "transfer_pending"


class TestTransferAndDisputeStatus:
    def test_transfer_statuses(self) -> None:
        assert len(TransferStatus) == 4
        assert TransferStatus.AWAITING_PROOF == "awaiting_proof"

    def test_dispute_has_three_resolutions(self) -> None:
        resolved = [s for s in DisputeStatus if s.value.startswith("resolved_")]
        assert len(resolved) == 3


class TestVerificationLevel:
    def test_rank_orders_levels(self) -> None:
        ranks = [level.rank for level in VerificationLevel]
        assert ranks == sorted(ranks)
        assert VerificationLevel.PREMIUM.rank > VerificationLevel.BASIC.rank

    def test_unverified_and_pending_rank_equal(self) -> None:
        assert VerificationLevel.UNVERIFIED.rank == VerificationLevel.PENDING.rank

    def test_reviewer_cannot_grant_pending(self) -> None:
        assert VerificationLevel.PENDING not in APPROVABLE_LEVELS
        assert VerificationLevel.UNVERIFIED not in APPROVABLE_LEVELS


class TestProofs:
    def test_required_proofs(self) -> None:
        assert REQUIRED_PROOFS == {ProofType.CONFIRMATION_EMAIL, ProofType.TICKET_SCREENSHOT}

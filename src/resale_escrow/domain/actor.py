"""The authenticated caller, as decoded from the bearer token."""

from __future__ import annotations

from dataclasses import dataclass

from resale_escrow.domain.enums import ActorRole, Initiator


@dataclass(frozen=True)
class Actor:
    id: str
    email: str | None = None
    role: ActorRole = ActorRole.USER

    @property
    def is_reviewer(self) -> bool:
        return self.role is ActorRole.REVIEWER

    @property
    def initiator(self) -> Initiator:
        """How this actor's actions are tagged in the audit log."""
        return Initiator.REVIEWER if self.is_reviewer else Initiator.USER


# Actor id recorded on deadline-driven events.
SYSTEM_ACTOR = "system"

"""Guards shared by the services: transition checks, party checks, paging."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from statemachine.exceptions import TransitionNotAllowed

from resale_escrow.domain.enums import PartyRole
from resale_escrow.domain.exceptions import (
    InvalidStateTransitionError,
    NotAPartyError,
    ReviewerOnlyError,
    ValidationError,
    WrongPartyError,
)

if TYPE_CHECKING:
    from resale_escrow.domain.actor import Actor
    from resale_escrow.domain.state_machine import _StatusGuard
    from resale_escrow.infrastructure.database.orm_models import Order

MAX_PAGE_SIZE = 50


def utcnow() -> datetime:
    return datetime.now(UTC)


def fire_transition(
    machine_cls: type[_StatusGuard],
    entity: str,
    current_status: str,
    event_name: str,
) -> str:
    """Validate and fire a state machine transition, returning the new status.

    Raises InvalidStateTransitionError if the transition is illegal.
    """
    sm = machine_cls(current_status=current_status)
    event_method = getattr(sm, event_name, None)
    if event_method is None:
        raise InvalidStateTransitionError(entity, current_status, event_name)
    try:
        event_method()
    except TransitionNotAllowed as err:
        raise InvalidStateTransitionError(entity, current_status, event_name) from err
    return sm.status


def party_role(order: Order, actor_id: str) -> PartyRole | None:
    if actor_id == order.buyer_id:
        return PartyRole.BUYER
    if actor_id == order.seller_id:
        return PartyRole.SELLER
    return None


def require_party(order: Order, actor: Actor, allow_reviewer: bool = False) -> PartyRole | None:
    """Return the actor's side of the order; reviewers pass with None when allowed."""
    role = party_role(order, actor.id)
    if role is None and not (allow_reviewer and actor.is_reviewer):
        raise NotAPartyError("order", str(order.id))
    return role


def require_role(order: Order, actor: Actor, required: PartyRole, action: str) -> None:
    role = party_role(order, actor.id)
    if role is None:
        raise NotAPartyError("order", str(order.id))
    if role is not required:
        raise WrongPartyError(action, required.value)


def require_reviewer(actor: Actor, action: str) -> None:
    if not actor.is_reviewer:
        raise ReviewerOnlyError(action)


def counterparty(role: PartyRole) -> PartyRole:
    return PartyRole.SELLER if role is PartyRole.BUYER else PartyRole.BUYER


def clamp_page(page: int, limit: int) -> tuple[int, int]:
    """Page is 1-based; limit is held to 1..MAX_PAGE_SIZE."""
    return max(1, page), max(1, min(limit, MAX_PAGE_SIZE))


def check_urls(urls: list[str], field: str, max_items: int = 10) -> list[str]:
    """Strip and validate a list of http(s) URLs."""
    cleaned = [u.strip() for u in urls if u and u.strip()]
    if not cleaned:
        raise ValidationError(f"At least one {field} URL is required", code="MISSING_URLS")
    if len(cleaned) > max_items:
        raise ValidationError(
            f"At most {max_items} {field} URLs are allowed",
            code="TOO_MANY_URLS",
            details={"max": max_items},
        )
    bad = [u for u in cleaned if not u.startswith(("https://", "http://"))]
    if bad:
        raise ValidationError(
            f"{field} URLs must be http(s)",
            code="INVALID_URL",
            details={"invalid": bad},
        )
    return cleaned

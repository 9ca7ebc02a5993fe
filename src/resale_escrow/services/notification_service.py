"""Notification Service — queues notices for buyers, sellers and reviewers.

Delivery (email, push) happens outside this core. Each notice is written to
the notifications outbox inside the caller's transaction, so a rolled-back
transition never leaves a stray notice behind.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from resale_escrow.infrastructure.database.orm_models import Notification
from resale_escrow.infrastructure.database.repositories import NotificationRepository
from resale_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from resale_escrow.domain.enums import NotificationKind

logger = get_logger(__name__)


class NotificationService:
    def __init__(self, session: AsyncSession) -> None:
        self._repo = NotificationRepository(session)

    async def notify(
        self,
        recipient_id: str,
        kind: NotificationKind,
        title: str,
        message: str,
        link: str | None = None,
    ) -> Notification:
        notification = await self._repo.create(
            Notification(
                recipient_id=recipient_id,
                kind=kind.value,
                title=title,
                message=message,
                link=link,
            )
        )
        logger.info("notification.queued", recipient=recipient_id, kind=kind.value)
        return notification

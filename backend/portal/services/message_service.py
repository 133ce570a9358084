from typing import Any, Callable, Optional
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, or_, and_

from portal.core import policy
from portal.core.errors import AuthenticationRequired, NotFound, PermissionDenied, ValidationError
from portal.models.enums import MessageType, UserRole
from portal.models.message import Message
from portal.models.user import Profile

logger = logging.getLogger(__name__)


@dataclass
class MessageFilters:
    message_type: Optional[MessageType] = None
    unread: Optional[bool] = None
    sender_id: Optional[uuid.UUID] = None
    recipient_id: Optional[uuid.UUID] = None
    search: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


@dataclass
class MessageStats:
    total: int
    unread: int
    sent: int
    received: int


class MessageService:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def _profile(self, db: AsyncSession, profile_id: uuid.UUID) -> Optional[Profile]:
        result = await db.execute(select(Profile).where(Profile.id == profile_id))
        return result.scalar_one_or_none()

    async def list_messages(
        self,
        db: AsyncSession,
        actor: Any,
        filters: Optional[MessageFilters] = None,
    ) -> list[Message]:
        filters = filters or MessageFilters()
        query = select(Message).where(or_(Message.sender_id == actor.id, Message.recipient_id == actor.id))

        if filters.message_type:
            query = query.where(Message.message_type == filters.message_type)
        if filters.unread is True:
            query = query.where(Message.read_at.is_(None))
        elif filters.unread is False:
            query = query.where(Message.read_at.is_not(None))
        if filters.sender_id:
            query = query.where(Message.sender_id == filters.sender_id)
        if filters.recipient_id:
            query = query.where(Message.recipient_id == filters.recipient_id)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            query = query.where(or_(Message.subject.ilike(pattern), Message.content.ilike(pattern)))
        if filters.date_from:
            query = query.where(Message.created_at >= filters.date_from)
        if filters.date_to:
            query = query.where(Message.created_at <= filters.date_to)

        result = await db.execute(query.order_by(Message.created_at.desc()))
        return list(result.scalars().all())

    async def get_message(self, db: AsyncSession, actor: Any, message_id: uuid.UUID) -> Message:
        result = await db.execute(select(Message).where(Message.id == message_id))
        message = result.scalar_one_or_none()
        if not message or actor.id not in (message.sender_id, message.recipient_id):
            raise NotFound("Message not found")
        return message

    async def send(
        self,
        db: AsyncSession,
        actor: Any,
        recipient_id: uuid.UUID,
        content: str,
        subject: Optional[str] = None,
        message_type: Optional[MessageType] = None,
    ) -> Message:
        # Re-read the sender so a role or client change since login takes effect.
        sender = await self._profile(db, actor.id)
        if not sender:
            raise AuthenticationRequired("Sender profile not found")
        if not content or not content.strip():
            raise ValidationError("content", "Message content is required", content)
        if recipient_id == sender.id:
            raise ValidationError("recipient", "You cannot send a message to yourself", recipient_id)

        recipient = await self._profile(db, recipient_id)
        if not recipient:
            raise NotFound("Recipient not found")
        if not policy.can_message(sender, recipient):
            raise PermissionDenied("You are not allowed to message this recipient")

        expected_type = policy.message_type_for(sender, recipient)
        if message_type is not None and MessageType(message_type) != expected_type:
            raise ValidationError("message_type", f"Message type must be {expected_type.value}", message_type)

        message = Message(
            sender_id=sender.id,
            recipient_id=recipient.id,
            subject=subject.strip() if subject else None,
            content=content.strip(),
            message_type=expected_type,
        )
        db.add(message)
        await db.commit()
        await db.refresh(message)
        return message

    async def broadcast_to_client(
        self,
        db: AsyncSession,
        actor: Any,
        content: str,
        subject: Optional[str] = None,
    ) -> list[Message]:
        """Send one message to every user of the sender's client, all or nothing."""
        sender = await self._profile(db, actor.id)
        if not sender:
            raise AuthenticationRequired("Sender profile not found")
        if policy.role_of(sender) != UserRole.CLIENT or sender.client_id is None:
            raise PermissionDenied("Only client managers can message their users")
        if not content or not content.strip():
            raise ValidationError("content", "Message content is required", content)

        result = await db.execute(
            select(Profile)
            .where(Profile.client_id == sender.client_id)
            .where(Profile.role == UserRole.USER)
            .where(Profile.id != sender.id)
        )
        recipients = list(result.scalars().all())
        if not recipients:
            raise ValidationError("recipients", "There are no users in your client to message")

        messages = [
            Message(
                sender_id=sender.id,
                recipient_id=recipient.id,
                subject=subject.strip() if subject else None,
                content=content.strip(),
                message_type=MessageType.CLIENT_TO_USER,
            )
            for recipient in recipients
        ]
        db.add_all(messages)
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            logger.error("Broadcast from %s rolled back", sender.id)
            raise
        for message in messages:
            await db.refresh(message)
        return messages

    async def mark_read(self, db: AsyncSession, actor: Any, message_id: uuid.UUID) -> Message:
        message = await self.get_message(db, actor, message_id)
        if message.recipient_id != actor.id:
            raise PermissionDenied("Only the recipient can mark a message as read")
        if message.read_at is None:
            message.read_at = self.clock()
            await db.commit()
            await db.refresh(message)
        return message

    async def mark_all_read(self, db: AsyncSession, actor: Any) -> int:
        result = await db.execute(
            select(Message).where(and_(Message.recipient_id == actor.id, Message.read_at.is_(None)))
        )
        messages = list(result.scalars().all())
        now = self.clock()
        for message in messages:
            message.read_at = now
        await db.commit()
        return len(messages)

    async def delete(self, db: AsyncSession, actor: Any, message_id: uuid.UUID) -> None:
        await self.get_message(db, actor, message_id)
        await db.execute(delete(Message).where(Message.id == message_id))
        await db.commit()

    async def stats(self, db: AsyncSession, actor: Any) -> MessageStats:
        async def count(*conditions) -> int:
            result = await db.execute(select(func.count(Message.id)).where(*conditions))
            return result.scalar_one()

        sent = await count(Message.sender_id == actor.id)
        received = await count(Message.recipient_id == actor.id)
        unread = await count(Message.recipient_id == actor.id, Message.read_at.is_(None))
        return MessageStats(total=sent + received, unread=unread, sent=sent, received=received)

    async def peers(self, db: AsyncSession, actor: Any) -> list[Profile]:
        query = select(Profile).where(Profile.id != actor.id)
        if not policy.is_admin(actor):
            scope = [Profile.role == UserRole.ADMIN]
            if actor.client_id is not None:
                scope.append(Profile.client_id == actor.client_id)
            query = query.where(or_(*scope))
        result = await db.execute(query.order_by(Profile.full_name))
        return policy.messageable_peers(actor, result.scalars().all())


message_service = MessageService()

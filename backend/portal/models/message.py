from sqlalchemy import Column, String, Enum, DateTime, ForeignKey, Text, Uuid, CheckConstraint, Index, func
import uuid

from portal.core.database import Base
from portal.models.enums import MessageType, enum_values


class Message(Base):
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sender_id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    subject = Column(String, nullable=True)
    content = Column(Text, nullable=False)
    message_type = Column(Enum(MessageType, name="message_type", values_callable=enum_values), nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("length(content) > 0", name="messages_content_check"),
        CheckConstraint("sender_id != recipient_id", name="messages_different_users"),
        Index("ix_messages_recipient_read", "recipient_id", "read_at"),
    )

from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Uuid, CheckConstraint, func
import uuid

from portal.core.database import Base
from portal.core.targets import AssignmentTarget, from_columns


class News(Base):
    __tablename__ = "news"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_by = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("length(title) > 0", name="news_title_check"),
        CheckConstraint("length(content) > 0", name="news_content_check"),
    )


class NewsAssignment(Base):
    """Both target columns null means the item is broadcast to everyone."""
    __tablename__ = "news_assignments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    news_id = Column(Uuid, ForeignKey("news.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_to_user = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=True, index=True)
    assigned_to_client = Column(Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=True, index=True)
    assigned_by = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "assigned_to_user IS NULL OR assigned_to_client IS NULL",
            name="news_assignments_single_target_check",
        ),
    )

    @property
    def target(self) -> AssignmentTarget:
        return from_columns(self.assigned_to_user, self.assigned_to_client)

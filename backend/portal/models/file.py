from sqlalchemy import Column, String, Enum, DateTime, ForeignKey, BigInteger, Text, Uuid, CheckConstraint, Index, func
import uuid

from portal.core.database import Base
from portal.core.targets import AssignmentTarget, from_columns
from portal.models.enums import AccessType, enum_values


class File(Base):
    __tablename__ = "files"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    filename = Column(String, nullable=False)
    original_filename = Column(String, nullable=False)
    storage_path = Column(String, nullable=False, unique=True)
    file_size = Column(BigInteger, nullable=False)
    file_type = Column(String, nullable=False)
    uploaded_by = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class FileAssignment(Base):
    __tablename__ = "file_assignments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    file_id = Column(Uuid, ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_to_user = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=True, index=True)
    assigned_to_client = Column(Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=True, index=True)
    assigned_by = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "(assigned_to_user IS NOT NULL AND assigned_to_client IS NULL) OR "
            "(assigned_to_user IS NULL AND assigned_to_client IS NOT NULL)",
            name="file_assignments_single_target_check",
        ),
    )

    @property
    def target(self) -> AssignmentTarget:
        return from_columns(self.assigned_to_user, self.assigned_to_client)


class FileAccessLog(Base):
    __tablename__ = "file_access_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    file_id = Column(Uuid, ForeignKey("files.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=True)
    access_type = Column(Enum(AccessType, name="access_type", values_callable=enum_values), nullable=False)
    accessed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_file_access_logs_file_accessed", "file_id", "accessed_at"),
    )

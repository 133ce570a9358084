from sqlalchemy import Column, String, Enum, DateTime, ForeignKey, Uuid, func
import uuid

from portal.core.database import Base
from portal.models.enums import ClientStatus, enum_values


class Client(Base):
    """Tenant organization. Not to be confused with the ``client`` role."""
    __tablename__ = "clients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    company_name = Column(String, nullable=False)
    contact_email = Column(String, nullable=False, index=True)
    status = Column(
        Enum(ClientStatus, name="client_status", values_callable=enum_values),
        default=ClientStatus.ACTIVE,
        nullable=False,
    )
    client_admin_id = Column(
        Uuid,
        ForeignKey("profiles.id", ondelete="SET NULL", use_alter=True, name="fk_clients_client_admin_id"),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

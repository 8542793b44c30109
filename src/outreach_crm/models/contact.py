"""Contact model - people the owner is reaching out to"""
import enum
import uuid
from datetime import date, datetime
from typing import List, Optional
from sqlalchemy import String, Date, DateTime, Enum, Index, JSON, func
from sqlalchemy.orm import Mapped, mapped_column

from src.outreach_crm.models.base import Base


class ContactStatus(str, enum.Enum):
    NOT_STARTED = "Not Started"
    REACHED_OUT = "Reached Out"
    RESPONDED = "Responded"
    CHATTED = "Chatted"


CONTACT_STATUS_VALUES = [status.value for status in ContactStatus]


class Contact(Base):
    __tablename__ = "contacts"
    __table_args__ = (
        Index("ix_contacts_user_id_email", "user_id", "email"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    date_of_contact: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[ContactStatus] = mapped_column(
        Enum(ContactStatus, values_callable=lambda e: [m.value for m in e], native_enum=False, length=20),
        nullable=False,
        default=ContactStatus.NOT_STARTED,
    )
    linkedin_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "company": self.company,
            "tags": list(self.tags or []),
            "date_of_contact": self.date_of_contact.isoformat() if self.date_of_contact else None,
            "status": self.status.value if isinstance(self.status, ContactStatus) else self.status,
            "linkedin_url": self.linkedin_url,
        }

"""Database models"""
from src.outreach_crm.models.base import Base
from src.outreach_crm.models.contact import Contact, ContactStatus

__all__ = ["Base", "Contact", "ContactStatus"]

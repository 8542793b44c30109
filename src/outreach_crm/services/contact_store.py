"""Contact persistence with abstract interface for loose coupling"""
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from src.outreach_crm.models.contact import Contact, ContactStatus

logger = logging.getLogger(__name__)

ContactRecord = Dict[str, Any]


def placeholder_email() -> str:
    return f"placeholder_{uuid.uuid4().hex}@example.com"


def to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip())
    raise ValueError(f"invalid date_of_contact: {value!r}")


def prepare_record(record: ContactRecord) -> ContactRecord:
    """Shape an imported contact for storage.

    The contacts table requires an email, so a unique placeholder address
    is generated when none was supplied.
    """
    return {
        "user_id": record["user_id"],
        "name": record.get("name") or "",
        "email": record.get("email") or placeholder_email(),
        "role": record.get("role") or None,
        "company": record.get("company") or None,
        "tags": list(record.get("tags") or []),
        "date_of_contact": to_date(record.get("date_of_contact")),
        "status": ContactStatus(record.get("status") or ContactStatus.NOT_STARTED.value),
        "linkedin_url": record.get("linkedin_url") or None,
    }


def _unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


class ContactStore(ABC):
    @abstractmethod
    def insert_contacts(self, records: List[ContactRecord]) -> List[ContactRecord]:
        """Insert all records at once and return the created rows, ids included."""

    @abstractmethod
    def find_existing_emails(self, user_id: str, emails: List[str]) -> List[str]:
        pass

    @abstractmethod
    def delete_contacts(self, user_id: str, contact_ids: List[str]) -> int:
        """Delete the owner's contacts with the given ids; returns the deleted count."""

    @abstractmethod
    def list_contacts(self, user_id: str) -> List[ContactRecord]:
        pass


class SqlAlchemyContactStore(ContactStore):
    def __init__(self, db: Session):
        self.db = db

    def insert_contacts(self, records: List[ContactRecord]) -> List[ContactRecord]:
        try:
            contacts = [Contact(**prepare_record(record)) for record in records]
            self.db.add_all(contacts)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return [contact.to_dict() for contact in contacts]

    def find_existing_emails(self, user_id: str, emails: List[str]) -> List[str]:
        if not emails:
            return []
        found = set(self.db.execute(
            select(Contact.email).where(
                Contact.user_id == user_id,
                Contact.email.in_(_unique(emails)),
            )
        ).scalars().all())
        return [email for email in _unique(emails) if email in found]

    def delete_contacts(self, user_id: str, contact_ids: List[str]) -> int:
        try:
            result = self.db.execute(
                delete(Contact).where(
                    Contact.user_id == user_id,
                    Contact.id.in_(contact_ids),
                )
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return result.rowcount or 0

    def list_contacts(self, user_id: str) -> List[ContactRecord]:
        contacts = self.db.execute(
            select(Contact)
            .where(Contact.user_id == user_id)
            .order_by(Contact.date_of_contact.desc(), Contact.name)
        ).scalars().all()
        return [contact.to_dict() for contact in contacts]


class InMemoryContactStore(ContactStore):
    """Dict-backed store with failure injection by call number."""

    def __init__(
        self,
        fail_insert_calls: Optional[Iterable[int]] = None,
        fail_delete_calls: Optional[Iterable[int]] = None,
        fail_lookups: bool = False,
    ):
        self.contacts: Dict[str, ContactRecord] = {}
        self.fail_insert_calls = set(fail_insert_calls or [])
        self.fail_delete_calls = set(fail_delete_calls or [])
        self.fail_lookups = fail_lookups
        self.insert_calls = 0
        self.delete_calls = 0
        self.lookup_calls = 0

    def insert_contacts(self, records: List[ContactRecord]) -> List[ContactRecord]:
        self.insert_calls += 1
        if self.insert_calls in self.fail_insert_calls:
            raise RuntimeError("insert rejected by store")
        created = []
        for record in records:
            row = prepare_record(record)
            row["id"] = str(uuid.uuid4())
            row["date_of_contact"] = row["date_of_contact"].isoformat()
            row["status"] = row["status"].value
            created.append(row)
        for row in created:
            self.contacts[row["id"]] = row
        return [dict(row) for row in created]

    def find_existing_emails(self, user_id: str, emails: List[str]) -> List[str]:
        self.lookup_calls += 1
        if self.fail_lookups:
            raise OperationalError("SELECT contacts.email", {}, ConnectionError("store unreachable"))
        existing = {
            row["email"] for row in self.contacts.values() if row["user_id"] == user_id
        }
        return [email for email in _unique(emails) if email in existing]

    def delete_contacts(self, user_id: str, contact_ids: List[str]) -> int:
        self.delete_calls += 1
        if self.delete_calls in self.fail_delete_calls:
            raise RuntimeError("delete rejected by store")
        deleted = 0
        for contact_id in contact_ids:
            row = self.contacts.get(contact_id)
            if row is not None and row["user_id"] == user_id:
                del self.contacts[contact_id]
                deleted += 1
        return deleted

    def list_contacts(self, user_id: str) -> List[ContactRecord]:
        return [dict(row) for row in self.contacts.values() if row["user_id"] == user_id]

"""Duplicate detection, batched import and undo for contact imports"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from src.outreach_crm.models.contact import ContactStatus
from src.outreach_crm.services.contact_store import ContactStore
from src.outreach_crm.services.field_mapping import excel_serial_to_iso, today_iso
from src.outreach_crm.services.import_types import (
    DuplicateCheckResult,
    FieldMapping,
    ImportResult,
    Row,
    UndoResult,
)
from src.outreach_crm.services.import_validation import is_blank

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


def _batches(items: List[Any], batch_size: int):
    for start in range(0, len(items), batch_size):
        yield start // batch_size + 1, items[start:start + batch_size]


def check_for_duplicates(store: ContactStore, user_id: str, emails: List[str]) -> DuplicateCheckResult:
    """Report which candidate emails the owner already has on file.

    Blank emails are never looked up. Store errors propagate.
    """
    candidates = [email.strip() for email in emails if not is_blank(email)]
    if not candidates:
        logger.info("No emails to check for duplicates")
        return DuplicateCheckResult(has_duplicates=False, duplicates=[])

    duplicates = store.find_existing_emails(user_id, candidates)
    logger.info(f"Found {len(duplicates)} duplicate emails among {len(candidates)} candidates")
    return DuplicateCheckResult(has_duplicates=bool(duplicates), duplicates=duplicates)


def _contact_date(value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return excel_serial_to_iso(value)
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and value:
        return value
    return today_iso()


def _contact_tags(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(tag) for tag in value]
    if isinstance(value, str) and value.strip():
        return [tag.strip() for tag in value.split(",") if tag.strip()]
    return []


def map_to_contacts(rows: List[Row], mappings: List[FieldMapping]) -> List[Dict[str, Any]]:
    """Project validated rows (keyed by target field) onto contact fields."""
    targets = {mapping.target_field for mapping in mappings}
    contacts = []
    for row in rows:
        contact: Dict[str, Any] = {"tags": []}
        for target in targets:
            value = row.get(target)
            if target == "name":
                contact["name"] = "" if value is None else str(value)
            elif target == "email":
                contact["email"] = None if is_blank(value) else str(value).strip()
            elif target in ("role", "company", "linkedin_url"):
                contact[target] = "" if is_blank(value) else str(value)
            elif target == "tags":
                contact["tags"] = _contact_tags(value)
            elif target == "status":
                contact["status"] = value or ContactStatus.NOT_STARTED.value
            elif target == "date_of_contact":
                contact["date_of_contact"] = _contact_date(value)

        contact["name"] = contact.get("name") or ""
        contact["status"] = contact.get("status") or ContactStatus.NOT_STARTED.value
        contact["date_of_contact"] = contact.get("date_of_contact") or today_iso()
        contacts.append(contact)
    return contacts


def import_contacts(
    store: ContactStore,
    user_id: str,
    rows: List[Row],
    mappings: List[FieldMapping],
    batch_size: Optional[int] = None,
) -> ImportResult:
    """Insert validated rows in sequential batches.

    A failed batch is reported as ``Batch N error: ...`` and the remaining
    batches still run. ``imported_ids`` holds every id created by the
    batches that succeeded and is the handle for :func:`undo_import`.
    """
    batch_size = batch_size or DEFAULT_BATCH_SIZE
    contacts = map_to_contacts(rows, mappings)
    if not contacts:
        return ImportResult(success=False, imported=0, errors=["No valid contacts to import"], imported_ids=[])

    records = [{**contact, "user_id": user_id} for contact in contacts]
    errors: List[str] = []
    imported_ids: List[str] = []
    imported = 0

    for batch_number, batch in _batches(records, batch_size):
        try:
            created = store.insert_contacts(batch)
        except Exception as e:
            logger.error(f"Error inserting batch {batch_number} ({len(batch)} contacts): {e}")
            errors.append(f"Batch {batch_number} error: {e}")
            continue
        imported += len(created)
        imported_ids.extend(row["id"] for row in created)
        logger.info(f"Inserted batch {batch_number}, count: {len(created)}")

    logger.info(f"Import finished for user {user_id}: {imported} imported, {len(errors)} failed batches")
    return ImportResult(success=not errors, imported=imported, errors=errors, imported_ids=imported_ids)


def undo_import(
    store: ContactStore,
    user_id: str,
    imported_ids: List[str],
    batch_size: Optional[int] = None,
) -> UndoResult:
    batch_size = batch_size or DEFAULT_BATCH_SIZE
    if not imported_ids:
        return UndoResult(success=False, undone_count=0, errors=["No contacts to undo"])

    errors: List[str] = []
    undone = 0
    for batch_number, batch in _batches(list(imported_ids), batch_size):
        try:
            undone += store.delete_contacts(user_id, batch)
        except Exception as e:
            logger.error(f"Error deleting batch {batch_number} during undo: {e}")
            errors.append(f"Batch {batch_number} error: {e}")

    logger.info(f"Undo finished for user {user_id}: {undone} of {len(imported_ids)} contacts removed")
    return UndoResult(success=not errors, undone_count=undone, errors=errors)

"""Row validation for contact imports"""
import logging
from typing import Any, Dict, Iterable, List

from src.outreach_crm.models.contact import CONTACT_STATUS_VALUES, ContactStatus
from src.outreach_crm.services.contact_store import to_date
from src.outreach_crm.services.field_mapping import duplicate_targets, excel_serial_to_iso
from src.outreach_crm.services.import_types import (
    REQUIRED_FIELDS,
    FieldMapping,
    Row,
    ValidationResult,
)

logger = logging.getLogger(__name__)


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def is_storable_date(value: Any) -> bool:
    """True when the importer can store the value as a contact date.

    Numbers are spreadsheet serials; strings must already be ISO dates.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            excel_serial_to_iso(value)
        except (OverflowError, ValueError):
            return False
        return True
    try:
        to_date(value)
    except ValueError:
        return False
    return True


def check_mappings(mappings: List[FieldMapping]) -> List[str]:
    """Mapping-level checks that reject the whole import before any row is read."""
    mapped_fields = [m.target_field for m in mappings]
    missing = [f for f in REQUIRED_FIELDS if f not in mapped_fields]
    if missing:
        return [f"Missing required field mappings: {', '.join(missing)}"]
    duplicates = duplicate_targets(mappings)
    if duplicates:
        return [f"Fields mapped more than once: {', '.join(duplicates)}"]
    return []


def validate_row(row: Row, mappings: List[FieldMapping]) -> tuple[Dict[str, Any], List[str]]:
    errors: List[str] = []
    transformed: Dict[str, Any] = {}

    for mapping in mappings:
        value = row.get(mapping.source_field)
        if mapping.transform is not None:
            try:
                value = mapping.transform(value)
            except Exception as e:
                errors.append(f"Error transforming {mapping.source_field} to {mapping.target_field}: {e}")
                continue

        if mapping.target_field in REQUIRED_FIELDS and is_blank(value):
            errors.append(f"Missing required field: {mapping.target_field}")
        elif mapping.target_field == "date_of_contact" and not is_storable_date(value):
            errors.append(f"Invalid date_of_contact: {value}")

        transformed[mapping.target_field] = value

    status = transformed.get("status")
    if is_blank(status):
        transformed["status"] = ContactStatus.NOT_STARTED.value
    else:
        status = str(status).strip()
        if status not in CONTACT_STATUS_VALUES:
            errors.append(f"Invalid status value: {status}. Must be one of: {', '.join(CONTACT_STATUS_VALUES)}")
        transformed["status"] = status

    tags = transformed.get("tags")
    if not tags:
        transformed["tags"] = []
    elif isinstance(tags, (list, tuple)):
        transformed["tags"] = list(tags)
    elif isinstance(tags, str):
        transformed["tags"] = [tag.strip() for tag in tags.split(",") if tag.strip()]
    else:
        errors.append("Tags must be an array or comma-separated string")

    return transformed, errors


def validate_import_data(rows: List[Row], mappings: List[FieldMapping]) -> ValidationResult:
    """Apply mappings to every row and split clean rows from broken ones.

    A missing required mapping (or a field mapped twice) fails the whole
    import with a single error. Otherwise each row stands alone: rows with
    errors are dropped from ``valid_data`` and reported as ``Row N: ...``.
    ``valid`` is only true when no row failed.
    """
    mapping_errors = check_mappings(mappings)
    if mapping_errors:
        logger.info(f"Validation rejected mappings: {mapping_errors[0]}")
        return ValidationResult(valid=False, errors=mapping_errors, valid_data=[])

    errors: List[str] = []
    valid_data: List[Row] = []
    for index, row in enumerate(rows):
        transformed, row_errors = validate_row(row, mappings)
        if row_errors:
            errors.append(f"Row {index + 1}: {'; '.join(row_errors)}")
        else:
            valid_data.append(transformed)

    logger.info(
        f"Validation complete: {len(valid_data)} valid rows, {len(errors)} rows with errors "
        f"out of {len(rows)}"
    )
    return ValidationResult(valid=not errors, errors=errors, valid_data=valid_data)


def extract_emails(valid_data: Iterable[Row]) -> List[str]:
    emails = []
    for row in valid_data:
        email = row.get("email")
        if not is_blank(email):
            emails.append(str(email).strip())
    return emails


def filter_duplicates(valid_data: List[Row], duplicates: Iterable[str]) -> List[Row]:
    duplicate_set = set(duplicates)
    if not duplicate_set:
        return list(valid_data)
    return [
        row for row in valid_data
        if is_blank(row.get("email")) or str(row.get("email")).strip() not in duplicate_set
    ]

"""Column-to-field mapping for contact imports"""
import logging
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pandas as pd
from email_validator import validate_email

from src.outreach_crm.services.import_types import (
    REQUIRED_FIELDS,
    TARGET_FIELDS,
    FieldMapping,
    MappingError,
    Transform,
)

logger = logging.getLogger(__name__)

# Serial day 0 of the common spreadsheet date system. Starting at 1899-12-30
# rather than 1900-01-01 absorbs the phantom 1900-02-29.
SPREADSHEET_EPOCH = datetime(1899, 12, 30, tzinfo=timezone.utc)

FIELD_SYNONYMS: Dict[str, str] = {
    "name": "name",
    "fullname": "name",
    "full name": "name",
    "contact name": "name",

    "email": "email",
    "email address": "email",
    "contact email": "email",

    "role": "role",
    "position": "role",
    "title": "role",
    "job title": "role",

    "company": "company",
    "organization": "company",
    "company name": "company",

    "tags": "tags",
    "categories": "tags",
    "labels": "tags",

    "status": "status",
    "contact status": "status",

    "date": "date_of_contact",
    "date of contact": "date_of_contact",
    "contact date": "date_of_contact",
    "last contact": "date_of_contact",
    "last contacted": "date_of_contact",

    "linkedin": "linkedin_url",
    "linkedin url": "linkedin_url",
    "linkedinurl": "linkedin_url",
    "linkedin profile": "linkedin_url",
    "linkedin link": "linkedin_url",
}


def today_iso() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def excel_serial_to_iso(serial: float) -> str:
    return (SPREADSHEET_EPOCH + timedelta(days=float(serial))).date().isoformat()


def split_tags(value: Any) -> Any:
    """Split a comma-separated cell; other non-list values are left for the validator to reject."""
    if value is None:
        return []
    if isinstance(value, str):
        return [tag.strip() for tag in value.split(",") if tag.strip()]
    if isinstance(value, (list, tuple)):
        return list(value)
    return value


def parse_contact_date(value: Any, today: Optional[str] = None) -> str:
    """Coerce a cell value to an ISO calendar date.

    Accepts date/datetime objects, spreadsheet serial numbers and date
    strings. Empty or unparseable input falls back to today, so the
    result is always a ``YYYY-MM-DD`` string and feeding it back in
    returns it unchanged.
    """
    fallback = today or today_iso()
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)):
        if value != value:
            return fallback
        try:
            return excel_serial_to_iso(value)
        except OverflowError:
            return fallback

    text = str(value).strip()
    if not text:
        return fallback
    try:
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError:
        pass
    try:
        parsed = pd.to_datetime(text, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return fallback
    if pd.isna(parsed):
        return fallback
    return parsed.date().isoformat()


def normalize_email(value: Any) -> Any:
    """Trim, lowercase and syntax-check an address; blank passes through."""
    if value is None:
        return None
    email = unicodedata.normalize("NFKC", str(value)).strip().lower()
    if not email:
        return ""
    return validate_email(email, check_deliverability=False).normalized


def strip_whitespace(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    return value


TRANSFORMS: Dict[str, Transform] = {
    "split_tags": split_tags,
    "parse_date": parse_contact_date,
    "normalize_email": normalize_email,
    "strip_whitespace": strip_whitespace,
}

DEFAULT_TRANSFORMS: Dict[str, str] = {
    "tags": "split_tags",
    "date_of_contact": "parse_date",
}

_UNSET = object()


def resolve_transform(name: Optional[str]) -> Optional[Transform]:
    if name is None:
        return None
    if name not in TRANSFORMS:
        raise MappingError(f"Unknown transform: {name}. Must be one of: {', '.join(TRANSFORMS)}")
    return TRANSFORMS[name]


def make_mapping(source_field: Optional[str], target_field: str, transform_name: Any = _UNSET) -> FieldMapping:
    """Build a mapping; without an explicit transform the target's default is used."""
    if target_field not in TARGET_FIELDS:
        raise MappingError(f"Unknown target field: {target_field}. Must be one of: {', '.join(TARGET_FIELDS)}")
    if transform_name is _UNSET:
        transform_name = DEFAULT_TRANSFORMS.get(target_field)
    return FieldMapping(
        source_field=source_field,
        target_field=target_field,
        transform=resolve_transform(transform_name),
        transform_name=transform_name,
    )


def normalize_header(header: str) -> str:
    return header.strip().lower()


def build_default_mappings(headers: List[str]) -> List[FieldMapping]:
    mappings: List[FieldMapping] = []
    claimed = set()
    for header in headers:
        target = FIELD_SYNONYMS.get(normalize_header(header))
        if target is None:
            continue
        if target in claimed:
            logger.info(f"Header '{header}' also matches {target}; keeping the earlier column")
            continue
        claimed.add(target)
        mappings.append(make_mapping(header, target))
    return mappings


def with_default_date_mapping(mappings: List[FieldMapping]) -> List[FieldMapping]:
    """Add a sourceless date mapping when no column supplies the contact date.

    The mapping reads no column, so its transform fills in today's date.
    """
    if any(m.target_field == "date_of_contact" for m in mappings):
        return list(mappings)
    return [*mappings, make_mapping(None, "date_of_contact")]


def _check_index(mappings: List[FieldMapping], index: int) -> None:
    if index < 0 or index >= len(mappings):
        raise MappingError(f"No field mapping at position {index}")


def _check_target_free(mappings: List[FieldMapping], target_field: str, ignore_index: Optional[int] = None) -> None:
    for i, existing in enumerate(mappings):
        if i != ignore_index and existing.target_field == target_field:
            raise MappingError(f"Field {target_field} is already mapped")


def add_mapping(mappings: List[FieldMapping], mapping: FieldMapping) -> List[FieldMapping]:
    _check_target_free(mappings, mapping.target_field)
    return [*mappings, mapping]


def remove_mapping(mappings: List[FieldMapping], index: int) -> List[FieldMapping]:
    _check_index(mappings, index)
    return [m for i, m in enumerate(mappings) if i != index]


def update_mapping(
    mappings: List[FieldMapping],
    index: int,
    source_field: Optional[str] = None,
    target_field: Optional[str] = None,
    transform_name: Any = _UNSET,
) -> List[FieldMapping]:
    """Change one mapping in place of position ``index``.

    Retargeting without naming a transform picks up the new target's
    default transform.
    """
    _check_index(mappings, index)
    current = mappings[index]
    new_target = target_field or current.target_field
    if transform_name is _UNSET and new_target == current.target_field:
        transform_name = current.transform_name
    updated = make_mapping(source_field or current.source_field, new_target, transform_name)
    _check_target_free(mappings, updated.target_field, ignore_index=index)
    result = list(mappings)
    result[index] = updated
    return result


def duplicate_targets(mappings: List[FieldMapping]) -> List[str]:
    seen = set()
    duplicates: List[str] = []
    for mapping in mappings:
        if mapping.target_field in seen and mapping.target_field not in duplicates:
            duplicates.append(mapping.target_field)
        seen.add(mapping.target_field)
    return duplicates


@dataclass
class ColumnDescription:
    header: str
    target_field: Optional[str]
    transform_name: Optional[str]


@dataclass
class MappingDescription:
    columns: List[ColumnDescription]
    unmapped_columns: List[str]
    missing_required: List[str]
    duplicate_targets: List[str]


def describe_mappings(headers: List[str], mappings: List[FieldMapping]) -> MappingDescription:
    by_source = {}
    for mapping in mappings:
        by_source.setdefault(mapping.source_field, mapping)

    columns = []
    unmapped = []
    for header in headers:
        mapping = by_source.get(header)
        if mapping is None:
            unmapped.append(header)
            columns.append(ColumnDescription(header=header, target_field=None, transform_name=None))
        else:
            columns.append(ColumnDescription(
                header=header,
                target_field=mapping.target_field,
                transform_name=mapping.transform_name,
            ))

    mapped_targets = {m.target_field for m in mappings}
    return MappingDescription(
        columns=columns,
        unmapped_columns=unmapped,
        missing_required=[f for f in REQUIRED_FIELDS if f not in mapped_targets],
        duplicate_targets=duplicate_targets(mappings),
    )

"""Value types shared by the contact import pipeline"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

Row = Dict[str, Any]
Transform = Callable[[Any], Any]

FILE_TYPE_CSV = "csv"
FILE_TYPE_EXCEL = "excel"
FILE_TYPE_UNKNOWN = "unknown"

TARGET_FIELDS = [
    "name",
    "email",
    "role",
    "company",
    "tags",
    "date_of_contact",
    "status",
    "linkedin_url",
]
REQUIRED_FIELDS = ["name", "date_of_contact"]


class UnsupportedFileError(ValueError):
    pass


class FileParseError(ValueError):
    pass


class MappingError(ValueError):
    pass


class ImportStateError(ValueError):
    """Raised when a pipeline entry point is called from the wrong stage."""


class ImportSessionNotFound(ValueError):
    pass


@dataclass
class ParsedFileData:
    headers: List[str]
    rows: List[Row]
    file_name: str
    file_type: str = FILE_TYPE_UNKNOWN


@dataclass(frozen=True)
class FieldMapping:
    source_field: Optional[str]
    target_field: str
    transform: Optional[Transform] = field(default=None, compare=False)
    transform_name: Optional[str] = None


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str]
    valid_data: List[Row]


@dataclass
class DuplicateCheckResult:
    has_duplicates: bool
    duplicates: List[str]


@dataclass
class ImportResult:
    success: bool
    imported: int
    errors: List[str]
    imported_ids: List[str]


@dataclass
class UndoResult:
    success: bool
    undone_count: int
    errors: List[str]

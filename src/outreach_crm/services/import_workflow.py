"""Import stage machine: upload -> mapping -> validation -> import -> complete"""
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, ClassVar, Dict, List, Optional, Union

from src.outreach_crm.services.contact_import import (
    check_for_duplicates,
    import_contacts,
    undo_import,
)
from src.outreach_crm.services.contact_store import ContactStore
from src.outreach_crm.schemas.contact_import import (
    ColumnDescriptionSchema,
    FieldMappingSchema,
    ImportResultSchema,
    ImportSessionState,
    MappingDescriptionSchema,
    UndoResultSchema,
    ValidationSummary,
)
from src.outreach_crm.services.field_mapping import (
    build_default_mappings,
    describe_mappings,
    with_default_date_mapping,
)
from src.outreach_crm.services.file_parser import parse_import_file
from src.outreach_crm.services.import_types import (
    FieldMapping,
    ImportResult,
    ImportSessionNotFound,
    ImportStateError,
    ParsedFileData,
    UndoResult,
    ValidationResult,
)
from src.outreach_crm.services.import_validation import (
    extract_emails,
    filter_duplicates,
    validate_import_data,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadStage:
    name: ClassVar[str] = "upload"


@dataclass(frozen=True)
class MappingStage:
    name: ClassVar[str] = "mapping"
    parsed: ParsedFileData
    mappings: List[FieldMapping]
    validation: Optional[ValidationResult] = None


@dataclass(frozen=True)
class ValidationStage:
    name: ClassVar[str] = "validation"
    parsed: ParsedFileData
    mappings: List[FieldMapping]
    validation: ValidationResult
    duplicates: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ImportingStage:
    name: ClassVar[str] = "import"
    parsed: ParsedFileData
    mappings: List[FieldMapping]
    validation: ValidationResult
    duplicates: List[str]
    skip_duplicates: bool


@dataclass(frozen=True)
class CompleteStage:
    name: ClassVar[str] = "complete"
    result: ImportResult
    undo_in_progress: bool = False
    undo_result: Optional[UndoResult] = None

    @property
    def can_undo(self) -> bool:
        return bool(self.result.imported_ids) and not self.undo_in_progress


Stage = Union[UploadStage, MappingStage, ValidationStage, ImportingStage, CompleteStage]


@dataclass(frozen=True)
class FileParsed:
    parsed: ParsedFileData
    mappings: List[FieldMapping]


@dataclass(frozen=True)
class MappingsChanged:
    mappings: List[FieldMapping]


@dataclass(frozen=True)
class DataValidated:
    validation: ValidationResult
    duplicates: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ImportStarted:
    skip_duplicates: bool = False


@dataclass(frozen=True)
class ImportFinished:
    result: ImportResult


@dataclass(frozen=True)
class UndoStarted:
    pass


@dataclass(frozen=True)
class UndoFinished:
    result: UndoResult


@dataclass(frozen=True)
class Reset:
    pass


Event = Union[
    FileParsed, MappingsChanged, DataValidated, ImportStarted,
    ImportFinished, UndoStarted, UndoFinished, Reset,
]


def _illegal(stage: Stage, event: Event) -> ImportStateError:
    return ImportStateError(f"Cannot apply {type(event).__name__} during the {stage.name} stage")


def transition(stage: Stage, event: Event) -> Stage:
    """Return the stage that follows ``stage`` after ``event``.

    Pure; illegal combinations raise ImportStateError. An import can only
    start from the validation stage and an undo only from a completed
    import with no undo already running.
    """
    if isinstance(event, Reset):
        return UploadStage()

    if isinstance(event, FileParsed):
        if not isinstance(stage, UploadStage):
            raise _illegal(stage, event)
        return MappingStage(parsed=event.parsed, mappings=list(event.mappings))

    if isinstance(event, MappingsChanged):
        if not isinstance(stage, (MappingStage, ValidationStage)):
            raise _illegal(stage, event)
        return MappingStage(parsed=stage.parsed, mappings=list(event.mappings))

    if isinstance(event, DataValidated):
        if not isinstance(stage, (MappingStage, ValidationStage)):
            raise _illegal(stage, event)
        if not event.validation.valid_data:
            return MappingStage(parsed=stage.parsed, mappings=stage.mappings, validation=event.validation)
        return ValidationStage(
            parsed=stage.parsed,
            mappings=stage.mappings,
            validation=event.validation,
            duplicates=list(event.duplicates),
        )

    if isinstance(event, ImportStarted):
        if not isinstance(stage, ValidationStage):
            raise _illegal(stage, event)
        return ImportingStage(
            parsed=stage.parsed,
            mappings=stage.mappings,
            validation=stage.validation,
            duplicates=stage.duplicates,
            skip_duplicates=event.skip_duplicates,
        )

    if isinstance(event, ImportFinished):
        if not isinstance(stage, ImportingStage):
            raise _illegal(stage, event)
        return CompleteStage(result=event.result)

    if isinstance(event, UndoStarted):
        if not isinstance(stage, CompleteStage):
            raise _illegal(stage, event)
        if stage.undo_in_progress:
            raise ImportStateError("Undo is already in progress")
        if not stage.result.imported_ids:
            raise ImportStateError("No contacts to undo")
        return replace(stage, undo_in_progress=True)

    if isinstance(event, UndoFinished):
        if not isinstance(stage, CompleteStage) or not stage.undo_in_progress:
            raise _illegal(stage, event)
        if event.result.success:
            return UploadStage()
        return replace(stage, undo_in_progress=False, undo_result=event.result)

    raise _illegal(stage, event)


@dataclass
class ImportSession:
    id: str
    user_id: str
    stage: Stage = field(default_factory=UploadStage)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def apply(self, event: Event) -> Stage:
        with self.lock:
            self.stage = transition(self.stage, event)
            self.updated_at = datetime.now(timezone.utc)
            return self.stage

    def current_mappings(self) -> List[FieldMapping]:
        stage = self.stage
        if not isinstance(stage, (MappingStage, ValidationStage)):
            raise ImportStateError(f"Field mappings cannot be edited during the {stage.name} stage")
        return list(stage.mappings)


class ImportSessionManager:
    """In-memory import sessions; undo capability lives only here."""

    def __init__(self, ttl_minutes: int = 60):
        self.ttl = timedelta(minutes=ttl_minutes)
        self._sessions: Dict[str, ImportSession] = {}
        self._lock = threading.Lock()

    def create(self, user_id: str) -> ImportSession:
        self.purge_expired()
        session = ImportSession(id=str(uuid.uuid4()), user_id=user_id)
        with self._lock:
            self._sessions[session.id] = session
        return session

    def get(self, session_id: str, user_id: str) -> ImportSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None or session.user_id != user_id or self._is_expired(session):
            raise ImportSessionNotFound("Invalid or expired import session. Please upload the file again.")
        return session

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def purge_expired(self) -> int:
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if self._is_expired(s)]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info(f"Purged {len(expired)} expired import sessions")
        return len(expired)

    def _is_expired(self, session: ImportSession) -> bool:
        if isinstance(session.stage, ImportingStage) or (
            isinstance(session.stage, CompleteStage) and session.stage.undo_in_progress
        ):
            return False
        return datetime.now(timezone.utc) - session.updated_at > self.ttl

    def __len__(self) -> int:
        return len(self._sessions)


def start_upload(manager: ImportSessionManager, user_id: str, content: bytes, file_name: str) -> ImportSession:
    """Parse an upload and open a session at the mapping stage with default mappings."""
    parsed = parse_import_file(content, file_name)
    session = manager.create(user_id)
    mappings = with_default_date_mapping(build_default_mappings(parsed.headers))
    session.apply(FileParsed(parsed=parsed, mappings=mappings))
    logger.info(
        f"Import session {session.id}: parsed {file_name} "
        f"({len(parsed.headers)} columns, {len(parsed.rows)} rows)"
    )
    return session


def edit_mappings(
    session: ImportSession,
    edit: Callable[[List[FieldMapping]], List[FieldMapping]],
) -> List[FieldMapping]:
    mappings = edit(session.current_mappings())
    session.apply(MappingsChanged(mappings=mappings))
    return mappings


def validate_session(session: ImportSession, store: ContactStore) -> ValidationResult:
    stage = session.stage
    if not isinstance(stage, (MappingStage, ValidationStage)):
        raise ImportStateError(f"Cannot validate during the {stage.name} stage")

    validation = validate_import_data(stage.parsed.rows, stage.mappings)
    duplicates: List[str] = []
    if validation.valid_data:
        duplicates = check_for_duplicates(store, session.user_id, extract_emails(validation.valid_data)).duplicates
    session.apply(DataValidated(validation=validation, duplicates=duplicates))
    return validation


def start_import(
    session: ImportSession,
    store: ContactStore,
    skip_duplicates: bool = False,
    batch_size: Optional[int] = None,
) -> ImportResult:
    importing = session.apply(ImportStarted(skip_duplicates=skip_duplicates))

    rows = importing.validation.valid_data
    if skip_duplicates and importing.duplicates:
        rows = filter_duplicates(rows, importing.duplicates)
        logger.info(f"Import session {session.id}: skipping {len(importing.validation.valid_data) - len(rows)} duplicate rows")

    try:
        result = import_contacts(store, session.user_id, rows, importing.mappings, batch_size=batch_size)
    except Exception as e:
        logger.exception(f"Import session {session.id}: import aborted")
        result = ImportResult(success=False, imported=0, errors=[str(e)], imported_ids=[])

    if session.stage is not importing:
        logger.warning(
            f"Import session {session.id} was reset while importing; "
            f"{len(result.imported_ids)} created contacts can no longer be undone"
        )
        return result
    session.apply(ImportFinished(result=result))
    return result


def undo_session(session: ImportSession, store: ContactStore, batch_size: Optional[int] = None) -> UndoResult:
    undoing = session.apply(UndoStarted())
    try:
        result = undo_import(store, session.user_id, undoing.result.imported_ids, batch_size=batch_size)
    except Exception as e:
        logger.exception(f"Import session {session.id}: undo aborted")
        result = UndoResult(success=False, undone_count=0, errors=[str(e)])

    if session.stage is undoing:
        session.apply(UndoFinished(result=result))
    return result


def reset_session(session: ImportSession) -> Stage:
    return session.apply(Reset())


def _mapping_schemas(mappings: List[FieldMapping]) -> List[FieldMappingSchema]:
    return [
        FieldMappingSchema(source_field=m.source_field, target_field=m.target_field, transform=m.transform_name)
        for m in mappings
    ]


def _validation_summary(validation: ValidationResult, preview_limit: int) -> ValidationSummary:
    return ValidationSummary(
        valid=validation.valid,
        errors=validation.errors,
        valid_count=len(validation.valid_data),
        preview_rows=validation.valid_data[:preview_limit],
    )


def session_state(session: ImportSession, preview_limit: int = 20) -> ImportSessionState:
    stage = session.stage
    state = ImportSessionState(session_id=session.id, stage=stage.name)

    if isinstance(stage, (MappingStage, ValidationStage, ImportingStage)):
        description = describe_mappings(stage.parsed.headers, stage.mappings)
        state.file_name = stage.parsed.file_name
        state.file_type = stage.parsed.file_type
        state.headers = stage.parsed.headers
        state.row_count = len(stage.parsed.rows)
        state.preview_rows = stage.parsed.rows[:preview_limit]
        state.mappings = _mapping_schemas(stage.mappings)
        state.mapping_description = MappingDescriptionSchema(
            columns=[
                ColumnDescriptionSchema(header=c.header, target_field=c.target_field, transform=c.transform_name)
                for c in description.columns
            ],
            unmapped_columns=description.unmapped_columns,
            missing_required=description.missing_required,
            duplicate_targets=description.duplicate_targets,
        )
        if stage.validation is not None:
            state.validation = _validation_summary(stage.validation, preview_limit)

    if isinstance(stage, (ValidationStage, ImportingStage)):
        state.duplicates = stage.duplicates
    if isinstance(stage, ImportingStage):
        state.skip_duplicates = stage.skip_duplicates

    if isinstance(stage, CompleteStage):
        state.import_result = ImportResultSchema(**asdict(stage.result))
        state.can_undo = stage.can_undo
        state.undo_in_progress = stage.undo_in_progress
        if stage.undo_result is not None:
            state.undo_result = UndoResultSchema(**asdict(stage.undo_result))

    return state

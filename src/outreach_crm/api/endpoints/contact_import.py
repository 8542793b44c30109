"""Contact import endpoints driving the upload -> mapping -> validation -> import workflow"""
import logging
from dataclasses import asdict
from fastapi import APIRouter, UploadFile, File, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from src.outreach_crm.api.deps import CurrentUserId, ImportSessions, Store
from src.outreach_crm.config import settings
from src.outreach_crm.schemas.contact_import import (
    FieldMappingCreate,
    FieldMappingList,
    FieldMappingUpdate,
    ImportSessionState,
    StartImportRequest,
    UndoResultSchema,
)
from src.outreach_crm.services.field_mapping import (
    add_mapping,
    make_mapping,
    remove_mapping,
    update_mapping,
)
from src.outreach_crm.services.import_types import (
    FieldMapping,
    FileParseError,
    ImportSessionNotFound,
    ImportStateError,
    MappingError,
    UnsupportedFileError,
)
from src.outreach_crm.services.import_workflow import (
    ImportSession,
    edit_mappings,
    reset_session,
    session_state,
    start_import,
    start_upload,
    undo_session,
    validate_session,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/import")


def _http_error(e: ValueError) -> HTTPException:
    if isinstance(e, ImportSessionNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ImportStateError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def _state(session: ImportSession) -> ImportSessionState:
    return session_state(session, preview_limit=settings.IMPORT_PREVIEW_ROWS)


def _get_session(sessions: ImportSessions, session_id: str, user_id: str) -> ImportSession:
    try:
        return sessions.get(session_id, user_id)
    except ImportSessionNotFound as e:
        raise _http_error(e)


def _check_source(session: ImportSession, source_field: str) -> None:
    if source_field not in session.stage.parsed.headers:
        raise MappingError(f"Unknown source column: {source_field}")


def _to_mapping(session: ImportSession, payload: FieldMappingCreate) -> FieldMapping:
    if payload.source_field is None:
        # only the contact date has a sourceless fallback (today)
        if payload.target_field != "date_of_contact":
            raise MappingError(f"A source column is required for {payload.target_field}")
    else:
        _check_source(session, payload.source_field)
    if payload.transform is not None:
        return make_mapping(payload.source_field, payload.target_field, payload.transform)
    if payload.use_default_transform:
        return make_mapping(payload.source_field, payload.target_field)
    return make_mapping(payload.source_field, payload.target_field, None)


@router.post("/upload", response_model=ImportSessionState)
async def upload_import_file(
    user_id: CurrentUserId,
    sessions: ImportSessions,
    file: UploadFile = File(...)
):
    """
    Parse an uploaded CSV or Excel file and open an import session.
    Returns headers, preview rows and the proposed default field mappings.
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="File name is required")

    content = await file.read()
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File is too large (limit: {settings.IMPORT_MAX_UPLOAD_MB}MB)"
        )

    try:
        session = start_upload(sessions, user_id, content, file.filename)
    except (UnsupportedFileError, FileParseError) as e:
        logger.warning(f"Rejected upload {file.filename}: {e}")
        raise _http_error(e)

    return _state(session)


@router.get("/{session_id}", response_model=ImportSessionState)
def get_import_session(session_id: str, user_id: CurrentUserId, sessions: ImportSessions):
    return _state(_get_session(sessions, session_id, user_id))


@router.put("/{session_id}/mappings", response_model=ImportSessionState)
def replace_mappings(
    session_id: str,
    request: FieldMappingList,
    user_id: CurrentUserId,
    sessions: ImportSessions
):
    session = _get_session(sessions, session_id, user_id)

    def build(_current):
        mappings = []
        for payload in request.mappings:
            mappings = add_mapping(mappings, _to_mapping(session, payload))
        return mappings

    try:
        edit_mappings(session, build)
    except (MappingError, ImportStateError) as e:
        raise _http_error(e)
    return _state(session)


@router.post("/{session_id}/mappings", response_model=ImportSessionState)
def create_mapping(
    session_id: str,
    request: FieldMappingCreate,
    user_id: CurrentUserId,
    sessions: ImportSessions
):
    session = _get_session(sessions, session_id, user_id)
    try:
        edit_mappings(session, lambda current: add_mapping(current, _to_mapping(session, request)))
    except (MappingError, ImportStateError) as e:
        raise _http_error(e)
    return _state(session)


@router.patch("/{session_id}/mappings/{index}", response_model=ImportSessionState)
def change_mapping(
    session_id: str,
    index: int,
    request: FieldMappingUpdate,
    user_id: CurrentUserId,
    sessions: ImportSessions
):
    """
    Change the source, target or transform of one mapping.
    Omitting transform while changing the target applies the new target's default transform.
    """
    session = _get_session(sessions, session_id, user_id)
    kwargs = {"source_field": request.source_field, "target_field": request.target_field}
    if "transform" in request.model_fields_set:
        kwargs["transform_name"] = request.transform

    def change(current):
        if request.source_field is not None:
            _check_source(session, request.source_field)
        return update_mapping(current, index, **kwargs)

    try:
        edit_mappings(session, change)
    except (MappingError, ImportStateError) as e:
        raise _http_error(e)
    return _state(session)


@router.delete("/{session_id}/mappings/{index}", response_model=ImportSessionState)
def delete_mapping(session_id: str, index: int, user_id: CurrentUserId, sessions: ImportSessions):
    session = _get_session(sessions, session_id, user_id)
    try:
        edit_mappings(session, lambda current: remove_mapping(current, index))
    except (MappingError, ImportStateError) as e:
        raise _http_error(e)
    return _state(session)


@router.post("/{session_id}/validate", response_model=ImportSessionState)
def validate_import(session_id: str, user_id: CurrentUserId, sessions: ImportSessions, store: Store):
    """
    Apply the mappings to every row and check valid rows for duplicate emails.
    The session moves to the validation stage when at least one row is importable.
    """
    session = _get_session(sessions, session_id, user_id)
    try:
        validate_session(session, store)
    except ImportStateError as e:
        raise _http_error(e)
    except SQLAlchemyError as e:
        logger.error(f"Duplicate check failed for import session {session_id}: {e}")
        raise HTTPException(status_code=503, detail=f"Duplicate check failed: {e}")
    return _state(session)


@router.post("/{session_id}/start", response_model=ImportSessionState)
def start_contact_import(
    session_id: str,
    request: StartImportRequest,
    user_id: CurrentUserId,
    sessions: ImportSessions,
    store: Store
):
    session = _get_session(sessions, session_id, user_id)
    try:
        start_import(session, store, skip_duplicates=request.skip_duplicates, batch_size=settings.IMPORT_BATCH_SIZE)
    except ImportStateError as e:
        raise _http_error(e)
    return _state(session)


@router.post("/{session_id}/undo", response_model=ImportSessionState)
def undo_contact_import(session_id: str, user_id: CurrentUserId, sessions: ImportSessions, store: Store):
    """
    Delete the contacts created by this session's import.
    Only possible while the session is alive; there is no durable undo log.
    """
    session = _get_session(sessions, session_id, user_id)
    try:
        result = undo_session(session, store, batch_size=settings.IMPORT_BATCH_SIZE)
    except ImportStateError as e:
        raise _http_error(e)
    state = _state(session)
    state.undo_result = UndoResultSchema(**asdict(result))
    return state


@router.post("/{session_id}/reset", response_model=ImportSessionState)
def reset_import(session_id: str, user_id: CurrentUserId, sessions: ImportSessions):
    session = _get_session(sessions, session_id, user_id)
    reset_session(session)
    return _state(session)

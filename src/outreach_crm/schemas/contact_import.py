"""Contact import schemas for the staged upload workflow"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel


class FieldMappingSchema(BaseModel):
    source_field: Optional[str] = None
    target_field: str
    transform: Optional[str] = None


class FieldMappingCreate(BaseModel):
    source_field: Optional[str] = None
    target_field: str
    transform: Optional[str] = None
    use_default_transform: bool = True


class FieldMappingUpdate(BaseModel):
    source_field: Optional[str] = None
    target_field: Optional[str] = None
    transform: Optional[str] = None


class FieldMappingList(BaseModel):
    mappings: List[FieldMappingCreate]


class ColumnDescriptionSchema(BaseModel):
    header: str
    target_field: Optional[str] = None
    transform: Optional[str] = None


class MappingDescriptionSchema(BaseModel):
    columns: List[ColumnDescriptionSchema]
    unmapped_columns: List[str]
    missing_required: List[str]
    duplicate_targets: List[str]


class ValidationSummary(BaseModel):
    valid: bool
    errors: List[str]
    valid_count: int
    preview_rows: List[Dict[str, Any]]


class ImportResultSchema(BaseModel):
    success: bool
    imported: int
    errors: List[str]
    imported_ids: List[str]


class UndoResultSchema(BaseModel):
    success: bool
    undone_count: int
    errors: List[str]


class StartImportRequest(BaseModel):
    skip_duplicates: bool = False


class ImportSessionState(BaseModel):
    session_id: str
    stage: str
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    headers: List[str] = []
    row_count: int = 0
    preview_rows: List[Dict[str, Any]] = []
    mappings: List[FieldMappingSchema] = []
    mapping_description: Optional[MappingDescriptionSchema] = None
    validation: Optional[ValidationSummary] = None
    duplicates: List[str] = []
    skip_duplicates: Optional[bool] = None
    import_result: Optional[ImportResultSchema] = None
    can_undo: bool = False
    undo_in_progress: bool = False
    undo_result: Optional[UndoResultSchema] = None


class ContactResponse(BaseModel):
    id: str
    name: str
    email: str
    role: Optional[str] = None
    company: Optional[str] = None
    tags: List[str]
    date_of_contact: str
    status: str
    linkedin_url: Optional[str] = None

"""API dependencies - owner identity, database session and import collaborators"""
from typing import Annotated
from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from src.outreach_crm.config import settings
from src.outreach_crm.database import get_db
from src.outreach_crm.services.contact_store import ContactStore, SqlAlchemyContactStore
from src.outreach_crm.services.import_workflow import ImportSessionManager

import_sessions = ImportSessionManager(ttl_minutes=settings.IMPORT_SESSION_TTL_MINUTES)


def get_current_user_id(
    x_user_id: str = Header(default="", description="Owner ID for simple auth")
) -> str:
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return user_id


def get_contact_store(db: Session = Depends(get_db)) -> ContactStore:
    return SqlAlchemyContactStore(db)


def get_import_sessions() -> ImportSessionManager:
    return import_sessions


CurrentUserId = Annotated[str, Depends(get_current_user_id)]
DbSession = Annotated[Session, Depends(get_db)]
Store = Annotated[ContactStore, Depends(get_contact_store)]
ImportSessions = Annotated[ImportSessionManager, Depends(get_import_sessions)]

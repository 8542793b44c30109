"""Contact listing endpoint"""
from typing import List
from fastapi import APIRouter

from src.outreach_crm.api.deps import CurrentUserId, Store
from src.outreach_crm.schemas.contact_import import ContactResponse

router = APIRouter()


@router.get("/contacts", response_model=List[ContactResponse])
def list_contacts(user_id: CurrentUserId, store: Store):
    return store.list_contacts(user_id)

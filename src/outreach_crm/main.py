"""Main FastAPI application"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from src.outreach_crm.api.endpoints import health, contact_import, contacts
from src.outreach_crm.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting Outreach CRM API in {settings.APP_ENV} environment")
    logger.info(
        f"Contact import: batch size {settings.IMPORT_BATCH_SIZE}, "
        f"upload limit {settings.IMPORT_MAX_UPLOAD_MB}MB, "
        f"session TTL {settings.IMPORT_SESSION_TTL_MINUTES} minutes"
    )

    yield

    logger.info("Shutting down Outreach CRM API")


app = FastAPI(
    title="Outreach CRM",
    description="Personal networking CRM with staged CSV/Excel contact import",
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(health.router, tags=["Health"])
app.include_router(contact_import.router, tags=["Import"])
app.include_router(contacts.router, tags=["Contacts"])


@app.get("/")
def root():
    return {
        "message": "Outreach CRM API",
        "environment": settings.APP_ENV,
        "docs": "/docs"
    }

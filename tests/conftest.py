import io

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.outreach_crm.api.deps import get_import_sessions
from src.outreach_crm.database import get_db
from src.outreach_crm.main import app
from src.outreach_crm.models import Base
from src.outreach_crm.services.contact_store import InMemoryContactStore, SqlAlchemyContactStore
from src.outreach_crm.services.import_workflow import ImportSessionManager


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def sql_store(db):
    return SqlAlchemyContactStore(db)


@pytest.fixture
def memory_store():
    return InMemoryContactStore()


@pytest.fixture
def import_sessions():
    return ImportSessionManager(ttl_minutes=60)


@pytest.fixture
def client(session_factory, import_sessions):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_import_sessions] = lambda: import_sessions
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_xlsx():
    def _make(rows):
        workbook = Workbook()
        sheet = workbook.active
        for row in rows:
            sheet.append(row)
        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return _make

from datetime import date

from src.outreach_crm.api.deps import get_contact_store
from src.outreach_crm.main import app
from src.outreach_crm.services.contact_store import InMemoryContactStore
from src.outreach_crm.services.field_mapping import today_iso

HEADERS = {"X-User-Id": "user-1"}
CSV = b'name,email,job title,tags\nJane Doe,jane@x.com,Engineer,"ops,lead"\n'


def upload(client, content=CSV, file_name="contacts.csv", headers=HEADERS):
    return client.post("/import/upload", files={"file": (file_name, content, "text/csv")}, headers=headers)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["database"] == "connected"


def test_requires_owner_header(client):
    assert upload(client, headers={}).status_code == 401
    assert client.get("/contacts").status_code == 401


def test_upload_proposes_default_mappings(client):
    response = upload(client)

    assert response.status_code == 200
    state = response.json()
    assert state["stage"] == "mapping"
    assert state["headers"] == ["name", "email", "job title", "tags"]
    assert state["row_count"] == 1
    assert [(m["source_field"], m["target_field"]) for m in state["mappings"]] == [
        ("name", "name"),
        ("email", "email"),
        ("job title", "role"),
        ("tags", "tags"),
        (None, "date_of_contact"),
    ]


def test_upload_rejects_unsupported_file(client):
    response = upload(client, content=b"hello", file_name="notes.txt")

    assert response.status_code == 400
    assert "Unsupported file format" in response.json()["detail"]


def test_upload_excel(client, make_xlsx):
    content = make_xlsx([
        ["Name", "Contact Date", "Status"],
        ["Jane Doe", date(2024, 3, 5), "Chatted"],
    ])

    state = upload(client, content=content, file_name="people.xlsx").json()
    session_id = state["session_id"]
    assert state["file_type"] == "excel"

    validated = client.post(f"/import/{session_id}/validate", headers=HEADERS).json()
    assert validated["validation"]["preview_rows"][0]["date_of_contact"] == "2024-03-05"
    assert validated["validation"]["preview_rows"][0]["status"] == "Chatted"


def test_end_to_end_import_and_undo(client):
    session_id = upload(client).json()["session_id"]

    validated = client.post(f"/import/{session_id}/validate", headers=HEADERS)
    assert validated.status_code == 200
    state = validated.json()
    assert state["stage"] == "validation"
    assert state["validation"]["valid"] is True
    assert state["validation"]["valid_count"] == 1
    assert state["validation"]["preview_rows"] == [{
        "name": "Jane Doe",
        "email": "jane@x.com",
        "role": "Engineer",
        "tags": ["ops", "lead"],
        "date_of_contact": today_iso(),
        "status": "Not Started",
    }]
    assert state["duplicates"] == []

    started = client.post(f"/import/{session_id}/start", json={"skip_duplicates": False}, headers=HEADERS)
    assert started.status_code == 200
    complete = started.json()
    assert complete["stage"] == "complete"
    assert complete["import_result"]["imported"] == 1
    assert complete["can_undo"] is True

    again = client.post(f"/import/{session_id}/start", json={"skip_duplicates": False}, headers=HEADERS)
    assert again.status_code == 409

    contacts = client.get("/contacts", headers=HEADERS).json()
    assert [c["email"] for c in contacts] == ["jane@x.com"]
    assert contacts[0]["role"] == "Engineer"

    undone = client.post(f"/import/{session_id}/undo", headers=HEADERS)
    assert undone.status_code == 200
    assert undone.json()["stage"] == "upload"
    assert undone.json()["undo_result"]["undone_count"] == 1
    assert client.get("/contacts", headers=HEADERS).json() == []

    assert client.post(f"/import/{session_id}/undo", headers=HEADERS).status_code == 409


def test_second_import_flags_duplicates(client):
    first = upload(client).json()["session_id"]
    client.post(f"/import/{first}/validate", headers=HEADERS)
    client.post(f"/import/{first}/start", json={}, headers=HEADERS)

    second = upload(client).json()["session_id"]
    state = client.post(f"/import/{second}/validate", headers=HEADERS).json()

    assert state["duplicates"] == ["jane@x.com"]


def test_mapping_edits(client):
    session_id = upload(client).json()["session_id"]

    removed = client.delete(f"/import/{session_id}/mappings/2", headers=HEADERS)
    assert removed.status_code == 200
    assert "job title" in removed.json()["mapping_description"]["unmapped_columns"]

    added = client.post(
        f"/import/{session_id}/mappings",
        json={"source_field": "job title", "target_field": "company"},
        headers=HEADERS,
    )
    assert added.status_code == 200
    assert added.json()["mappings"][-1] == {"source_field": "job title", "target_field": "company", "transform": None}

    duplicate = client.post(
        f"/import/{session_id}/mappings",
        json={"source_field": "email", "target_field": "name"},
        headers=HEADERS,
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"] == "Field name is already mapped"

    unknown = client.post(
        f"/import/{session_id}/mappings",
        json={"source_field": "phone", "target_field": "linkedin_url"},
        headers=HEADERS,
    )
    assert unknown.status_code == 400

    changed = client.patch(
        f"/import/{session_id}/mappings/1",
        json={"transform": "normalize_email"},
        headers=HEADERS,
    )
    assert changed.status_code == 200
    assert changed.json()["mappings"][1]["transform"] == "normalize_email"


def test_replace_mappings_without_date_column_fails_validation(client):
    session_id = upload(client).json()["session_id"]

    replaced = client.put(
        f"/import/{session_id}/mappings",
        json={"mappings": [{"source_field": "name", "target_field": "name"}]},
        headers=HEADERS,
    )
    assert replaced.status_code == 200
    assert replaced.json()["mapping_description"]["missing_required"] == ["date_of_contact"]

    state = client.post(f"/import/{session_id}/validate", headers=HEADERS).json()
    assert state["stage"] == "mapping"
    assert state["validation"]["errors"] == ["Missing required field mappings: date_of_contact"]

    blocked = client.post(f"/import/{session_id}/start", json={}, headers=HEADERS)
    assert blocked.status_code == 409


def test_sessions_are_private_to_their_owner(client):
    session_id = upload(client).json()["session_id"]

    assert client.get(f"/import/{session_id}", headers={"X-User-Id": "user-2"}).status_code == 404
    assert client.get("/import/unknown-session", headers=HEADERS).status_code == 404


def test_reset_returns_to_upload(client):
    session_id = upload(client).json()["session_id"]

    response = client.post(f"/import/{session_id}/reset", headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["stage"] == "upload"
    assert response.json()["mappings"] == []


def test_replace_mappings_keeps_sourceless_date(client):
    session_id = upload(client).json()["session_id"]

    replaced = client.put(
        f"/import/{session_id}/mappings",
        json={"mappings": [
            {"source_field": "name", "target_field": "name"},
            {"source_field": None, "target_field": "date_of_contact"},
        ]},
        headers=HEADERS,
    )
    assert replaced.status_code == 200
    assert replaced.json()["mappings"][-1] == {
        "source_field": None,
        "target_field": "date_of_contact",
        "transform": "parse_date",
    }
    assert replaced.json()["mapping_description"]["missing_required"] == []

    state = client.post(f"/import/{session_id}/validate", headers=HEADERS).json()
    assert state["stage"] == "validation"
    assert state["validation"]["preview_rows"][0]["date_of_contact"] == today_iso()


def test_sourceless_mapping_only_allowed_for_date(client):
    session_id = upload(client).json()["session_id"]

    response = client.post(
        f"/import/{session_id}/mappings",
        json={"source_field": None, "target_field": "company"},
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "A source column is required for company"


def test_duplicate_lookup_outage_returns_503(client):
    session_id = upload(client).json()["session_id"]
    app.dependency_overrides[get_contact_store] = lambda: InMemoryContactStore(fail_lookups=True)

    response = client.post(f"/import/{session_id}/validate", headers=HEADERS)

    assert response.status_code == 503
    assert response.json()["detail"].startswith("Duplicate check failed")
    assert client.get(f"/import/{session_id}", headers=HEADERS).json()["stage"] == "mapping"

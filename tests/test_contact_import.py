import pytest
from sqlalchemy.exc import OperationalError

from src.outreach_crm.services.contact_import import (
    check_for_duplicates,
    import_contacts,
    map_to_contacts,
    undo_import,
)
from src.outreach_crm.services.contact_store import InMemoryContactStore
from src.outreach_crm.services.field_mapping import make_mapping, today_iso

MAPPINGS = [
    make_mapping("Name", "name"),
    make_mapping("Email", "email"),
    make_mapping("Date", "date_of_contact"),
    make_mapping("Tags", "tags"),
    make_mapping("Status", "status"),
]


def valid_rows(count, prefix="person"):
    return [
        {
            "name": f"{prefix} {i}",
            "email": f"{prefix}{i}@x.com",
            "date_of_contact": "2024-03-05",
            "tags": ["imported"],
            "status": "Not Started",
        }
        for i in range(count)
    ]


def test_check_for_duplicates_reports_existing_emails():
    store = InMemoryContactStore()
    import_contacts(store, "user-1", valid_rows(1, "a"), MAPPINGS)
    existing = store.list_contacts("user-1")[0]["email"]

    result = check_for_duplicates(store, "user-1", [existing, "c@x.com", "", "   "])

    assert result.has_duplicates is True
    assert result.duplicates == [existing]
    assert store.lookup_calls == 1


def test_check_for_duplicates_is_scoped_to_owner():
    store = InMemoryContactStore()
    import_contacts(store, "user-1", valid_rows(1, "a"), MAPPINGS)

    result = check_for_duplicates(store, "user-2", ["a0@x.com"])

    assert result.has_duplicates is False
    assert result.duplicates == []


def test_check_for_duplicates_skips_lookup_without_emails():
    store = InMemoryContactStore(fail_lookups=True)

    result = check_for_duplicates(store, "user-1", ["", "   "])

    assert result.has_duplicates is False
    assert store.lookup_calls == 0


def test_check_for_duplicates_propagates_store_errors():
    store = InMemoryContactStore(fail_lookups=True)

    with pytest.raises(OperationalError):
        check_for_duplicates(store, "user-1", ["a@x.com"])


def test_import_with_failing_middle_batch_keeps_going():
    store = InMemoryContactStore(fail_insert_calls={2})

    result = import_contacts(store, "user-1", valid_rows(150), MAPPINGS, batch_size=50)

    assert result.success is False
    assert result.imported == 100
    assert result.errors == ["Batch 2 error: insert rejected by store"]
    assert len(result.imported_ids) == 100
    assert set(result.imported_ids) == set(store.contacts)
    assert store.insert_calls == 3


def test_import_partial_last_batch():
    store = InMemoryContactStore(fail_insert_calls={2})

    result = import_contacts(store, "user-1", valid_rows(120), MAPPINGS, batch_size=50)

    assert result.imported == 70
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Batch 2 error")
    assert len(result.imported_ids) == 70


def test_import_all_batches_succeed():
    store = InMemoryContactStore()

    result = import_contacts(store, "user-1", valid_rows(51), MAPPINGS)

    assert result.success is True
    assert result.imported == 51
    assert result.errors == []
    assert store.insert_calls == 2


def test_import_without_rows():
    store = InMemoryContactStore()

    result = import_contacts(store, "user-1", [], MAPPINGS)

    assert result.success is False
    assert result.imported == 0
    assert result.errors == ["No valid contacts to import"]
    assert store.insert_calls == 0


def test_import_stores_placeholder_for_missing_email():
    store = InMemoryContactStore()
    rows = [{"name": "No Email", "email": "", "date_of_contact": "2024-03-05", "tags": [], "status": "Responded"}]

    result = import_contacts(store, "user-1", rows, MAPPINGS)

    contact = store.contacts[result.imported_ids[0]]
    assert contact["email"].startswith("placeholder_")
    assert contact["email"].endswith("@example.com")
    assert contact["status"] == "Responded"


def test_map_to_contacts_converts_serial_dates_and_defaults():
    rows = [
        {"name": "A", "date_of_contact": 45356, "tags": "x, y"},
        {"name": "B", "date_of_contact": None, "status": ""},
    ]

    contacts = map_to_contacts(rows, MAPPINGS)

    assert contacts[0]["date_of_contact"] == "2024-03-05"
    assert contacts[0]["tags"] == ["x", "y"]
    assert contacts[0]["status"] == "Not Started"
    assert contacts[1]["date_of_contact"] == today_iso()
    assert contacts[1]["email"] is None


def test_map_to_contacts_only_uses_mapped_targets():
    mappings = [make_mapping("Name", "name"), make_mapping("Date", "date_of_contact")]

    contacts = map_to_contacts([{"name": "A", "date_of_contact": "2024-01-02", "company": "Acme"}], mappings)

    assert "company" not in contacts[0]
    assert contacts[0]["tags"] == []


def test_undo_deletes_in_batches_and_counts_successes():
    store = InMemoryContactStore(fail_delete_calls={2})
    imported = import_contacts(store, "user-1", valid_rows(120), MAPPINGS)

    result = undo_import(store, "user-1", imported.imported_ids, batch_size=50)

    assert store.delete_calls == 3
    assert result.success is False
    assert result.undone_count == 70
    assert result.errors == ["Batch 2 error: delete rejected by store"]
    assert len(store.contacts) == 50


def test_undo_retry_is_idempotent():
    store = InMemoryContactStore()
    imported = import_contacts(store, "user-1", valid_rows(10), MAPPINGS)

    first = undo_import(store, "user-1", imported.imported_ids)
    second = undo_import(store, "user-1", imported.imported_ids)

    assert first.undone_count == 10
    assert second.success is True
    assert second.undone_count == 0


def test_undo_ignores_other_owners_contacts():
    store = InMemoryContactStore()
    imported = import_contacts(store, "user-1", valid_rows(3), MAPPINGS)

    result = undo_import(store, "user-2", imported.imported_ids)

    assert result.undone_count == 0
    assert len(store.contacts) == 3


def test_undo_without_ids():
    result = undo_import(InMemoryContactStore(), "user-1", [])

    assert result.success is False
    assert result.undone_count == 0
    assert result.errors == ["No contacts to undo"]

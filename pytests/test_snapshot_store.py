from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import func, select

from models.entities import Entity
from models.tracked_changes import TrackedChange
from utils.snapshot_store import (
    EntityIdentity,
    EntityRecord,
    JsonFileSnapshotStore,
    SqlSnapshotStore,
)

RECORD = EntityRecord(
    identity=EntityIdentity(name="ΑΛΦΑ ΕΠΕ", tax_id="123456789", creation_date="2020-01-01"),
    snapshot={"company_name": "ΑΛΦΑ ΕΠΕ", "representatives": [{"name": "ΠΑΠΑΔΟΠΟΥΛΟΣ ΓΙΩΡΓΟΣ"}]},
    ledger={
        "2020-01-01_a.pdf": "initial registration",
        "2021-01-01_b.pdf": {"economic_changes": "Αύξηση κεφαλαίου"},
    },
    scan_date=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
)


def test_json_store_file_shape(tmp_path):
    store = JsonFileSnapshotStore(tmp_path)
    store.save("123", RECORD)

    path = tmp_path / "123" / "123_final_metadata.json"
    assert store.path_for("123") == path
    payload = json.loads(path.read_text(encoding="utf-8"))

    assert list(payload) == ["123"]
    body = payload["123"]
    assert body["company-name"] == "ΑΛΦΑ ΕΠΕ"
    assert body["company-tax-id"] == "123456789"
    assert body["creation-date"] == "2020-01-01"
    assert body["scan-date"] == "2024-05-01T12:00:00Z"
    assert body["metadata"]["current-snapshot"]["company_name"] == "ΑΛΦΑ ΕΠΕ"
    assert body["tracked-changes"]["2020-01-01_a.pdf"] == "initial registration"
    # No temp files are left behind.
    assert [p.name for p in path.parent.iterdir()] == [path.name]


def test_json_store_round_trip(tmp_path):
    store = JsonFileSnapshotStore(tmp_path)
    store.save("123", RECORD)

    assert store.load("123") == RECORD


def test_json_store_missing_or_unreadable_is_absent(tmp_path):
    store = JsonFileSnapshotStore(tmp_path)
    assert store.load("404") is None

    path = store.path_for("1")
    path.parent.mkdir(parents=True)
    path.write_text("{ not json", encoding="utf-8")
    assert store.load("1") is None

    path.write_text(json.dumps({"other-id": {}}), encoding="utf-8")
    assert store.load("1") is None


def test_sql_store_round_trip(sqlite_session_factory):
    store = SqlSnapshotStore(sqlite_session_factory)
    assert store.load("123") is None

    store.save("123", RECORD)

    assert store.load("123") == RECORD


def test_sql_store_reprocessing_updates_rows_in_place(sqlite_session_factory):
    store = SqlSnapshotStore(sqlite_session_factory)
    store.save("123", RECORD)

    changed = EntityRecord(
        identity=RECORD.identity,
        snapshot={"company_name": "ΑΛΦΑ ΙΚΕ"},
        ledger={
            **RECORD.ledger,
            "2021-01-01_b.pdf": {"economic_changes": "Αύξηση κεφαλαίου κατά 5.000 Ευρώ"},
        },
        scan_date=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )
    store.save("123", changed)

    session = sqlite_session_factory()
    try:
        assert session.scalar(select(func.count()).select_from(Entity)) == 1
        assert session.scalar(select(func.count()).select_from(TrackedChange)) == 2
    finally:
        session.close()

    loaded = store.load("123")
    assert loaded.snapshot == {"company_name": "ΑΛΦΑ ΙΚΕ"}
    assert loaded.ledger["2021-01-01_b.pdf"] == {
        "economic_changes": "Αύξηση κεφαλαίου κατά 5.000 Ευρώ"
    }
    assert loaded.scan_date == datetime(2024, 6, 1, tzinfo=timezone.utc)


def test_identity_fill_missing_never_overwrites():
    identity = EntityIdentity(name="A").fill_missing(name="B", tax_id="", creation_date="2020-01-01")
    assert identity == EntityIdentity(name="A", tax_id=None, creation_date="2020-01-01")


def test_empty_snapshot_is_distinct_from_missing(tmp_path, sqlite_session_factory):
    for store in (JsonFileSnapshotStore(tmp_path), SqlSnapshotStore(sqlite_session_factory)):
        store.save("1", EntityRecord(identity=EntityIdentity(), snapshot={}, ledger={"a.pdf": "initial registration"}))
        store.save("2", EntityRecord(identity=EntityIdentity(), snapshot=None, ledger={"b.pdf": "initial registration"}))

        assert store.load("1").snapshot == {}
        missing = store.load("2")
        assert missing.snapshot is None
        assert missing.ledger == {"b.pdf": "initial registration"}

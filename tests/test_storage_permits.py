import pytest

from permit_sync.permits.field_mapping import map_raw_to_permit
from permit_sync.permits.models import PermitChange, SyncRun, SyncStatus
from permit_sync.storage import SQLitePermitStore


@pytest.fixture
def store(tmp_path):
    s = SQLitePermitStore(str(tmp_path / "nested" / "permits.sqlite"))
    yield s
    s.close()


def test_schema_is_created_idempotently(tmp_path):
    path = str(tmp_path / "p.sqlite")
    SQLitePermitStore(path).close()
    s = SQLitePermitStore(path)
    names = {
        r["name"]
        for r in s.conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    }
    s.close()
    assert {"permits", "permit_history", "sync_runs", "builders"} <= names


def test_upsert_round_trip(store, raw_permit):
    permit = map_raw_to_permit(raw_permit())
    with store.atomic():
        store.upsert(
            permit,
            "abc",
            seen_at="2024-01-01T00:00:00+00:00",
            builder_name_normalized="ACME CONSTRUCTION",
            raw_json="{}",
        )
    assert store.get_stored_hash(permit.key) == "abc"
    assert store.get_stored_record(permit.key) == permit
    assert store.get_stored_hash(("nope", "00")) is None
    assert store.get_stored_record(("nope", "00")) is None


def test_atomic_rolls_back_on_error(store, raw_permit):
    permit = map_raw_to_permit(raw_permit())
    with pytest.raises(RuntimeError):
        with store.atomic():
            store.upsert(permit, "abc", seen_at="2024-01-01T00:00:00+00:00")
            store.append_changes(
                [PermitChange("24 101234", "01", "status", None, "Issued")],
                sync_run_id=None,
                changed_at="2024-01-01T00:00:00+00:00",
            )
            raise RuntimeError("boom")
    assert store.count_permits() == 0
    assert store.list_changes("24 101234", "01") == []


def test_changes_are_listed_in_insert_order(store):
    with store.atomic():
        store.append_changes(
            [
                PermitChange("1", "00", "status", "A", "B"),
                PermitChange("1", "00", "owner", None, "X"),
            ],
            sync_run_id=7,
            changed_at="2024-01-01T00:00:00+00:00",
        )
        store.append_changes([], sync_run_id=7, changed_at="2024-01-02T00:00:00+00:00")
    rows = store.list_changes("1", "00")
    assert [(r["field_name"], r["old_value"], r["new_value"], r["sync_run_id"]) for r in rows] == [
        ("status", "A", "B", 7),
        ("owner", None, "X", 7),
    ]


def test_sync_run_lifecycle(store):
    run = store.create_sync_run(SyncRun(status=SyncStatus.RUNNING, snapshot_path="x.json"))
    assert run.id is not None
    assert run.started_at

    run.records_total = 3
    run.records_new = 3
    store.update_sync_run(run)
    assert store.get_sync_run(run.id).records_total == 3

    run.status = SyncStatus.COMPLETED
    run.completed_at = "2024-01-01T00:00:00+00:00"
    store.update_sync_run(run)
    saved = store.get_sync_run(run.id)
    assert saved.status == SyncStatus.COMPLETED
    assert saved.is_final

    run.error_message = "late edit"
    with pytest.raises(RuntimeError):
        store.update_sync_run(run)
    assert store.get_sync_run(run.id).error_message is None

    with pytest.raises(ValueError):
        store.create_sync_run(run)
    with pytest.raises(ValueError):
        store.update_sync_run(SyncRun())


def test_apply_stats_refuses_final_run():
    from permit_sync.permits.models import SyncStats

    run = SyncRun(status=SyncStatus.FAILED)
    with pytest.raises(RuntimeError):
        run.apply_stats(SyncStats(total=1, new_count=1))


def test_list_sync_runs_newest_first(store):
    ids = [store.create_sync_run(SyncRun(status=SyncStatus.RUNNING)).id for _ in range(3)]
    assert [r.id for r in store.list_sync_runs(limit=2)] == [ids[2], ids[1]]
    assert store.get_sync_run(9999) is None


def test_rebuild_builders(store, raw_permit):
    names = [
        ("24 1", "ACME CONSTRUCTION INC"),
        ("24 2", "ACME CONSTRUCTION INC"),
        ("24 3", "Acme Construction Inc."),
        ("24 4", "Jane Doe"),
        ("24 5", ""),
    ]
    with store.atomic():
        for num, builder in names:
            store.upsert(
                map_raw_to_permit(raw_permit(PERMIT_NUM=num, BUILDER_NAME=builder)),
                num,
                seen_at="2024-01-01T00:00:00+00:00",
            )

    res = store.rebuild_builders(now_iso="2024-05-01T00:00:00+00:00")
    assert res["ok"] is True
    assert res["builders"] == 2
    assert res["raw_names"] == 3
    assert res["top"][0] == {"name": "ACME CONSTRUCTION INC", "permit_count": 3}

    builders = store.list_builders()
    assert [(b["name_normalized"], b["permit_count"], b["is_incorporated"]) for b in builders] == [
        ("ACME CONSTRUCTION", 3, True),
        ("JANE DOE", 1, False),
    ]

    # A second rebuild updates counts in place.
    store.rebuild_builders(now_iso="2024-06-01T00:00:00+00:00")
    builders = store.list_builders()
    assert len(builders) == 2
    assert builders[0]["first_seen_at"] == "2024-05-01T00:00:00+00:00"
    assert builders[0]["last_seen_at"] == "2024-06-01T00:00:00+00:00"

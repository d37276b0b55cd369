from datetime import datetime

from permit_sync.permits.diff import diff_permit_fields, to_comparable
from permit_sync.permits.field_mapping import map_raw_to_permit


def _fields(changes):
    return {c.field_name: (c.old_value, c.new_value) for c in changes}


def test_identical_records_have_no_changes(raw_permit):
    permit = map_raw_to_permit(raw_permit())
    assert diff_permit_fields(permit, permit) == []


def test_reports_exactly_the_changed_fields(raw_permit):
    old = map_raw_to_permit(raw_permit())
    new = map_raw_to_permit(raw_permit(STATUS="Completed", EST_CONST_COST="175000"))
    changes = diff_permit_fields(old, new)
    assert _fields(changes) == {
        "status": ("Issued", "Completed"),
        "est_const_cost": ("150000.0", "175000.0"),
    }
    assert all(c.permit_num == "24 101234" and c.revision_num == "01" for c in changes)


def test_bookkeeping_fields_are_ignored():
    old = {"permit_num": "1", "revision_num": "00", "status": "A", "data_hash": "x", "last_seen_at": "t1"}
    new = {"permit_num": "1", "revision_num": "00", "status": "A", "data_hash": "y", "first_seen_at": "t2"}
    assert diff_permit_fields(old, new) == []


def test_null_and_absent_are_equivalent():
    old = {"permit_num": "1", "revision_num": "00", "owner": None}
    new = {"permit_num": "1", "revision_num": "00"}
    assert diff_permit_fields(old, new) == []


def test_keys_only_on_one_side_are_reported():
    old = {"permit_num": "1", "revision_num": "00", "ward": "10"}
    new = {"permit_num": "1", "revision_num": "00", "status": "Issued"}
    changes = diff_permit_fields(old, new)
    assert [c.field_name for c in changes] == ["status", "ward"]
    assert _fields(changes) == {"status": (None, "Issued"), "ward": ("10", None)}


def test_diff_against_nothing_lists_every_set_field():
    changes = diff_permit_fields(None, {"permit_num": "1", "revision_num": "00", "status": "Issued"})
    assert _fields(changes) == {
        "permit_num": (None, "1"),
        "revision_num": (None, "00"),
        "status": (None, "Issued"),
    }


def test_dates_compare_as_iso_strings(raw_permit):
    old = map_raw_to_permit(raw_permit())
    new = map_raw_to_permit(raw_permit(COMPLETED_DATE="2024-06-30T00:00:00.000"))
    assert _fields(diff_permit_fields(old, new)) == {
        "completed_date": (None, "2024-06-30T00:00:00"),
    }
    assert to_comparable(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05"
    assert to_comparable(0) == "0"
    assert to_comparable(None) is None


def test_change_serializes_to_dict(raw_permit):
    old = map_raw_to_permit(raw_permit())
    new = map_raw_to_permit(raw_permit(OWNER="JANE DOE"))
    (change,) = diff_permit_fields(old, new)
    assert change.to_dict() == {
        "permit_num": "24 101234",
        "revision_num": "01",
        "field_name": "owner",
        "old_value": "JOHN DOE",
        "new_value": "JANE DOE",
    }

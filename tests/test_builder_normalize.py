import pytest

from permit_sync.builders import aggregate_builders, is_incorporated, normalize_builder_name


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Acme Construction Inc.", "ACME CONSTRUCTION"),
        ("ACME CONSTRUCTION INC", "ACME CONSTRUCTION"),
        ("  acme   construction,  inc  ", "ACME CONSTRUCTION"),
        ("Smith & Sons, L.P.", "SMITH & SONS"),
        ("Northern Builders Ltd.", "NORTHERN BUILDERS"),
        ("Big Build Corporation", "BIG BUILD"),
        ("Acme Corp Inc", "ACME"),
        ("ACME INC .", "ACME"),
        ("Jane Doe", "JANE DOE"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_builder_name(raw, expected):
    assert normalize_builder_name(raw) == expected


def test_suffix_must_be_a_separate_word():
    assert normalize_builder_name("COSTCO") == "COSTCO"
    assert normalize_builder_name("INCA STONEWORKS") == "INCA STONEWORKS"


@pytest.mark.parametrize(
    "raw",
    [
        "Acme Construction Inc.",
        "ACME INC .",
        "Smith & Sons, L.P.",
        "Foo Co., Ltd.",
        " , weird name ,. ",
        "Corp Inc Ltd",
    ],
)
def test_normalize_is_idempotent(raw):
    once = normalize_builder_name(raw)
    assert normalize_builder_name(once) == once


def test_is_incorporated():
    assert is_incorporated("Acme Construction Inc.")
    assert is_incorporated("Smith & Sons, L.P.")
    assert is_incorporated("NORTHERN BUILDERS LIMITED")
    assert not is_incorporated("Jane Doe")
    assert not is_incorporated("COSTCO WHOLESALE")
    assert not is_incorporated("")
    assert not is_incorporated(None)


def test_aggregate_builders_groups_spellings():
    rows = [
        ("ACME CONSTRUCTION INC", 5),
        ("Acme Construction Inc.", 2),
        ("Jane Doe", 3),
        ("  ", 4),
    ]
    builders = aggregate_builders(rows)
    assert builders == [
        {
            "name": "ACME CONSTRUCTION INC",
            "name_normalized": "ACME CONSTRUCTION",
            "permit_count": 7,
            "is_incorporated": True,
        },
        {
            "name": "Jane Doe",
            "name_normalized": "JANE DOE",
            "permit_count": 3,
            "is_incorporated": False,
        },
    ]

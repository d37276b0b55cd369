from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional

from permit_sync.permits.models import CanonicalPermit, RawPermitRecord

COST_SENTINELS = ("DO NOT UPDATE OR DELETE", "DO NOT UPDATE", "DO NOT DELETE")

_COST_JUNK_RE = re.compile(r"[^0-9.\-]")
_COST_NUMBER_RE = re.compile(r"-?(?:\d+(?:\.\d*)?|\.\d+)")
_COUNT_RE = re.compile(r"\s*([+-]?\d+)")
_WARD_GRID_RE = re.compile(r"W(\d{2})")
# JSON escapes can carry unpaired surrogates, which cannot be stored as UTF-8.
_SURROGATE_RE = re.compile("[\ud800-\udfff]")

# Tried after ISO-8601; the feed has shipped each of these at some point.
_DATE_FORMATS = (
    "%Y/%m/%d",
    "%Y/%m/%d %H:%M:%S",
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M:%S",
    "%b %d, %Y",
    "%d-%b-%Y",
)


def _text(raw: RawPermitRecord, key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        return _SURROGATE_RE.sub("\ufffd", value)
    # bool is an int subclass but never a legitimate feed value.
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise TypeError(f"{key}: expected string, got {type(value).__name__}")


def trim_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def parse_date(value: Optional[str]) -> Optional[datetime]:
    raw = trim_to_none(value)
    if raw is None:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    return None


def clean_cost(value: Optional[str]) -> Optional[float]:
    """Estimated construction cost, or None for sentinels and junk."""

    raw = trim_to_none(value)
    if raw is None:
        return None
    upper = raw.upper()
    if any(s in upper for s in COST_SENTINELS):
        return None
    m = _COST_NUMBER_RE.match(_COST_JUNK_RE.sub("", raw))
    if not m:
        return None
    parsed = float(m.group(0))
    if not math.isfinite(parsed):
        return None
    return parsed


def parse_count(value: Optional[str]) -> int:
    # Unknown counts are reported as zero, same as the feed does.
    if value is None:
        return 0
    m = _COUNT_RE.match(value)
    if not m:
        return 0
    return int(m.group(1))


def extract_ward(raw: RawPermitRecord) -> Optional[str]:
    ward = trim_to_none(_text(raw, "WARD"))
    if ward is not None:
        return ward
    grid = trim_to_none(_text(raw, "WARD_GRID"))
    if grid is None:
        return None
    m = _WARD_GRID_RE.search(grid.upper())
    return m.group(1) if m else None


def map_raw_to_permit(raw: RawPermitRecord) -> CanonicalPermit:
    """Map one upper-case feed record to the canonical permit shape.

    Raises TypeError when the record (or one of its values) has an
    unexpected type and ValueError when the natural key is missing.
    Malformed dates and costs are not errors; they map to None.
    """

    if not isinstance(raw, Mapping):
        raise TypeError(f"permit record must be an object, got {type(raw).__name__}")

    def s(key: str) -> Optional[str]:
        return trim_to_none(_text(raw, key))

    permit_num = s("PERMIT_NUM")
    revision_num = s("REVISION_NUM")
    if permit_num is None or revision_num is None:
        raise ValueError("permit record is missing PERMIT_NUM or REVISION_NUM")

    return CanonicalPermit(
        permit_num=permit_num,
        revision_num=revision_num,
        permit_type=s("PERMIT_TYPE"),
        structure_type=s("STRUCTURE_TYPE"),
        work=s("WORK"),
        street_num=s("STREET_NUM"),
        street_name=s("STREET_NAME"),
        street_type=s("STREET_TYPE"),
        street_direction=s("STREET_DIRECTION"),
        city=s("CITY"),
        postal=s("POSTAL"),
        geo_id=s("GEO_ID"),
        building_type=s("BUILDING_TYPE"),
        category=s("CATEGORY"),
        application_date=parse_date(_text(raw, "APPLICATION_DATE")),
        issued_date=parse_date(_text(raw, "ISSUED_DATE")),
        completed_date=parse_date(_text(raw, "COMPLETED_DATE")),
        status=s("STATUS"),
        description=s("DESCRIPTION"),
        est_const_cost=clean_cost(_text(raw, "EST_CONST_COST")),
        builder_name=s("BUILDER_NAME"),
        owner=s("OWNER"),
        dwelling_units_created=parse_count(_text(raw, "DWELLING_UNITS_CREATED")),
        dwelling_units_lost=parse_count(_text(raw, "DWELLING_UNITS_LOST")),
        ward=extract_ward(raw),
        council_district=s("COUNCIL_DISTRICT"),
        current_use=s("CURRENT_USE"),
        proposed_use=s("PROPOSED_USE"),
        housing_units=parse_count(_text(raw, "HOUSING_UNITS")),
        storeys=parse_count(_text(raw, "STOREYS")),
    )

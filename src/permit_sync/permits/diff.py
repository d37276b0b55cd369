from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel

from permit_sync.permits.models import BOOKKEEPING_FIELDS, PermitChange

PermitLike = Union[BaseModel, Mapping[str, Any]]


def _as_dict(permit: Optional[PermitLike]) -> Dict[str, Any]:
    if permit is None:
        return {}
    if isinstance(permit, BaseModel):
        return permit.model_dump()
    return dict(permit)


def to_comparable(value: Any) -> Optional[str]:
    # Absent and explicit null share the None sentinel.
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def diff_permit_fields(old: Optional[PermitLike], new: Optional[PermitLike]) -> List[PermitChange]:
    """Field-level changes between two (possibly partial) permit records.

    Compares the union of keys on both sides, skipping the store's
    bookkeeping columns. Output order follows the new record's keys, then
    any keys only the old record has.
    """

    old_d = _as_dict(old)
    new_d = _as_dict(new)

    keys = list(new_d)
    keys.extend(k for k in old_d if k not in new_d)

    permit_num = to_comparable(new_d.get("permit_num")) or to_comparable(old_d.get("permit_num")) or ""
    revision_num = (
        to_comparable(new_d.get("revision_num")) or to_comparable(old_d.get("revision_num")) or ""
    )

    changes: List[PermitChange] = []
    for key in keys:
        if key in BOOKKEEPING_FIELDS:
            continue
        old_val = to_comparable(old_d.get(key))
        new_val = to_comparable(new_d.get(key))
        if old_val != new_val:
            changes.append(
                PermitChange(
                    permit_num=permit_num,
                    revision_num=revision_num,
                    field_name=key,
                    old_value=old_val,
                    new_value=new_val,
                )
            )
    return changes

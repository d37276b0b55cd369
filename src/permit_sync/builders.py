"""Builder (contractor/owner) name normalization.

Feed names arrive as free text: "Acme Construction Inc.", "ACME CONSTRUCTION
INC", "acme  construction, inc" are one builder. normalize_builder_name()
produces the dedupe key; is_incorporated() flags formal corporate entities.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

# Longer tokens first so "INCORPORATED" never leaves "ORPORATED" residue.
CORPORATE_SUFFIXES: Tuple[str, ...] = (
    "INCORPORATED",
    "CORPORATION",
    "LIMITED",
    "CORP",
    "INC",
    "LTD",
    r"L\.P\.",
    "LP",
    "CO",
)

_SUFFIX_ALTERNATION = "|".join(CORPORATE_SUFFIXES)

_WHITESPACE_RE = re.compile(r"\s+")
_SUFFIX_RE = re.compile(rf"[,.]?\s+(?:{_SUFFIX_ALTERNATION})\.?\s*$", re.IGNORECASE)
_EDGE_PUNCT_RE = re.compile(r"^[,.\s]+|[,.\s]+$")
_INCORPORATED_RE = re.compile(rf"(?<!\w)(?:{_SUFFIX_ALTERNATION})(?!\w)", re.IGNORECASE)


def normalize_builder_name(name: Optional[str]) -> str:
    """Upper-case, whitespace-collapsed name with corporate suffixes removed.

    >>> normalize_builder_name("Acme Construction Inc.")
    'ACME CONSTRUCTION'
    >>> normalize_builder_name("Smith & Sons, L.P.")
    'SMITH & SONS'
    """

    if name is None:
        return ""
    normalized = _WHITESPACE_RE.sub(" ", str(name).upper()).strip()

    # Compound suffixes ("ACME CORP INC") and punctuation left behind by a
    # strip can expose another suffix, so run to a fixed point.
    previous = None
    while previous != normalized:
        previous = normalized
        normalized = _SUFFIX_RE.sub("", normalized)
        normalized = _EDGE_PUNCT_RE.sub("", normalized)
    return normalized


def is_incorporated(name: Optional[str]) -> bool:
    if not name:
        return False
    return _INCORPORATED_RE.search(name) is not None


def aggregate_builders(rows: Iterable[Tuple[str, int]]) -> List[Dict[str, Any]]:
    """Group (raw builder name, permit count) rows by normalized name.

    Counts are summed; the most frequent raw spelling becomes the display
    name. Names that normalize to an empty string are dropped.
    """

    grouped: Dict[str, Dict[str, Any]] = {}
    for raw_name, count in rows:
        display = str(raw_name or "").strip()
        normalized = normalize_builder_name(display)
        if not normalized:
            continue
        n = int(count or 0)
        entry = grouped.get(normalized)
        if entry is None:
            grouped[normalized] = {
                "name": display,
                "name_normalized": normalized,
                "permit_count": n,
                "_max_count": n,
            }
            continue
        entry["permit_count"] += n
        if n > entry["_max_count"]:
            entry["name"] = display
            entry["_max_count"] = n

    out: List[Dict[str, Any]] = []
    for entry in grouped.values():
        entry.pop("_max_count")
        entry["is_incorporated"] = is_incorporated(entry["name"])
        out.append(entry)
    out.sort(key=lambda b: (-b["permit_count"], b["name_normalized"]))
    return out

"""Scope tag -> product group matrix.

Scope tags are assigned upstream by the classification rule engine; this
module only turns a tag set into the product groups used to route supplier
leads. Unknown tags map to nothing.
"""

from __future__ import annotations

import re
from types import MappingProxyType
from typing import FrozenSet, Iterable, Mapping, Set

_FULL_HOME = (
    "kitchen-cabinets",
    "appliances",
    "countertops",
    "plumbing-fixtures",
    "tiling",
    "windows",
    "doors",
    "flooring",
    "paint",
    "lighting",
    "lumber-drywall",
    "roofing-materials",
)

_SECONDARY_SUITE = (
    "windows",
    "doors",
    "flooring",
    "lighting",
    "plumbing-fixtures",
    "lumber-drywall",
    "roofing-materials",
    "paint",
)

TAG_PRODUCT_MATRIX: Mapping[str, FrozenSet[str]] = MappingProxyType(
    {
        "kitchen": frozenset(
            {
                "kitchen-cabinets",
                "appliances",
                "countertops",
                "plumbing-fixtures",
                "tiling",
                "lighting",
                "flooring",
            }
        ),
        "bathroom": frozenset({"plumbing-fixtures", "tiling", "mirrors-glass", "lighting", "paint"}),
        "basement": frozenset({"lumber-drywall", "flooring", "paint", "lighting", "doors", "staircases"}),
        "pool": frozenset(),
        "deck": frozenset({"lumber-drywall"}),
        "porch": frozenset({"lumber-drywall", "paint"}),
        "garage": frozenset({"lumber-drywall", "garage-doors", "lighting"}),
        "fence": frozenset(),
        "garden_suite": frozenset(_SECONDARY_SUITE),
        "laneway": frozenset(_SECONDARY_SUITE),
        "sfd": frozenset(
            _FULL_HOME + ("eavestroughs", "staircases", "mirrors-glass", "garage-doors")
        ),
        "semi": frozenset(_FULL_HOME + ("eavestroughs", "staircases")),
        "townhouse": frozenset(_FULL_HOME + ("eavestroughs", "staircases")),
        "houseplex": frozenset(_FULL_HOME + ("staircases",)),
        "roof": frozenset({"roofing-materials", "eavestroughs"}),
        "cladding": frozenset({"eavestroughs"}),
        "windows": frozenset({"windows", "mirrors-glass"}),
        "interior": frozenset({"paint", "flooring", "doors", "lighting"}),
        "addition": frozenset(
            {"windows", "doors", "flooring", "lumber-drywall", "roofing-materials", "paint", "lighting"}
        ),
        "fireplace": frozenset(),
        "solar": frozenset(),
        "elevator": frozenset(),
        "demolition": frozenset(),
        "security": frozenset(),
    }
)

TAG_PREFIXES = ("new", "alter", "sys", "scale", "exp")

_PREFIX_RE = re.compile(rf"^(?:{'|'.join(TAG_PREFIXES)}):")
_HOUSEPLEX_RE = re.compile(r"^houseplex-\d+-unit$")


def normalize_tag(tag: str) -> str:
    """'new:houseplex-4-unit' -> 'houseplex', 'alter:kitchen' -> 'kitchen'."""

    base = _PREFIX_RE.sub("", tag)
    return _HOUSEPLEX_RE.sub("houseplex", base)


def lookup_products_for_tags(tags: Iterable[str]) -> Set[str]:
    products: Set[str] = set()
    for tag in tags:
        products |= TAG_PRODUCT_MATRIX.get(normalize_tag(str(tag)), frozenset())
    return products

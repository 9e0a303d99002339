"""Read views over the bottles fetched from the store."""

from __future__ import annotations

import unicodedata
from typing import Hashable, Iterable, Mapping, Optional, Sequence

from rapidfuzz import fuzz

from .records import Bottle, Position

# Minimal ``fuzz.partial_ratio`` for a search term to match a wine field.
SEARCH_THRESHOLD = 85

# Label filter value selecting bottles without a custom label.
NO_LABEL = "null"


def normalize(text: str | None) -> str:
    """Return ``text`` lower-cased with accents stripped."""

    if not text:
        return ""
    value = unicodedata.normalize("NFKD", text)
    value = "".join(char for char in value if not unicodedata.combining(char))
    return " ".join(value.lower().split())


def in_stock_bottles(bottles: Iterable[Bottle]) -> list[Bottle]:
    return [bottle for bottle in bottles if bottle.in_stock]


def unplaced_bottles(bottles: Iterable[Bottle]) -> list[Bottle]:
    """Return in-stock bottles without a position, keeping the input order."""

    return [b for b in bottles if b.in_stock and b.position_id is None]


def bottle_location_id(
    bottle: Bottle, positions: Mapping[Hashable, Position] | None = None
) -> Optional[Hashable]:
    """Return the storage location holding ``bottle``.

    The joined position is used first, then ``positions`` (``id -> Position``).
    ``None`` is returned for unplaced bottles or unknown positions.
    """

    if bottle.position_id is None:
        return None
    if bottle.position is not None:
        return bottle.position.storage_location_id
    if positions is not None:
        pos = positions.get(bottle.position_id)
        if pos is not None:
            return pos.storage_location_id
    return None


def placed_bottles(
    bottles: Iterable[Bottle],
    location_id: Hashable,
    positions: Mapping[Hashable, Position] | None = None,
) -> list[Bottle]:
    """Return bottles whose position belongs to ``location_id``."""

    return [
        bottle
        for bottle in bottles
        if bottle.position_id is not None
        and bottle_location_id(bottle, positions) == location_id
    ]


def _matches_search(bottle: Bottle, term: str) -> bool:
    wine = bottle.wine
    if wine is None:
        return False
    for field in (wine.name, wine.domain, wine.region, wine.appellation):
        value = normalize(field)
        if not value:
            continue
        if term in value or fuzz.partial_ratio(term, value) >= SEARCH_THRESHOLD:
            return True
    return False


def filter_bottles(
    bottles: Iterable[Bottle],
    *,
    colors: Sequence[str] | None = None,
    labels: Sequence[str] | None = None,
    vintage_min: int | None = None,
    vintage_max: int | None = None,
    search: str | None = None,
) -> list[Bottle]:
    """Return ``bottles`` matching every given criterion.

    Parameters
    ----------
    colors:
        Wine colours to keep.  Bottles without a joined wine never match.
    labels:
        Custom labels to keep.  :data:`NO_LABEL` selects bottles without a
        label and can be combined with real labels.
    vintage_min, vintage_max:
        Inclusive vintage range.  Bottles without a vintage are dropped as
        soon as one bound is given.
    search:
        Free text looked up in the wine name, domain, region and appellation.
    """

    term = normalize(search)
    label_set = set(labels or ())
    result: list[Bottle] = []
    for bottle in bottles:
        wine = bottle.wine
        if colors and (wine is None or wine.color not in colors):
            continue
        if label_set:
            if bottle.label is None:
                if NO_LABEL not in label_set:
                    continue
            elif bottle.label not in label_set:
                continue
        if vintage_min is not None or vintage_max is not None:
            vintage = wine.vintage if wine is not None else None
            if vintage is None:
                continue
            if vintage_min is not None and vintage < vintage_min:
                continue
            if vintage_max is not None and vintage > vintage_max:
                continue
        if term and not _matches_search(bottle, term):
            continue
        result.append(bottle)
    return result

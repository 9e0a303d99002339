"""Bottle placement strategies.

Every strategy is a pure function of its inputs.  It returns the proposed
``(bottle, position)`` pairs without touching the store; persisting them is
the job of :mod:`cellar.service`.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Hashable, Iterable, Mapping, Optional, Sequence

from . import grid
from .records import Assignment, Bottle, Position, StorageLocation
from .registry import bottle_location_id, unplaced_bottles
from .storage_config import (
    COLOR_AFFINITY,
    COLOR_ORDER,
    MISSING_VINTAGE,
    REGION_AFFINITY,
    UNKNOWN,
    WINE_AFFINITY,
)

logger = logging.getLogger(__name__)


def _bottle_traits(bottle: Bottle) -> tuple[Hashable, Optional[str], Optional[str]]:
    """Return ``(wine id, colour, region)`` used for affinity scoring.

    Colour and region are ``None`` when the wine join is missing.
    """

    wine = bottle.wine
    if wine is None:
        return bottle.wine_id, None, None
    return bottle.wine_id, wine.color, wine.region or None


@dataclass
class AffinityCounters:
    """Per-location counts of wine identities, colours and regions."""

    wines: dict[Hashable, Counter] = field(default_factory=dict)
    colors: dict[Hashable, Counter] = field(default_factory=dict)
    regions: dict[Hashable, Counter] = field(default_factory=dict)

    def add(self, location_id: Hashable, bottle: Bottle, amount: int = 1) -> None:
        wine_id, color, region = _bottle_traits(bottle)
        self.wines.setdefault(location_id, Counter())[wine_id] += amount
        if color is not None:
            self.colors.setdefault(location_id, Counter())[color] += amount
        if region is not None:
            self.regions.setdefault(location_id, Counter())[region] += amount

    def remove(self, location_id: Hashable, bottle: Bottle) -> None:
        self.add(location_id, bottle, amount=-1)
        for table in (self.wines, self.colors, self.regions):
            counts = table.get(location_id)
            if counts is not None:
                # drop zero and negative entries left behind
                counts += Counter()

    def score(self, location_id: Hashable, bottle: Bottle) -> int:
        """Return the affinity of ``bottle`` with the content of a location."""

        wine_id, color, region = _bottle_traits(bottle)
        total = WINE_AFFINITY * self.wines.get(location_id, Counter())[wine_id]
        if color is not None:
            total += COLOR_AFFINITY * self.colors.get(location_id, Counter())[color]
        if region is not None:
            total += REGION_AFFINITY * self.regions.get(location_id, Counter())[region]
        return total

    def copy(self) -> "AffinityCounters":
        return AffinityCounters(
            wines={loc: Counter(c) for loc, c in self.wines.items()},
            colors={loc: Counter(c) for loc, c in self.colors.items()},
            regions={loc: Counter(c) for loc, c in self.regions.items()},
        )

    def snapshot(self) -> dict[Hashable, dict[str, dict]]:
        """Return plain ``location -> {wines, colors, regions}`` mappings."""

        locations = list(dict.fromkeys([*self.wines, *self.colors, *self.regions]))
        return {
            loc: {
                "wines": dict(self.wines.get(loc, {})),
                "colors": dict(self.colors.get(loc, {})),
                "regions": dict(self.regions.get(loc, {})),
            }
            for loc in locations
        }


def build_counters(
    placed: Iterable[Bottle], positions: Mapping[Hashable, Position] | None = None
) -> AffinityCounters:
    """Return counters initialised from bottles already sitting in the grid.

    Bottles whose location cannot be resolved are ignored.
    """

    counters = AffinityCounters()
    for bottle in placed:
        if not bottle.in_stock:
            continue
        location_id = bottle_location_id(bottle, positions)
        if location_id is None:
            continue
        counters.add(location_id, bottle)
    return counters


@dataclass
class PlacementResult:
    assignments: list[Assignment] = field(default_factory=list)
    unplaced: list[Hashable] = field(default_factory=list)
    counters: Optional[AffinityCounters] = None

    @property
    def count(self) -> int:
        return len(self.assignments)


def _unique_positions(positions: Iterable[Position]) -> list[Position]:
    seen: set[Hashable] = set()
    result = []
    for pos in positions:
        if pos.id in seen:
            continue
        seen.add(pos.id)
        result.append(pos)
    return result


def capacity_balancing_placement(
    bottles: Sequence[Bottle], available: Iterable[Position]
) -> PlacementResult:
    """Fill the locations with the most free positions first.

    Free positions are grouped per location and the groups sorted by size,
    largest first; equal sizes keep the order in which the locations appear in
    ``available``.  Unplaced bottles are then assigned in their given order to
    the next free position, moving to the next location once a group is
    exhausted.
    """

    candidates = unplaced_bottles(bottles)
    groups = grid.group_by_location(grid.sort_positions(_unique_positions(available)))
    ordered = sorted(groups, key=lambda loc: len(groups[loc]), reverse=True)
    free = [pos for loc in ordered for pos in groups[loc]]

    assignments = [
        Assignment(bottle_id=bottle.id, position_id=pos.id)
        for bottle, pos in zip(candidates, free)
    ]
    leftover = [bottle.id for bottle in candidates[len(assignments):]]
    return PlacementResult(assignments=assignments, unplaced=leftover)


def affinity_placement(
    bottles: Sequence[Bottle],
    available: Iterable[Position],
    placed: Iterable[Bottle] = (),
    positions: Mapping[Hashable, Position] | None = None,
) -> PlacementResult:
    """Group bottles with similar wines using a greedy affinity score.

    ``placed`` are the bottles already in the grid; they seed the counters
    (``positions`` resolves their location when the position join is missing).
    Bottles are taken in input order.  Each one goes to its best scoring free
    position, ties going to the earlier position, and the counters of that
    location are updated so the next bottle sees the commitment.
    """

    candidates = unplaced_bottles(bottles)
    free = grid.sort_positions(_unique_positions(available))
    counters = build_counters(placed, positions)
    result = PlacementResult(counters=counters)

    for bottle in candidates:
        if not free:
            result.unplaced.append(bottle.id)
            continue
        location_scores: dict[Hashable, int] = {}
        best_score, best_idx = -1, 0
        for p_idx, pos in enumerate(free):
            loc = pos.storage_location_id
            if loc not in location_scores:
                location_scores[loc] = counters.score(loc, bottle)
            if location_scores[loc] > best_score:
                best_score, best_idx = location_scores[loc], p_idx

        pos = free.pop(best_idx)
        result.assignments.append(Assignment(bottle_id=bottle.id, position_id=pos.id))
        counters.add(pos.storage_location_id, bottle)

    return result


def _reorganize_key(bottle: Bottle) -> tuple[int, str, int]:
    wine = bottle.wine
    color = wine.color if wine is not None else UNKNOWN
    if color not in COLOR_ORDER:
        color = UNKNOWN
    region = (wine.region if wine is not None else None) or UNKNOWN
    vintage = wine.vintage if wine is not None and wine.vintage else MISSING_VINTAGE
    return COLOR_ORDER.index(color), region, vintage


def reorganize_location(
    location: StorageLocation,
    positions: Iterable[Position],
    bottles: Iterable[Bottle],
) -> PlacementResult:
    """Lay out the bottles of ``location`` again by colour, region and vintage.

    The in-stock bottles placed in ``location`` are sorted by
    :data:`COLOR_ORDER`, then region, then vintage, and mapped onto the
    location's positions in row/column order.  Only bottles whose position
    changes are returned.
    """

    own_positions = grid.sort_positions(
        pos for pos in _unique_positions(positions) if pos.storage_location_id == location.id
    )
    index = {pos.id: pos for pos in own_positions}
    residents = [
        bottle
        for bottle in bottles
        if bottle.in_stock and bottle.position_id in index
    ]
    ordered = sorted(residents, key=_reorganize_key)

    result = PlacementResult()
    for bottle, pos in zip(ordered, own_positions):
        if bottle.position_id != pos.id:
            result.assignments.append(Assignment(bottle_id=bottle.id, position_id=pos.id))
    for bottle in ordered[len(own_positions):]:
        logger.warning("No position left for bottle %s in %s", bottle.id, location.name)
        result.unplaced.append(bottle.id)
    return result


def apply_assignments(
    bottles: Iterable[Bottle],
    assignments: Iterable[Assignment],
    positions: Mapping[Hashable, Position] | None = None,
) -> list[Bottle]:
    """Return ``bottles`` with the given assignments reflected.

    Only the assigned bottles are replaced; the joined position is refreshed
    from ``positions`` when provided.
    """

    targets = {a.bottle_id: a.position_id for a in assignments}
    updated = []
    for bottle in bottles:
        if bottle.id not in targets:
            updated.append(bottle)
            continue
        position_id = targets[bottle.id]
        joined = positions.get(position_id) if positions is not None else None
        updated.append(replace(bottle, position_id=position_id, position=joined))
    return updated

"""Occupancy lookups over locations, positions and bottles."""

from __future__ import annotations

from typing import Hashable, Iterable, Optional

from .grid import derive_capacity
from .records import Bottle, Position, StorageLocation
from .registry import bottle_location_id


def bottle_at_position(bottles: Iterable[Bottle], position_id: Hashable) -> Optional[Bottle]:
    """Return the in-stock bottle stored at ``position_id`` or ``None``."""

    for bottle in bottles:
        if bottle.in_stock and bottle.position_id == position_id:
            return bottle
    return None


def occupied_position_ids(bottles: Iterable[Bottle]) -> set[Hashable]:
    return {
        bottle.position_id
        for bottle in bottles
        if bottle.in_stock and bottle.position_id is not None
    }


def occupancy_rate(location: StorageLocation, placed_count: int) -> float:
    """Return ``placed_count`` as a percentage of the location capacity.

    Locations without a grid or with a zero capacity report ``0.0``.
    """

    capacity = derive_capacity(location)
    if not capacity:
        return 0.0
    return placed_count / capacity * 100


def compute_location_occupancy(
    locations: Iterable[StorageLocation],
    positions: Iterable[Position],
    bottles: Iterable[Bottle],
) -> dict[Hashable, dict]:
    """Return occupancy details for every location.

    The returned mapping is keyed by location id and holds ``capacity``
    (``None`` without a grid), ``placed``, ``available`` and ``rate``.
    Retired bottles are ignored.
    """

    index = {pos.id: pos for pos in positions}
    placed: dict[Hashable, int] = {}
    for bottle in bottles:
        if not bottle.in_stock:
            continue
        loc = bottle_location_id(bottle, index)
        if loc is not None:
            placed[loc] = placed.get(loc, 0) + 1

    positions_per_location: dict[Hashable, int] = {}
    for pos in index.values():
        loc = pos.storage_location_id
        positions_per_location[loc] = positions_per_location.get(loc, 0) + 1

    occ: dict[Hashable, dict] = {}
    for location in locations:
        count = placed.get(location.id, 0)
        occ[location.id] = {
            "capacity": derive_capacity(location),
            "placed": count,
            "available": max(positions_per_location.get(location.id, 0) - count, 0),
            "rate": occupancy_rate(location, count),
        }
    return occ


def compute_row_occupancy(
    location: StorageLocation,
    positions: Iterable[Position],
    bottles: Iterable[Bottle],
) -> dict[int, int]:
    """Return count of occupied positions per row of ``location``.

    Every row of the grid is present, rows without bottles count zero.
    """

    occupied = occupied_position_ids(bottles)
    rows = {row: 0 for row in range(1, (location.row_count or 0) + 1)}
    for pos in positions:
        if pos.storage_location_id != location.id:
            continue
        rows.setdefault(pos.row, 0)
        if pos.id in occupied:
            rows[pos.row] += 1
    return rows

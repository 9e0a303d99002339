"""Addressable position space of storage locations."""

from __future__ import annotations

from typing import Callable, Hashable, Iterable, Optional

from .records import Position, StorageLocation


def derive_capacity(location: StorageLocation) -> Optional[int]:
    """Return ``row_count * column_count`` for ``location``.

    ``None`` means the location has no addressable grid: one of the
    dimensions is missing.  Such locations are left out of placement runs.
    """

    if location.row_count is None or location.column_count is None:
        return None
    return location.row_count * location.column_count


def has_grid(location: StorageLocation) -> bool:
    return derive_capacity(location) is not None


def generate_grid(
    location: StorageLocation,
    id_factory: Callable[[int, int], Hashable] | None = None,
) -> list[Position]:
    """Return every position of ``location`` in row-major order.

    ``id_factory`` receives ``(row, column)`` and returns the identifier of
    the new position.  By default ``"<location id>:<row>:<column>"`` is used.
    Locations without dimensions yield an empty grid.
    """

    if not has_grid(location):
        return []
    if id_factory is None:
        id_factory = lambda row, col: f"{location.id}:{row}:{col}"  # noqa: E731
    return [
        Position(
            id=id_factory(row, col),
            storage_location_id=location.id,
            row=row,
            column=col,
        )
        for row in range(1, location.row_count + 1)
        for col in range(1, location.column_count + 1)
    ]


def sort_positions(positions: Iterable[Position]) -> list[Position]:
    """Return ``positions`` grouped by location, then by row and column.

    Locations keep the order in which they first appear in ``positions``.
    """

    items = list(positions)
    rank: dict[Hashable, int] = {}
    for pos in items:
        rank.setdefault(pos.storage_location_id, len(rank))
    return sorted(
        items, key=lambda pos: (rank[pos.storage_location_id], pos.row, pos.column)
    )


def available_positions(
    positions: Iterable[Position], occupied_position_ids: Iterable[Hashable]
) -> list[Position]:
    """Return the positions not present in ``occupied_position_ids``."""

    occupied = set(occupied_position_ids)
    return sort_positions(pos for pos in positions if pos.id not in occupied)


def group_by_location(positions: Iterable[Position]) -> dict[Hashable, list[Position]]:
    """Return ``location id -> positions`` preserving the input order."""

    groups: dict[Hashable, list[Position]] = {}
    for pos in positions:
        groups.setdefault(pos.storage_location_id, []).append(pos)
    return groups


def position_label(location: StorageLocation | None, position: Position) -> str:
    name = location.name if location is not None else str(position.storage_location_id)
    return f"{name} | Row {position.row} | Col {position.column}"

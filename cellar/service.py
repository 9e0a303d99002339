"""Placement runs against a persistent store.

A run loads a :class:`CellarSnapshot` through the store, asks one of the
strategies from :mod:`cellar.placement` for assignments and writes them back
one by one.  Outcomes are summarised in a :class:`PlacementReport` carrying a
short status message for the user.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Hashable, Iterable, Optional, Protocol, Sequence

from . import grid, occupancy, placement, records, registry
from .records import Assignment, Bottle, Position, StorageLocation
from .storage_config import IN_STOCK

logger = logging.getLogger(__name__)

CAPACITY = "capacity"
AFFINITY = "affinity"
REORGANIZE = "reorganize"
STRATEGIES = (CAPACITY, AFFINITY)


class PersistenceError(Exception):
    """Raised by a store when a single write cannot be persisted."""


class PositionOccupiedError(Exception):
    """Raised when a position already holds an in-stock bottle."""


class PlacementAborted(Exception):
    """Raised when a run stops at its first persistence failure.

    Writes committed before the failure are kept; ``report`` lists them along
    with the failed item.
    """

    def __init__(self, report: "PlacementReport"):
        super().__init__(report.message)
        self.report = report


class CellarStore(Protocol):
    def list_locations(self) -> list[StorageLocation]: ...

    def list_positions(self, location_id: Hashable) -> list[Position]: ...

    def list_bottles(
        self, status: str = IN_STOCK, location_id: Hashable | None = None
    ) -> list[Bottle]: ...

    def assign_position(self, bottle_id: Hashable, position_id: Hashable) -> None: ...

    def clear_position(self, bottle_id: Hashable) -> None: ...


@dataclass(frozen=True)
class CellarSnapshot:
    locations: tuple[StorageLocation, ...]
    positions: tuple[Position, ...]
    bottles: tuple[Bottle, ...]

    @property
    def positions_by_id(self) -> dict[Hashable, Position]:
        return {pos.id: pos for pos in self.positions}

    def available_positions(self) -> list[Position]:
        return grid.available_positions(
            self.positions, occupancy.occupied_position_ids(self.bottles)
        )

    def apply(self, assignments: Iterable[Assignment]) -> "CellarSnapshot":
        """Return a snapshot with ``assignments`` reflected in the bottles."""

        bottles = placement.apply_assignments(
            self.bottles, assignments, self.positions_by_id
        )
        return CellarSnapshot(self.locations, self.positions, tuple(bottles))


@dataclass
class FailedAssignment:
    assignment: Assignment
    error: str


@dataclass
class PlacementReport:
    strategy: str
    severity: str
    message: str
    assignments: list[Assignment] = field(default_factory=list)
    failed: list[FailedAssignment] = field(default_factory=list)
    unplaced: list[Hashable] = field(default_factory=list)
    counters: Optional[placement.AffinityCounters] = None
    snapshot: Optional[CellarSnapshot] = None

    @property
    def placed(self) -> int:
        return len(self.assignments)

    def as_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "severity": self.severity,
            "message": self.message,
            "placed": self.placed,
            "assignments": [
                {"bottle_id": a.bottle_id, "position_id": a.position_id}
                for a in self.assignments
            ],
            "failed": [
                {
                    "bottle_id": f.assignment.bottle_id,
                    "position_id": f.assignment.position_id,
                    "error": f.error,
                }
                for f in self.failed
            ],
            "unplaced": list(self.unplaced),
        }


def load_snapshot(
    store: CellarStore, location_ids: Sequence[Hashable] | None = None
) -> CellarSnapshot:
    """Fetch locations with a grid, their positions and in-stock bottles."""

    locations = []
    positions: list[Position] = []
    for location in store.list_locations():
        if location_ids is not None and location.id not in location_ids:
            continue
        if not grid.has_grid(location):
            logger.info("Skipping %s: no grid dimensions", location.name)
            continue
        locations.append(location)
        positions.extend(store.list_positions(location.id))
    bottles = store.list_bottles(status=IN_STOCK)
    return CellarSnapshot(tuple(locations), tuple(positions), tuple(bottles))


def persist_assignments(
    store: CellarStore,
    assignments: Iterable[Assignment],
    *,
    stop_on_error: bool = False,
) -> tuple[list[Assignment], list[FailedAssignment]]:
    """Write ``assignments`` sequentially.

    Each write is independent.  With ``stop_on_error`` the loop ends at the
    first failure and the remaining assignments are not attempted.
    """

    committed: list[Assignment] = []
    failed: list[FailedAssignment] = []
    for assignment in assignments:
        try:
            store.assign_position(assignment.bottle_id, assignment.position_id)
        except PersistenceError as exc:
            logger.error(
                "Unable to place bottle %s at %s: %s",
                assignment.bottle_id,
                assignment.position_id,
                exc,
            )
            failed.append(FailedAssignment(assignment, str(exc)))
            if stop_on_error:
                break
            continue
        committed.append(assignment)
    return committed, failed


def _summarise(
    strategy: str,
    committed: list[Assignment],
    failed: list[FailedAssignment],
    unplaced: list[Hashable],
) -> tuple[str, str]:
    if failed and not committed:
        return "error", f"Placement failed for {len(failed)} bottles"
    message = f"{len(committed)} bottles placed"
    if strategy == REORGANIZE:
        message = f"{len(committed)} bottles moved"
    if failed:
        return "warning", f"{message}, {len(failed)} failed"
    if unplaced:
        return "success", f"{message}, {len(unplaced)} left without a position"
    return "success", message


def _finish(
    strategy: str,
    snapshot: CellarSnapshot,
    result: placement.PlacementResult,
    store: CellarStore,
    stop_on_error: bool,
) -> PlacementReport:
    committed, failed = persist_assignments(
        store, result.assignments, stop_on_error=stop_on_error
    )
    # assignments after an abort were never attempted
    skipped = result.assignments[len(committed) + len(failed):]
    not_written = [item.assignment for item in failed] + skipped
    counters = result.counters
    if counters is not None and not_written:
        bottles = {b.id: b for b in snapshot.bottles}
        positions = snapshot.positions_by_id
        for assignment in not_written:
            bottle = bottles.get(assignment.bottle_id)
            pos = positions.get(assignment.position_id)
            if bottle is not None and pos is not None:
                counters.remove(pos.storage_location_id, bottle)

    unplaced = list(result.unplaced)
    unplaced.extend(a.bottle_id for a in not_written)
    return _report(
        strategy, snapshot.apply(committed), result, committed, failed, unplaced, stop_on_error
    )


def _report(
    strategy: str,
    snapshot: CellarSnapshot,
    result: placement.PlacementResult,
    committed: list[Assignment],
    failed: list[FailedAssignment],
    unplaced: list[Hashable],
    stop_on_error: bool,
) -> PlacementReport:
    severity, message = _summarise(strategy, committed, failed, result.unplaced)
    report = PlacementReport(
        strategy=strategy,
        severity=severity,
        message=message,
        assignments=committed,
        failed=failed,
        unplaced=unplaced,
        counters=result.counters,
        snapshot=snapshot,
    )
    log = logger.warning if failed or result.unplaced else logger.info
    log("%s run: %s", strategy, message)
    if failed and stop_on_error:
        raise PlacementAborted(report)
    return report


def optimize_placement(
    store: CellarStore,
    strategy: str = CAPACITY,
    *,
    location_ids: Sequence[Hashable] | None = None,
    stop_on_error: bool = False,
) -> PlacementReport:
    """Place every unplaced in-stock bottle using ``strategy``.

    ``strategy`` is :data:`CAPACITY` (largest free capacity first) or
    :data:`AFFINITY` (group similar wines).  By default failed writes are
    reported and the run carries on; ``stop_on_error`` raises
    :class:`PlacementAborted` at the first failure instead.
    """

    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown placement strategy: {strategy!r}")

    snapshot = load_snapshot(store, location_ids)
    candidates = registry.unplaced_bottles(snapshot.bottles)
    if not candidates:
        return PlacementReport(strategy, "info", "No bottles to place", snapshot=snapshot)
    available = snapshot.available_positions()
    if not available:
        return PlacementReport(
            strategy,
            "info",
            "No free positions available",
            unplaced=[b.id for b in candidates],
            snapshot=snapshot,
        )

    if strategy == AFFINITY:
        placed = [b for b in snapshot.bottles if b.position_id is not None]
        result = placement.affinity_placement(
            candidates, available, placed, snapshot.positions_by_id
        )
    else:
        result = placement.capacity_balancing_placement(candidates, available)
    return _finish(strategy, snapshot, result, store, stop_on_error)


def _find_location(store: CellarStore, location_id: Hashable) -> StorageLocation:
    for location in store.list_locations():
        if location.id == location_id:
            return location
    raise LookupError(f"Unknown storage location: {location_id!r}")


def reorganize(
    store: CellarStore, location_id: Hashable, *, stop_on_error: bool = False
) -> PlacementReport:
    """Sort the bottles of one location by colour, region and vintage."""

    location = _find_location(store, location_id)
    if not grid.has_grid(location):
        return PlacementReport(
            REORGANIZE, "info", f"{location.name} has no grid dimensions"
        )
    positions = store.list_positions(location.id)
    bottles = store.list_bottles(status=IN_STOCK, location_id=location.id)
    snapshot = CellarSnapshot((location,), tuple(positions), tuple(bottles))
    if not bottles:
        return PlacementReport(REORGANIZE, "info", "No bottles to reorganize", snapshot=snapshot)

    result = placement.reorganize_location(location, positions, bottles)
    if not result.assignments:
        return PlacementReport(
            REORGANIZE, "info", "Placement already optimal", snapshot=snapshot
        )

    committed, failed, released = _write_moves(
        store, snapshot, result.assignments, stop_on_error=stop_on_error
    )
    moved = committed + [Assignment(bottle_id, None) for bottle_id in released]
    return _report(
        REORGANIZE,
        snapshot.apply(moved),
        result,
        committed,
        failed,
        list(result.unplaced) + released,
        stop_on_error,
    )


def _write_moves(
    store: CellarStore,
    snapshot: CellarSnapshot,
    assignments: Sequence[Assignment],
    *,
    stop_on_error: bool = False,
) -> tuple[list[Assignment], list[FailedAssignment], list[Hashable]]:
    """Move placed bottles in two phases so no position is ever shared.

    Every mover is released first, then assigned its new position.  A bottle
    that cannot be released keeps its position and the mover heading there is
    not written.  Movers left without a position are returned last.  With
    ``stop_on_error`` a release failure puts the released bottles back and
    nothing is moved.
    """

    origins = {bottle.id: bottle.position_id for bottle in snapshot.bottles}
    failed: list[FailedAssignment] = []
    cleared: list[Assignment] = []
    for assignment in assignments:
        try:
            store.clear_position(assignment.bottle_id)
        except PersistenceError as exc:
            logger.error("Unable to release bottle %s: %s", assignment.bottle_id, exc)
            failed.append(FailedAssignment(assignment, str(exc)))
            if stop_on_error:
                break
            continue
        cleared.append(assignment)

    if failed and stop_on_error:
        restore = [Assignment(a.bottle_id, origins[a.bottle_id]) for a in cleared]
        _, lost = persist_assignments(store, restore)
        return [], failed, [item.assignment.bottle_id for item in lost]

    held = {origins[item.assignment.bottle_id] for item in failed}
    committed: list[Assignment] = []
    released: list[Hashable] = []
    for idx, assignment in enumerate(cleared):
        if assignment.position_id in held:
            failed.append(
                FailedAssignment(assignment, f"Position {assignment.position_id!r} is still held")
            )
            released.append(assignment.bottle_id)
            continue
        try:
            store.assign_position(assignment.bottle_id, assignment.position_id)
        except PersistenceError as exc:
            logger.error(
                "Unable to move bottle %s to %s: %s",
                assignment.bottle_id,
                assignment.position_id,
                exc,
            )
            failed.append(FailedAssignment(assignment, str(exc)))
            released.append(assignment.bottle_id)
            if stop_on_error:
                released.extend(a.bottle_id for a in cleared[idx + 1:])
                break
            continue
        committed.append(assignment)
    return committed, failed, released


def move_bottle(store: CellarStore, bottle_id: Hashable, position_id: Hashable) -> None:
    """Place one bottle at ``position_id`` if the position is free."""

    holder = occupancy.bottle_at_position(store.list_bottles(status=IN_STOCK), position_id)
    if holder is not None and holder.id != bottle_id:
        raise PositionOccupiedError(
            f"Position {position_id!r} already holds bottle {holder.id!r}"
        )
    store.assign_position(bottle_id, position_id)
    logger.info("Bottle %s moved to %s", bottle_id, position_id)


def release_bottle(store: CellarStore, bottle_id: Hashable) -> None:
    """Free the position held by ``bottle_id``."""

    store.clear_position(bottle_id)
    logger.info("Bottle %s removed from its position", bottle_id)


def retire(
    store: CellarStore,
    bottle: Bottle,
    status: str,
    *,
    consumption_date: Optional[dt.date] = None,
    tasting_note: Optional[str] = None,
) -> Bottle:
    """Move ``bottle`` out of stock and free its position through ``store``.

    The transition is validated before anything is written; ``ValueError`` is
    raised for an unsupported status or a bottle already out of stock.
    """

    retired = records.retire_bottle(
        bottle, status, consumption_date=consumption_date, tasting_note=tasting_note
    )
    if bottle.position_id is not None:
        store.clear_position(bottle.id)
    logger.info("Bottle %s marked as %s", bottle.id, status)
    return retired

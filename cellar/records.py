"""Plain records shared by the placement core.

The records mirror the rows returned by the data store.  They are frozen so a
placement run can never change its inputs; updated copies are produced with
:func:`dataclasses.replace`.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, replace
from typing import Hashable, Optional

from .storage_config import IN_STOCK, RETIRED_STATUSES

Id = Hashable


@dataclass(frozen=True)
class StorageLocation:
    id: Id
    name: str
    type: str = "other"
    row_count: Optional[int] = None
    column_count: Optional[int] = None


@dataclass(frozen=True)
class Position:
    """One ``(row, column)`` coordinate of a storage location, 1-based."""

    id: Id
    storage_location_id: Id
    row: int
    column: int


@dataclass(frozen=True)
class Wine:
    id: Id
    name: str
    color: str
    vintage: Optional[int] = None
    domain: Optional[str] = None
    region: Optional[str] = None
    appellation: Optional[str] = None
    alcohol_percentage: Optional[float] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class Bottle:
    """Single bottle of a wine.

    ``wine`` and ``position`` are optional joins.  ``wine_id`` is always
    known, the joined :class:`Wine` may be missing when the store could not
    resolve it.
    """

    id: Id
    wine_id: Id
    position_id: Optional[Id] = None
    status: str = IN_STOCK
    acquisition_date: Optional[dt.date] = None
    consumption_date: Optional[dt.date] = None
    tasting_note: Optional[str] = None
    label: Optional[str] = None
    wine: Optional[Wine] = None
    position: Optional[Position] = None

    @property
    def in_stock(self) -> bool:
        return self.status == IN_STOCK


@dataclass(frozen=True)
class Assignment:
    bottle_id: Id
    position_id: Id


def retire_bottle(
    bottle: Bottle,
    status: str,
    *,
    consumption_date: Optional[dt.date] = None,
    tasting_note: Optional[str] = None,
) -> Bottle:
    """Return ``bottle`` moved out of stock with its position cleared.

    Only in-stock bottles can be retired and ``status`` must be one of
    :data:`RETIRED_STATUSES`.  ``ValueError`` is raised otherwise.
    """

    if status not in RETIRED_STATUSES:
        raise ValueError(f"Unsupported bottle status: {status!r}")
    if not bottle.in_stock:
        raise ValueError(f"Bottle {bottle.id!r} is already {bottle.status}")
    return replace(
        bottle,
        status=status,
        position_id=None,
        position=None,
        consumption_date=consumption_date if consumption_date is not None else bottle.consumption_date,
        tasting_note=tasting_note if tasting_note is not None else bottle.tasting_note,
    )

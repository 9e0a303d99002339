"""Pydantic/SQLModel schemas for the web API."""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from sqlmodel import Field, SQLModel


class LocationBase(SQLModel):
    name: str
    type: str = "other"
    row_count: Optional[int] = Field(default=None, ge=1)
    column_count: Optional[int] = Field(default=None, ge=1)


class LocationCreate(LocationBase):
    pass


class LocationUpdate(SQLModel):
    name: Optional[str] = None
    type: Optional[str] = None
    row_count: Optional[int] = Field(default=None, ge=1)
    column_count: Optional[int] = Field(default=None, ge=1)


class LocationRead(LocationBase):
    id: int
    capacity: Optional[int] = None
    placed: int = 0
    available: int = 0
    occupancy_rate: float = 0.0


class WineBase(SQLModel):
    name: str
    color: str
    vintage: Optional[int] = None
    domain: Optional[str] = None
    region: Optional[str] = None
    appellation: Optional[str] = None
    alcohol_percentage: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class WineCreate(WineBase):
    pass


class WineRead(WineBase):
    id: int


class BottleCreate(SQLModel):
    wine_id: int
    position_id: Optional[int] = None
    acquisition_date: Optional[dt.date] = None
    label: Optional[str] = None


class BottleRead(SQLModel):
    id: int
    wine_id: int
    position_id: Optional[int] = None
    status: str
    acquisition_date: Optional[dt.date] = None
    consumption_date: Optional[dt.date] = None
    tasting_note: Optional[str] = None
    label: Optional[str] = None
    wine: Optional[WineRead] = None
    position_label: Optional[str] = None


class BottleMove(SQLModel):
    position_id: int


class BottleConsume(SQLModel):
    consumption_date: Optional[dt.date] = None
    tasting_note: Optional[str] = None


class BottleLabel(SQLModel):
    label: str


class PositionRead(SQLModel):
    id: int
    storage_location_id: int
    row: int
    column: int
    label: str
    bottle: Optional[BottleRead] = None


class GridRead(SQLModel):
    location: LocationRead
    positions: List[PositionRead] = Field(default_factory=list)
    row_occupancy: Dict[int, int] = Field(default_factory=dict)


class PlacementRequest(SQLModel):
    strategy: str = "capacity"
    location_ids: Optional[List[int]] = None
    stop_on_error: Optional[bool] = None


class PlacementFailure(SQLModel):
    bottle_id: int
    position_id: int
    error: str


class PlacementAssignment(SQLModel):
    bottle_id: int
    position_id: int


class PlacementReportRead(SQLModel):
    strategy: str
    severity: str
    message: str
    placed: int = 0
    assignments: List[PlacementAssignment] = Field(default_factory=list)
    failed: List[PlacementFailure] = Field(default_factory=list)
    unplaced: List[int] = Field(default_factory=list)


class StatisticsRead(SQLModel):
    in_stock: int
    consumed: int
    gifted: int
    daily_consumption: Dict[str, int] = Field(default_factory=dict)
    colors: Dict[str, int] = Field(default_factory=dict)
    top_regions: List[Any] = Field(default_factory=list)
    vintages: List[Any] = Field(default_factory=list)

"""Database models for the web API."""

import datetime as dt
from typing import List, Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel


class StorageLocation(SQLModel, table=True):
    """Shelf, rack, fridge... holding bottles on a row x column grid."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    type: str = Field(default="other")
    row_count: Optional[int] = Field(default=None, ge=1)
    column_count: Optional[int] = Field(default=None, ge=1)
    created_at: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc)
    )

    positions: List["Position"] = Relationship(
        back_populates="storage_location",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class Position(SQLModel, table=True):
    """Single addressable slot of a storage location."""

    __table_args__ = (
        UniqueConstraint(
            "storage_location_id",
            "row_position",
            "column_position",
            name="uq_position_coordinates",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    storage_location_id: int = Field(foreign_key="storagelocation.id", index=True)
    row_position: int = Field(ge=1)
    column_position: int = Field(ge=1)

    storage_location: Optional["StorageLocation"] = Relationship(back_populates="positions")
    bottles: List["Bottle"] = Relationship(back_populates="position")


class Wine(SQLModel, table=True):
    """Wine reference shared by its bottles."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    color: str = Field(index=True)
    vintage: Optional[int] = Field(default=None, index=True)
    domain: Optional[str] = Field(default=None)
    region: Optional[str] = Field(default=None, index=True)
    appellation: Optional[str] = Field(default=None)
    alcohol_percentage: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None)

    bottles: List["Bottle"] = Relationship(back_populates="wine")


class Bottle(SQLModel, table=True):
    """Physical bottle of a wine, optionally stored at a position."""

    id: Optional[int] = Field(default=None, primary_key=True)
    wine_id: int = Field(foreign_key="wine.id", index=True)
    position_id: Optional[int] = Field(default=None, foreign_key="position.id", index=True)
    status: str = Field(default="in_stock", index=True)
    acquisition_date: Optional[dt.date] = Field(default=None)
    consumption_date: Optional[dt.date] = Field(default=None)
    tasting_note: Optional[str] = Field(default=None)
    label: Optional[str] = Field(default=None)
    created_at: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc)
    )

    wine: Optional["Wine"] = Relationship(back_populates="bottles")
    position: Optional["Position"] = Relationship(back_populates="bottles")

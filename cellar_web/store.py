"""SQLModel implementation of the placement data store."""

from __future__ import annotations

import logging
from typing import Callable, ContextManager, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload
from sqlmodel import Session, select

from cellar import records
from cellar.service import PersistenceError
from cellar.storage_config import IN_STOCK

from . import database, models

logger = logging.getLogger(__name__)


def to_location(row: models.StorageLocation) -> records.StorageLocation:
    return records.StorageLocation(
        id=row.id,
        name=row.name,
        type=row.type,
        row_count=row.row_count,
        column_count=row.column_count,
    )


def to_position(row: models.Position) -> records.Position:
    return records.Position(
        id=row.id,
        storage_location_id=row.storage_location_id,
        row=row.row_position,
        column=row.column_position,
    )


def to_wine(row: models.Wine) -> records.Wine:
    return records.Wine(
        id=row.id,
        name=row.name,
        color=row.color,
        vintage=row.vintage,
        domain=row.domain,
        region=row.region,
        appellation=row.appellation,
        alcohol_percentage=row.alcohol_percentage,
        notes=row.notes,
    )


def to_bottle(row: models.Bottle) -> records.Bottle:
    return records.Bottle(
        id=row.id,
        wine_id=row.wine_id,
        position_id=row.position_id,
        status=row.status,
        acquisition_date=row.acquisition_date,
        consumption_date=row.consumption_date,
        tasting_note=row.tasting_note,
        label=row.label,
        wine=to_wine(row.wine) if row.wine is not None else None,
        position=to_position(row.position) if row.position is not None else None,
    )


class SqlCellarStore:
    """Store reading and writing through SQLModel sessions.

    Every write runs in its own transaction so a failure only affects that
    one bottle.
    """

    def __init__(self, session_factory: Optional[Callable[[], ContextManager[Session]]] = None):
        self._session_factory = session_factory or database.session_scope

    def list_locations(self) -> list[records.StorageLocation]:
        with self._session_factory() as session:
            rows = session.exec(
                select(models.StorageLocation).order_by(models.StorageLocation.name)
            ).all()
            return [to_location(row) for row in rows]

    def list_positions(self, location_id: int) -> list[records.Position]:
        with self._session_factory() as session:
            rows = session.exec(
                select(models.Position)
                .where(models.Position.storage_location_id == location_id)
                .order_by(models.Position.row_position, models.Position.column_position)
            ).all()
            return [to_position(row) for row in rows]

    def list_bottles(
        self, status: str = IN_STOCK, location_id: int | None = None
    ) -> list[records.Bottle]:
        with self._session_factory() as session:
            stmt = (
                select(models.Bottle)
                .options(
                    selectinload(models.Bottle.wine),
                    selectinload(models.Bottle.position),
                )
                .where(models.Bottle.status == status)
                .order_by(models.Bottle.id)
            )
            if location_id is not None:
                stmt = stmt.join(
                    models.Position, models.Bottle.position_id == models.Position.id
                ).where(models.Position.storage_location_id == location_id)
            return [to_bottle(row) for row in session.exec(stmt).all()]

    def _write(self, bottle_id: int, position_id: int | None) -> None:
        try:
            with self._session_factory() as session:
                bottle = session.get(models.Bottle, bottle_id)
                if bottle is None:
                    raise PersistenceError(f"Bottle {bottle_id} does not exist")
                if position_id is not None:
                    if bottle.status != IN_STOCK:
                        raise PersistenceError(
                            f"Bottle {bottle_id} is {bottle.status} and cannot be placed"
                        )
                    if session.get(models.Position, position_id) is None:
                        raise PersistenceError(f"Position {position_id} does not exist")
                bottle.position_id = position_id
                session.add(bottle)
        except SQLAlchemyError as exc:
            logger.exception("Database error while updating bottle %s", bottle_id)
            raise PersistenceError(str(exc)) from exc

    def assign_position(self, bottle_id: int, position_id: int) -> None:
        self._write(bottle_id, position_id)

    def clear_position(self, bottle_id: int) -> None:
        self._write(bottle_id, None)


def get_store() -> SqlCellarStore:
    """FastAPI dependency returning the store bound to the default engine."""

    return SqlCellarStore()

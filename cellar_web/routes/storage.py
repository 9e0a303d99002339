"""Storage location, grid and placement API routes."""

from __future__ import annotations

import logging
import os
from typing import Iterable

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import selectinload
from sqlmodel import Session, select

from cellar import grid, occupancy, service
from cellar.storage_config import IN_STOCK, LOCATION_TYPES

from .. import models, schemas
from ..database import get_session
from ..store import SqlCellarStore, get_store, to_bottle, to_location, to_position
from .bottles import bottle_to_schema

router = APIRouter(prefix="/storage", tags=["storage"])

logger = logging.getLogger(__name__)

STOP_ON_ERROR = os.getenv("CELLAR_STOP_ON_ERROR", "false").lower() in {"1", "true", "yes"}


def _get_location(session: Session, location_id: int) -> models.StorageLocation:
    location = session.get(models.StorageLocation, location_id)
    if location is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Storage location not found")
    return location


def _validate_type(value: str | None) -> None:
    if value is not None and value not in LOCATION_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown location type: {value}",
        )


def _in_stock_rows(session: Session) -> list[models.Bottle]:
    return session.exec(
        select(models.Bottle)
        .options(selectinload(models.Bottle.wine), selectinload(models.Bottle.position))
        .where(models.Bottle.status == IN_STOCK)
    ).all()


def _location_reads(
    session: Session, locations: Iterable[models.StorageLocation]
) -> list[schemas.LocationRead]:
    rows = list(locations)
    ids = [row.id for row in rows]
    positions: list[models.Position] = []
    if ids:
        positions = session.exec(
            select(models.Position).where(models.Position.storage_location_id.in_(ids))
        ).all()
    bottles = [to_bottle(row) for row in _in_stock_rows(session)]
    occ = occupancy.compute_location_occupancy(
        [to_location(row) for row in rows],
        [to_position(pos) for pos in positions],
        bottles,
    )
    result = []
    for row in rows:
        info = occ[row.id]
        result.append(
            schemas.LocationRead(
                id=row.id,
                name=row.name,
                type=row.type,
                row_count=row.row_count,
                column_count=row.column_count,
                capacity=info["capacity"],
                placed=info["placed"],
                available=info["available"],
                occupancy_rate=info["rate"],
            )
        )
    return result


def _sync_positions(session: Session, location: models.StorageLocation) -> None:
    """Create missing grid positions and drop the ones outside the grid.

    Dropping a position still holding an in-stock bottle is refused.
    """

    existing = {
        (pos.row_position, pos.column_position): pos
        for pos in session.exec(
            select(models.Position).where(models.Position.storage_location_id == location.id)
        ).all()
    }
    wanted = {
        (pos.row, pos.column)
        for pos in grid.generate_grid(to_location(location), id_factory=lambda r, c: None)
    }

    stale = [pos for coords, pos in existing.items() if coords not in wanted]
    if stale:
        stale_ids = [pos.id for pos in stale]
        held = session.exec(
            select(models.Bottle).where(
                (models.Bottle.position_id.in_(stale_ids)) & (models.Bottle.status == IN_STOCK)
            )
        ).first()
        if held is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Positions outside the new grid still hold bottles",
            )
        for pos in stale:
            session.delete(pos)

    for row, column in sorted(wanted - set(existing)):
        session.add(
            models.Position(
                storage_location_id=location.id, row_position=row, column_position=column
            )
        )


@router.get("/", response_model=list[schemas.LocationRead])
def list_locations(session: Session = Depends(get_session)):
    rows = session.exec(select(models.StorageLocation).order_by(models.StorageLocation.name)).all()
    return _location_reads(session, rows)


@router.post("/", response_model=schemas.LocationRead, status_code=status.HTTP_201_CREATED)
def create_location(payload: schemas.LocationCreate, session: Session = Depends(get_session)):
    _validate_type(payload.type)
    location = models.StorageLocation(**payload.model_dump())
    session.add(location)
    session.flush()
    _sync_positions(session, location)
    session.commit()
    session.refresh(location)
    logger.info("Storage location %s created", location.name)
    return _location_reads(session, [location])[0]


@router.get("/{location_id}", response_model=schemas.LocationRead)
def read_location(location_id: int, session: Session = Depends(get_session)):
    return _location_reads(session, [_get_location(session, location_id)])[0]


@router.patch("/{location_id}", response_model=schemas.LocationRead)
def update_location(
    location_id: int,
    payload: schemas.LocationUpdate,
    session: Session = Depends(get_session),
):
    location = _get_location(session, location_id)
    data = payload.model_dump(exclude_unset=True)
    _validate_type(data.get("type"))
    for key, value in data.items():
        setattr(location, key, value)
    session.add(location)
    if {"row_count", "column_count"} & set(data):
        _sync_positions(session, location)
    session.commit()
    session.refresh(location)
    return _location_reads(session, [location])[0]


@router.delete("/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_location(location_id: int, session: Session = Depends(get_session)):
    location = _get_location(session, location_id)
    position_ids = [
        pos.id
        for pos in session.exec(
            select(models.Position).where(models.Position.storage_location_id == location.id)
        ).all()
    ]
    if position_ids:
        bottles = session.exec(
            select(models.Bottle).where(models.Bottle.position_id.in_(position_ids))
        ).all()
        for bottle in bottles:
            bottle.position_id = None
            session.add(bottle)
        if bottles:
            logger.info("Moved %s bottles from %s to general stock", len(bottles), location.name)
        session.flush()
    session.delete(location)
    session.commit()


@router.get("/{location_id}/grid", response_model=schemas.GridRead)
def read_grid(location_id: int, session: Session = Depends(get_session)):
    location = _get_location(session, location_id)
    positions = session.exec(
        select(models.Position)
        .where(models.Position.storage_location_id == location.id)
        .order_by(models.Position.row_position, models.Position.column_position)
    ).all()
    record = to_location(location)
    bottle_rows = _in_stock_rows(session)
    bottles = [to_bottle(row) for row in bottle_rows]
    by_id = {row.id: row for row in bottle_rows}
    items = []
    for pos in positions:
        core_pos = to_position(pos)
        holder = occupancy.bottle_at_position(bottles, pos.id)
        items.append(
            schemas.PositionRead(
                id=pos.id,
                storage_location_id=location.id,
                row=pos.row_position,
                column=pos.column_position,
                label=grid.position_label(record, core_pos),
                bottle=bottle_to_schema(by_id[holder.id]) if holder is not None else None,
            )
        )
    return schemas.GridRead(
        location=_location_reads(session, [location])[0],
        positions=items,
        row_occupancy=occupancy.compute_row_occupancy(
            record, [to_position(pos) for pos in positions], bottles
        ),
    )


@router.get("/{location_id}/available", response_model=list[schemas.PositionRead])
def read_available_positions(location_id: int, session: Session = Depends(get_session)):
    location = _get_location(session, location_id)
    positions = session.exec(
        select(models.Position).where(models.Position.storage_location_id == location.id)
    ).all()
    bottles = [to_bottle(row) for row in _in_stock_rows(session)]
    record = to_location(location)
    free = grid.available_positions(
        [to_position(pos) for pos in positions], occupancy.occupied_position_ids(bottles)
    )
    return [
        schemas.PositionRead(
            id=pos.id,
            storage_location_id=location.id,
            row=pos.row,
            column=pos.column,
            label=grid.position_label(record, pos),
        )
        for pos in free
    ]


def _run(callable_, *args, **kwargs) -> schemas.PlacementReportRead:
    try:
        report = callable_(*args, **kwargs)
    except service.PlacementAborted as exc:
        report = exc.report
    return schemas.PlacementReportRead.model_validate(report.as_dict())


@router.post("/optimize", response_model=schemas.PlacementReportRead)
def optimize_placement(
    payload: schemas.PlacementRequest,
    store: SqlCellarStore = Depends(get_store),
):
    if payload.strategy not in service.STRATEGIES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown placement strategy: {payload.strategy}",
        )
    stop_on_error = STOP_ON_ERROR if payload.stop_on_error is None else payload.stop_on_error
    return _run(
        service.optimize_placement,
        store,
        payload.strategy,
        location_ids=payload.location_ids,
        stop_on_error=stop_on_error,
    )


@router.post("/{location_id}/reorganize", response_model=schemas.PlacementReportRead)
def reorganize_location(
    location_id: int,
    store: SqlCellarStore = Depends(get_store),
):
    try:
        return _run(service.reorganize, store, location_id, stop_on_error=STOP_ON_ERROR)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

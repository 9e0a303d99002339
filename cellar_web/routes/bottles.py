"""Bottle management API routes."""

from __future__ import annotations

import datetime as dt
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import selectinload
from sqlmodel import Session, select

from cellar import grid, occupancy, registry, service, stats_utils
from cellar.storage_config import BOTTLE_STATUSES, CONSUMED, GIFTED, IN_STOCK

from .. import models, schemas
from ..database import get_session
from ..store import SqlCellarStore, get_store, to_bottle, to_location, to_position

router = APIRouter(prefix="/bottles", tags=["bottles"])


def bottle_to_schema(row: models.Bottle) -> schemas.BottleRead:
    label = None
    if row.position is not None and row.position.storage_location is not None:
        label = grid.position_label(
            to_location(row.position.storage_location), to_position(row.position)
        )
    return schemas.BottleRead(
        id=row.id,
        wine_id=row.wine_id,
        position_id=row.position_id,
        status=row.status,
        acquisition_date=row.acquisition_date,
        consumption_date=row.consumption_date,
        tasting_note=row.tasting_note,
        label=row.label,
        wine=schemas.WineRead.model_validate(row.wine) if row.wine is not None else None,
        position_label=label,
    )


def _load_options():
    return (
        selectinload(models.Bottle.wine),
        selectinload(models.Bottle.position).selectinload(models.Position.storage_location),
    )


def _get_bottle(session: Session, bottle_id: int) -> models.Bottle:
    bottle = session.exec(
        select(models.Bottle).options(*_load_options()).where(models.Bottle.id == bottle_id)
    ).first()
    if bottle is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bottle not found")
    return bottle


def _ensure_position_free(session: Session, position_id: int, bottle_id: int | None = None) -> None:
    if session.get(models.Position, position_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Position not found")
    holders = session.exec(
        select(models.Bottle).where(
            (models.Bottle.position_id == position_id) & (models.Bottle.status == IN_STOCK)
        )
    ).all()
    holder = occupancy.bottle_at_position([to_bottle(row) for row in holders], position_id)
    if holder is not None and holder.id != bottle_id:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Position already occupied")


@router.get("/", response_model=List[schemas.BottleRead])
def list_bottles(
    status_filter: str = Query(IN_STOCK, alias="status"),
    location_id: Optional[int] = None,
    colors: Optional[List[str]] = Query(None),
    labels: Optional[List[str]] = Query(None),
    vintage_min: Optional[int] = None,
    vintage_max: Optional[int] = None,
    search: Optional[str] = None,
    session: Session = Depends(get_session),
):
    if status_filter not in BOTTLE_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown bottle status")
    stmt = (
        select(models.Bottle)
        .options(*_load_options())
        .where(models.Bottle.status == status_filter)
        .order_by(models.Bottle.id)
    )
    if location_id is not None:
        stmt = stmt.join(
            models.Position, models.Bottle.position_id == models.Position.id
        ).where(models.Position.storage_location_id == location_id)
    rows = session.exec(stmt).all()
    kept = registry.filter_bottles(
        [to_bottle(row) for row in rows],
        colors=colors,
        labels=labels,
        vintage_min=vintage_min,
        vintage_max=vintage_max,
        search=search,
    )
    by_id = {row.id: row for row in rows}
    return [bottle_to_schema(by_id[bottle.id]) for bottle in kept]


@router.post("/", response_model=schemas.BottleRead, status_code=status.HTTP_201_CREATED)
def create_bottle(payload: schemas.BottleCreate, session: Session = Depends(get_session)):
    if session.get(models.Wine, payload.wine_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wine not found")
    if payload.position_id is not None:
        _ensure_position_free(session, payload.position_id)
    bottle = models.Bottle(**payload.model_dump())
    session.add(bottle)
    session.commit()
    return bottle_to_schema(_get_bottle(session, bottle.id))


@router.get("/statistics", response_model=schemas.StatisticsRead)
def read_statistics(
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
    session: Session = Depends(get_session),
):
    end = end or dt.date.today()
    start = start or end - dt.timedelta(days=30)
    if start > end:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start must not be after end")
    rows = session.exec(select(models.Bottle).options(*_load_options())).all()
    return stats_utils.get_statistics([to_bottle(row) for row in rows], start, end)


@router.get("/{bottle_id}", response_model=schemas.BottleRead)
def read_bottle(bottle_id: int, session: Session = Depends(get_session)):
    return bottle_to_schema(_get_bottle(session, bottle_id))


@router.post("/{bottle_id}/move", response_model=schemas.BottleRead)
def move_bottle(
    bottle_id: int,
    payload: schemas.BottleMove,
    session: Session = Depends(get_session),
    store: SqlCellarStore = Depends(get_store),
):
    _get_bottle(session, bottle_id)
    _ensure_position_free(session, payload.position_id, bottle_id)
    try:
        service.move_bottle(store, bottle_id, payload.position_id)
    except service.PositionOccupiedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except service.PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    session.expire_all()
    return bottle_to_schema(_get_bottle(session, bottle_id))


@router.delete("/{bottle_id}/position", response_model=schemas.BottleRead)
def unplace_bottle(
    bottle_id: int,
    session: Session = Depends(get_session),
    store: SqlCellarStore = Depends(get_store),
):
    _get_bottle(session, bottle_id)
    try:
        service.release_bottle(store, bottle_id)
    except service.PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    session.expire_all()
    return bottle_to_schema(_get_bottle(session, bottle_id))


def _retire(
    session: Session,
    store: SqlCellarStore,
    bottle_id: int,
    new_status: str,
    **changes,
) -> schemas.BottleRead:
    row = _get_bottle(session, bottle_id)
    try:
        retired = service.retire(store, to_bottle(row), new_status, **changes)
    except (ValueError, service.PersistenceError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    row.status = retired.status
    row.position_id = retired.position_id
    row.consumption_date = retired.consumption_date
    row.tasting_note = retired.tasting_note
    session.add(row)
    session.commit()
    session.expire_all()
    return bottle_to_schema(_get_bottle(session, bottle_id))


@router.post("/{bottle_id}/consume", response_model=schemas.BottleRead)
def consume_bottle(
    bottle_id: int,
    payload: schemas.BottleConsume,
    session: Session = Depends(get_session),
    store: SqlCellarStore = Depends(get_store),
):
    return _retire(
        session,
        store,
        bottle_id,
        CONSUMED,
        consumption_date=payload.consumption_date or dt.date.today(),
        tasting_note=payload.tasting_note or None,
    )


@router.post("/{bottle_id}/gift", response_model=schemas.BottleRead)
def gift_bottle(
    bottle_id: int,
    session: Session = Depends(get_session),
    store: SqlCellarStore = Depends(get_store),
):
    return _retire(session, store, bottle_id, GIFTED)


@router.post("/{bottle_id}/label", response_model=schemas.BottleRead)
def toggle_label(
    bottle_id: int,
    payload: schemas.BottleLabel,
    session: Session = Depends(get_session),
):
    row = _get_bottle(session, bottle_id)
    row.label = None if row.label == payload.label else payload.label
    session.add(row)
    session.commit()
    session.expire_all()
    return bottle_to_schema(_get_bottle(session, bottle_id))


@router.delete("/{bottle_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_bottle(bottle_id: int, session: Session = Depends(get_session)):
    row = _get_bottle(session, bottle_id)
    session.delete(row)
    session.commit()

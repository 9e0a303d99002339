"""Wine reference API routes."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, select

from cellar.storage_config import WINE_COLORS

from .. import models, schemas
from ..database import get_session

router = APIRouter(prefix="/wines", tags=["wines"])


@router.get("/", response_model=List[schemas.WineRead])
def list_wines(session: Session = Depends(get_session)):
    return session.exec(select(models.Wine).order_by(models.Wine.name)).all()


@router.post("/", response_model=schemas.WineRead, status_code=status.HTTP_201_CREATED)
def create_wine(payload: schemas.WineCreate, session: Session = Depends(get_session)):
    if payload.color not in WINE_COLORS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown wine color: {payload.color}")
    wine = models.Wine(**payload.model_dump())
    session.add(wine)
    session.commit()
    session.refresh(wine)
    return wine


@router.get("/{wine_id}", response_model=schemas.WineRead)
def read_wine(wine_id: int, session: Session = Depends(get_session)):
    wine = session.get(models.Wine, wine_id)
    if wine is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wine not found")
    return wine

"""Outturn API endpoints"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import Optional

from millstock.api import deps
from millstock.schemas.ledger import (
    BalanceLine, ClearOutturnRequest, Outturn, Production, ProductionCreate
)
from millstock.services.ledger.admission import Actor
from millstock.services.ledger.outturn_service import OutturnService
from millstock.services.ledger.projection_cache import ProjectionCache

router = APIRouter()


def get_service(
    db: Session = Depends(deps.get_db),
    cache: ProjectionCache = Depends(deps.get_cache),
) -> OutturnService:
    return OutturnService(db, cache=cache)


@router.get("/{outturn_id}/balance", response_model=BalanceLine)
async def outturn_balance(outturn_id: int, service: OutturnService = Depends(get_service)):
    return BalanceLine.from_entry(service.outturn_balance(outturn_id))


@router.get("/{outturn_id}/available-paddy-bags")
async def available_paddy_bags(outturn_id: int, service: OutturnService = Depends(get_service)):
    return {"outturn_id": outturn_id, "available_bags": service.available_paddy_bags(outturn_id)}


@router.post("/{outturn_id}/productions", response_model=Production, status_code=status.HTTP_201_CREATED)
async def record_production(
    outturn_id: int,
    body: ProductionCreate,
    service: OutturnService = Depends(get_service),
    actor: Actor = Depends(deps.get_actor),
):
    return service.record_production(
        outturn_id, body.production_date, body.product_type, body.quantity_quintals, actor
    )


@router.patch("/productions/{production_id}/approve", response_model=Production)
async def approve_production(
    production_id: int,
    service: OutturnService = Depends(get_service),
    actor: Actor = Depends(deps.get_actor),
):
    return service.approve_production(production_id, actor)


@router.post("/{outturn_id}/clear", response_model=Outturn)
async def clear_outturn(
    outturn_id: int,
    body: Optional[ClearOutturnRequest] = None,
    service: OutturnService = Depends(get_service),
    actor: Actor = Depends(deps.get_actor),
):
    """Close an outturn; its balance is frozen at the clearing date"""
    return service.clear_outturn(outturn_id, actor, body.clear_date if body else None)

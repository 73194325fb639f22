"""Rate API endpoints"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from millstock.api import deps
from millstock.schemas.ledger import PurchaseRate, PurchaseRateRequest, RateResponse
from millstock.services.ledger.admission import Actor, ROLE_ADMIN, ROLE_MANAGER
from millstock.services.ledger.events import OutturnLocation, WarehouseLocation
from millstock.services.ledger.purchase_rates import PurchaseRateService
from millstock.services.ledger.rate_propagation import RatePropagationService

router = APIRouter()


@router.get("/kunchinittus/{kunchinittu_id}", response_model=RateResponse)
async def kunchinittu_rate(
    kunchinittu_id: int,
    warehouse_id: int = 0,
    db: Session = Depends(deps.get_db),
):
    # The rate lives on the kunchinittu; the warehouse half of the pair is not consulted
    snapshot = RatePropagationService(db).get_rate(WarehouseLocation(kunchinittu_id, warehouse_id))
    return RateResponse(rate=snapshot.rate, last_calculated_at=snapshot.last_calculated_at)


@router.get("/outturns/{outturn_id}", response_model=RateResponse)
async def outturn_rate(outturn_id: int, db: Session = Depends(deps.get_db)):
    snapshot = RatePropagationService(db).get_rate(OutturnLocation(outturn_id))
    return RateResponse(rate=snapshot.rate, last_calculated_at=snapshot.last_calculated_at)


@router.post("/kunchinittus/{kunchinittu_id}/recalculate", response_model=RateResponse)
async def recalculate_kunchinittu_rate(
    kunchinittu_id: int,
    db: Session = Depends(deps.get_db),
    actor: Actor = Depends(deps.get_actor),
):
    actor.require(ROLE_MANAGER, ROLE_ADMIN)
    snapshot = RatePropagationService(db).calculate_kunchinittu_rate(kunchinittu_id)
    db.commit()
    return RateResponse(rate=snapshot.rate, last_calculated_at=snapshot.last_calculated_at)


@router.get("/purchases/{event_id}", response_model=PurchaseRate)
async def get_purchase_rate(event_id: int, db: Session = Depends(deps.get_db)):
    return PurchaseRateService(db).get_rate(event_id)


@router.put("/purchases/{event_id}", response_model=PurchaseRate)
async def save_purchase_rate(
    event_id: int,
    body: PurchaseRateRequest,
    db: Session = Depends(deps.get_db),
    actor: Actor = Depends(deps.get_actor),
):
    """Price a purchase and refresh its destination's average rate"""
    return PurchaseRateService(db).save_rate(event_id, body.to_input(), actor)

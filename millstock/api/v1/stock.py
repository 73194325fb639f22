"""Stock Balance API endpoints"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from millstock.api import deps
from millstock.schemas.ledger import (
    BalanceLine, KunchinittuBalanceResponse, OpeningBalanceRecord,
    OpeningBalanceResponse, OpeningBalanceSet, VarietyStockResponse
)
from millstock.services.ledger.admission import Actor
from millstock.services.ledger.balance_engine import StockBalanceEngine
from millstock.services.ledger.events import normalize_variety
from millstock.services.ledger.kunchinittu_ledger import KunchinittuLedgerService
from millstock.services.ledger.projection_cache import ProjectionCache

router = APIRouter()


def get_engine(
    db: Session = Depends(deps.get_db),
    cache: ProjectionCache = Depends(deps.get_cache),
) -> StockBalanceEngine:
    return StockBalanceEngine(db, cache=cache)


@router.get("/opening-balance", response_model=OpeningBalanceResponse)
async def opening_balance(
    before_date: str = Query(..., description="Exclusive cutoff, YYYY-MM-DD"),
    variety: Optional[str] = Query(None, description="Restrict to one variety"),
    engine: StockBalanceEngine = Depends(get_engine),
):
    """
    Warehouse and production balances before a date.

    Only admin-approved movements count.
    """
    balance = engine.compute_opening_balance(before_date, variety)
    return OpeningBalanceResponse.from_balance(balance, normalize_variety(variety) or None)


@router.get("/variety/{variety}", response_model=VarietyStockResponse)
async def stock_by_variety(
    variety: str,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    engine: StockBalanceEngine = Depends(get_engine),
):
    """Kunchinittus currently holding a variety, largest first"""
    entries = engine.stock_by_variety(variety, date_from, date_to)
    return VarietyStockResponse(
        variety=normalize_variety(variety),
        locations=[BalanceLine.from_entry(e) for e in entries],
        total_bags=sum(e.bags for e in entries),
    )


@router.get("/kunchinittus/{kunchinittu_id}/opening-balance", response_model=KunchinittuBalanceResponse)
async def kunchinittu_opening_balance(
    kunchinittu_id: int,
    on_date: date = Query(...),
    db: Session = Depends(deps.get_db),
):
    balance = KunchinittuLedgerService(db).get_opening_balance(kunchinittu_id, on_date)
    return KunchinittuBalanceResponse(**balance.__dict__)


@router.put("/kunchinittus/{kunchinittu_id}/opening-balance", response_model=OpeningBalanceRecord)
async def set_kunchinittu_opening_balance(
    kunchinittu_id: int,
    body: OpeningBalanceSet,
    db: Session = Depends(deps.get_db),
    actor: Actor = Depends(deps.get_actor),
):
    """Enter or correct a manual opening balance"""
    return KunchinittuLedgerService(db).set_opening_balance(
        kunchinittu_id, body.on_date, body.bags, body.net_weight, actor, body.remarks
    )


@router.get("/kunchinittus/{kunchinittu_id}/opening-balance/history", response_model=List[OpeningBalanceRecord])
async def kunchinittu_opening_balance_history(
    kunchinittu_id: int,
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(deps.get_db),
):
    return KunchinittuLedgerService(db).opening_balance_history(kunchinittu_id, from_date, to_date, limit)

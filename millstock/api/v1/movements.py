"""Movement Ledger API endpoints"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date

from millstock.api import deps
from millstock.schemas.ledger import (
    Movement, MovementCreate, MovementCreated, MovementListResponse, RejectRequest
)
from millstock.services.ledger.admission import Actor, MovementAdmissionService
from millstock.services.ledger.event_store import (
    DateRange, KindIn, NotDeleted, StatusIn, TouchesKunchinittu, VarietyIs
)
from millstock.services.ledger.events import ApprovalState, MovementKind
from millstock.services.ledger.projection_cache import ProjectionCache

router = APIRouter()


def get_service(
    db: Session = Depends(deps.get_db),
    cache: ProjectionCache = Depends(deps.get_cache),
) -> MovementAdmissionService:
    return MovementAdmissionService(db, cache=cache)


@router.post("", response_model=MovementCreated, status_code=status.HTTP_201_CREATED)
async def create_movement(
    movement: MovementCreate,
    service: MovementAdmissionService = Depends(get_service),
    actor: Actor = Depends(deps.get_actor),
):
    """
    Record a movement.

    Staff entries start pending, manager entries approved and admin entries
    are admitted immediately.
    """
    event_id = service.admit_movement(movement.to_event(), actor, movement.details())
    rec = service.get_movement(event_id)
    return MovementCreated(event_id=rec.event_id, sl_no=rec.sl_no, status=rec.status)


@router.get("", response_model=MovementListResponse)
async def list_movements(
    kind: Optional[MovementKind] = Query(None, description="Filter by movement kind"),
    movement_status: Optional[ApprovalState] = Query(None, alias="status", description="Filter by status"),
    variety: Optional[str] = Query(None, description="Filter by variety"),
    kunchinittu_id: Optional[int] = Query(None, description="Movements in or out of a kunchinittu"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    service: MovementAdmissionService = Depends(get_service),
):
    """List live movements, newest first"""
    filters = [NotDeleted(), DateRange(date_from, date_to)]
    if kind:
        filters.append(KindIn((kind,)))
    if movement_status:
        filters.append(StatusIn((movement_status,)))
    if variety:
        filters.append(VarietyIs(variety))
    if kunchinittu_id is not None:
        filters.append(TouchesKunchinittu(kunchinittu_id))

    return MovementListResponse(
        movements=service.list_movements(*filters, skip=skip, limit=limit),
        total=service.count_movements(*filters),
        skip=skip,
        limit=limit,
    )


@router.get("/{event_id}", response_model=Movement)
async def get_movement(event_id: int, service: MovementAdmissionService = Depends(get_service)):
    return service.get_movement(event_id)


@router.patch("/{event_id}/approve", response_model=Movement)
async def approve_movement(
    event_id: int,
    service: MovementAdmissionService = Depends(get_service),
    actor: Actor = Depends(deps.get_actor),
):
    return service.approve(event_id, actor)


@router.patch("/{event_id}/reject", response_model=Movement)
async def reject_movement(
    event_id: int,
    body: Optional[RejectRequest] = None,
    service: MovementAdmissionService = Depends(get_service),
    actor: Actor = Depends(deps.get_actor),
):
    return service.reject(event_id, actor, body.remarks if body else None)


@router.patch("/{event_id}/admin-approve", response_model=Movement)
async def admin_approve_movement(
    event_id: int,
    service: MovementAdmissionService = Depends(get_service),
    actor: Actor = Depends(deps.get_actor),
):
    """Admit a manager-approved movement after re-validating it"""
    return service.admin_approve(event_id, actor)


@router.delete("/{event_id}", response_model=Movement)
async def delete_movement(
    event_id: int,
    service: MovementAdmissionService = Depends(get_service),
    actor: Actor = Depends(deps.get_actor),
):
    return service.delete(event_id, actor)

import logging

from fastapi import APIRouter, Depends

from app.api.deps import get_services
from app.domain.delivery import Delivery
from app.schemas.courier import ReorderOut
from app.schemas.delivery import AssignIn, DeliveryCreate, EvidenceIn, TransitionIn, TransitionOut
from app.services.container import Services
from app.services.lifecycle import TransitionOutcome


log = logging.getLogger(__name__)
router = APIRouter()


@router.post("/deliveries", response_model=Delivery, status_code=201)
async def create_delivery(payload: DeliveryCreate, svc: Services = Depends(get_services)) -> Delivery:
    return await svc.lifecycle.create(payload.to_domain())


@router.get("/deliveries/{delivery_id}", response_model=Delivery)
async def get_delivery(delivery_id: str, svc: Services = Depends(get_services)) -> Delivery:
    return await svc.lifecycle.get(delivery_id)


def _transition_out(outcome: TransitionOutcome) -> TransitionOut:
    out = TransitionOut(
        delivery=outcome.delivery,
        previous_status=outcome.previous.status,
        event=outcome.event.type.value if outcome.event else None,
    )
    if outcome.route is not None:
        r = outcome.route
        out.route = ReorderOut(courier_id=r.courier_id, order=r.order, succeeded=r.succeeded, failed=r.failed)
    return out


@router.post("/deliveries/{delivery_id}/transition", response_model=TransitionOut)
async def transition_delivery(delivery_id: str, payload: TransitionIn, svc: Services = Depends(get_services)) -> TransitionOut:
    return _transition_out(await svc.lifecycle.transition(delivery_id, payload.status))


@router.post("/deliveries/{delivery_id}/assign", response_model=Delivery)
async def assign_delivery(delivery_id: str, payload: AssignIn, svc: Services = Depends(get_services)) -> Delivery:
    return await svc.assignment.assign(delivery_id, payload.courier_id)


@router.post("/deliveries/{delivery_id}/unassign", response_model=TransitionOut)
async def unassign_delivery(delivery_id: str, svc: Services = Depends(get_services)) -> TransitionOut:
    return _transition_out(await svc.assignment.unassign(delivery_id))


@router.put("/deliveries/{delivery_id}/evidence", response_model=Delivery)
async def attach_evidence(delivery_id: str, payload: EvidenceIn, svc: Services = Depends(get_services)) -> Delivery:
    return await svc.lifecycle.attach_evidence(delivery_id, signature=payload.signature, photos=payload.photos)


@router.post("/deliveries/{delivery_id}/payment/received", response_model=Delivery)
async def mark_payment_received(delivery_id: str, svc: Services = Depends(get_services)) -> Delivery:
    return await svc.lifecycle.mark_payment_received(delivery_id)

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_services
from app.domain.courier import Courier
from app.schemas.courier import NextStopOut, OptimizeIn, OptimizeOut, ReorderIn, ReorderOut, RouteOut
from app.services.container import Services
from app.services.route_optimizers import get_optimizer
from app.services.route_sequencer import ReorderResult


router = APIRouter()


def _reorder_out(result: ReorderResult) -> ReorderOut:
    return ReorderOut(courier_id=result.courier_id, order=result.order, succeeded=result.succeeded, failed=result.failed)


@router.get("/couriers", response_model=list[Courier])
async def list_active_couriers(refresh: bool = Query(default=False), svc: Services = Depends(get_services)) -> list[Courier]:
    return await svc.directory.list_active(refresh=refresh)


@router.get("/couriers/{courier_id}/route", response_model=RouteOut)
async def get_route(courier_id: str, svc: Services = Depends(get_services)) -> RouteOut:
    await svc.directory.get(courier_id)
    return RouteOut(courier_id=courier_id, stops=await svc.sequencer.active_route(courier_id))


@router.put("/couriers/{courier_id}/route", response_model=ReorderOut)
async def reorder_route(courier_id: str, payload: ReorderIn, svc: Services = Depends(get_services)) -> ReorderOut:
    result = await svc.sequencer.reorder(courier_id, payload.delivery_ids)
    return _reorder_out(result.raise_for_failures())


@router.post("/couriers/{courier_id}/route/{delivery_id}/up", response_model=ReorderOut)
async def move_stop_up(courier_id: str, delivery_id: str, svc: Services = Depends(get_services)) -> ReorderOut:
    result = await svc.sequencer.move_up(courier_id, delivery_id)
    return _reorder_out(result.raise_for_failures())


@router.post("/couriers/{courier_id}/route/{delivery_id}/down", response_model=ReorderOut)
async def move_stop_down(courier_id: str, delivery_id: str, svc: Services = Depends(get_services)) -> ReorderOut:
    result = await svc.sequencer.move_down(courier_id, delivery_id)
    return _reorder_out(result.raise_for_failures())


@router.post("/couriers/{courier_id}/route/optimize", response_model=OptimizeOut)
async def optimize_route(courier_id: str, payload: OptimizeIn, svc: Services = Depends(get_services)) -> OptimizeOut:
    get_optimizer(payload.strategy)  # unknown strategies fail before the courier lookup
    courier = await svc.directory.get(courier_id)
    proposed, applied = await svc.sequencer.optimize(
        courier_id,
        strategy=payload.strategy,
        origin=courier.last_known_position,
        apply=payload.apply,
    )
    if applied is not None:
        applied.raise_for_failures()
    return OptimizeOut(
        courier_id=courier_id,
        strategy=payload.strategy,
        proposed=proposed,
        applied=_reorder_out(applied) if applied else None,
    )


@router.get("/couriers/{courier_id}/next", response_model=NextStopOut)
async def next_stop(courier_id: str, after: str = Query(min_length=1), svc: Services = Depends(get_services)) -> NextStopOut:
    nxt = await svc.lifecycle.select_next(courier_id, after)
    return NextStopOut(courier_id=courier_id, after=after, next=nxt)

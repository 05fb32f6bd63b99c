import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends

from app.api.deps import get_services
from app.schemas.webhook import DispatchReportOut, EventAcceptedOut, EventIn
from app.services.container import Services


log = logging.getLogger(__name__)
router = APIRouter()


@router.post("/events", response_model=EventAcceptedOut, status_code=202)
async def publish_event(payload: EventIn, svc: Services = Depends(get_services)) -> EventAcceptedOut:
    """
    Externally originated events (the deadline watcher's ENTREGA_ATRASADA).
    Queued for fan-out; the response does not wait for subscribers.
    """
    event = svc.dispatcher.dispatch(payload.event_type, payload.payload)
    log.info("event accepted type=%s", event.type.value)
    return EventAcceptedOut(event_type=event.type, timestamp=event.timestamp)


@router.post("/webhooks/{subscription_id}/test", response_model=DispatchReportOut)
async def send_test_webhook(subscription_id: str, svc: Services = Depends(get_services)) -> DispatchReportOut:
    report = await svc.dispatcher.send_test(subscription_id)
    return DispatchReportOut(**asdict(report))

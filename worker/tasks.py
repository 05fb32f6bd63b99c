import asyncio
import logging
from dataclasses import asdict
from typing import Any

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from worker.celery_app import celery
from app.core.config import settings
import app.models  # noqa: F401  # ensures Models are registered
from app.domain.webhook import Event, EventType
from app.repositories.sql import SqlSubscriptionStore
from app.services.http_client import WebhookHttpClient
from app.services.webhook_dispatcher import EventDispatcher


log = logging.getLogger(__name__)


async def _dispatch_event(event_type: str, payload: dict[str, Any]) -> list[dict[str, Any]]:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    http = WebhookHttpClient(user_agent=settings.webhook_user_agent)

    try:
        dispatcher = EventDispatcher(
            SqlSubscriptionStore(Session),
            http,
            concurrency=settings.webhook_concurrency,
            backoff_base_seconds=settings.webhook_backoff_base_seconds,
            backoff_cap_seconds=settings.webhook_backoff_cap_seconds,
        )
        reports = await dispatcher.deliver(Event(type=EventType(event_type), payload=payload))
    finally:
        await http.aclose()
        await engine.dispose()

    failed = [r for r in reports if not r.ok]
    log.info("event %s delivered subscriptions=%d failed=%d", event_type, len(reports), len(failed))
    return [{**asdict(r), "event_type": r.event_type.value} for r in reports]


@celery.task(name="worker.tasks.dispatch_event", bind=True, max_retries=0)
def dispatch_event(self, event_type: str, payload: dict[str, Any]) -> list[dict[str, Any]]:
    # retries live inside the dispatcher, per subscription; the task itself never re-runs
    return asyncio.run(_dispatch_event(event_type, payload))

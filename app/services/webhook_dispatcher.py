"""
Webhook fan-out.

`dispatch()` only enqueues: a bounded asyncio.Queue drained by a fixed pool of
worker tasks, one job per matching subscription. Each job posts the event,
retries sequentially with capped exponential backoff, then records the final
status on the subscription. Nothing here ever reaches back into delivery
state, so a failed or cancelled notification never undoes a transition.

Delivery is at-least-once; subscribers may see the same event twice.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from app.core.errors import NotFound, SubscriptionDeliveryFailure
from app.core.ids import utcnow
from app.domain.webhook import NO_RESPONSE_STATUS, Event, EventType, WebhookAttempt, WebhookSubscription
from app.repositories.base import SubscriptionStore
from app.services.events import sample_delivery_payload
from app.services.http_client import WebhookHttpClient
from app.services.retry import compute_backoff_seconds


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchReport:
    subscription_id: str
    event_type: EventType
    ok: bool
    attempts: int
    status_code: int  # NO_RESPONSE_STATUS when nothing ever answered
    error_code: str | None = None
    error_message: str | None = None

    @property
    def failure(self) -> SubscriptionDeliveryFailure | None:
        if self.ok:
            return None
        return SubscriptionDeliveryFailure(
            self.subscription_id, self.event_type.value, self.attempts, self.status_code, self.error_message
        )


@dataclass(frozen=True)
class _Job:
    event: Event
    subscription: WebhookSubscription | None = None  # None: resolve subscriptions first
    headers: dict[str, str] | None = None


class EventDispatcher:
    def __init__(
        self,
        subscriptions: SubscriptionStore,
        http: WebhookHttpClient,
        *,
        concurrency: int = 4,
        queue_size: int = 1000,
        backoff_base_seconds: float = 0.5,
        backoff_cap_seconds: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._subscriptions = subscriptions
        self._http = http
        self._concurrency = max(1, concurrency)
        self._queue: asyncio.Queue[_Job] = asyncio.Queue(maxsize=queue_size)
        self._backoff_base = backoff_base_seconds
        self._backoff_cap = backoff_cap_seconds
        self._clock = clock
        self._sleep = sleep
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"webhook-worker-{n}") for n in range(self._concurrency)
        ]
        log.info("webhook dispatcher started workers=%d", self._concurrency)

    async def stop(self) -> None:
        """Cancel workers and drop whatever is still queued."""
        workers, self._workers = self._workers, []
        for t in workers:
            t.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            dropped += 1
        log.info("webhook dispatcher stopped dropped=%d", dropped)

    async def drain(self) -> None:
        await self._queue.join()

    def dispatch(self, event_type: EventType, payload: dict[str, Any]) -> Event:
        """
        Schedule delivery of an event to every active subscription for its
        type. Never waits on I/O; a full queue drops the event with an error log.
        """
        event = Event(type=event_type, timestamp=self._clock(), payload=payload)
        self._enqueue(_Job(event=event))
        return event

    async def deliver(self, event: Event) -> list[DispatchReport]:
        """Fan out inline and wait for every subscription's outcome."""
        subs = await self._subscriptions.list_active_by_event(event.type)
        if not subs:
            log.info("no subscriptions for event=%s", event.type.value)
            return []

        sem = asyncio.Semaphore(self._concurrency)

        async def run(sub: WebhookSubscription) -> DispatchReport:
            async with sem:
                return await self._deliver_one(sub, event)

        return list(await asyncio.gather(*(run(s) for s in subs)))

    async def send_test(self, subscription_id: str) -> DispatchReport:
        """Post a synthetic event to one subscription, ignoring its event filter."""
        sub = await self._subscriptions.get(subscription_id)
        if sub is None:
            raise NotFound("webhook subscription", subscription_id)
        event_type = min(sub.events, key=lambda e: e.value) if sub.events else EventType.ENTREGA_EM_ROTA
        event = Event(type=event_type, timestamp=self._clock(), payload=sample_delivery_payload())
        return await self._deliver_one(sub, event, extra_headers={"X-Source": "webhook-test"})

    def _enqueue(self, job: _Job) -> bool:
        try:
            self._queue.put_nowait(job)
            return True
        except asyncio.QueueFull:
            target = job.subscription.id if job.subscription else "*"
            log.error("webhook queue full, dropping event=%s subscription=%s", job.event.type.value, target)
            return False

    async def _worker(self, n: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job.subscription is None:
                    await self._fan_out(job.event)
                else:
                    await self._deliver_one(job.subscription, job.event, extra_headers=job.headers)
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("webhook worker %d failed on event=%s", n, job.event.type.value)
            finally:
                self._queue.task_done()

    async def _fan_out(self, event: Event) -> None:
        subs = await self._subscriptions.list_active_by_event(event.type)
        log.info("dispatch event=%s subscriptions=%d", event.type.value, len(subs))
        for sub in subs:
            self._enqueue(_Job(event=event, subscription=sub))

    async def _deliver_one(
        self,
        sub: WebhookSubscription,
        event: Event,
        *,
        extra_headers: dict[str, str] | None = None,
    ) -> DispatchReport:
        body = event.wire_body()
        headers = {**sub.headers, **(extra_headers or {})}
        max_attempts = 1 + sub.max_retries
        attempts: list[WebhookAttempt] = []

        n = 0
        while True:
            n += 1
            res = await self._http.post_json(
                url=sub.target_url,
                body=body,
                timeout_seconds=sub.timeout_ms / 1000,
                headers=headers,
                secret=sub.secret,
            )
            attempts.append(
                WebhookAttempt(
                    subscription_id=sub.id,
                    event_type=event.type,
                    attempt=n,
                    ok=res.ok,
                    status_code=res.status_code,
                    error_code=res.error_code,
                    error_message=res.error_message,
                    elapsed_ms=res.elapsed_ms,
                    created_at=self._clock(),
                )
            )
            if res.ok or not res.retryable or n >= max_attempts:
                break
            delay = compute_backoff_seconds(n, base=self._backoff_base, cap=self._backoff_cap)
            log.warning(
                "webhook attempt failed subscription=%s event=%s attempt=%d/%d error=%s retry_in=%.2fs",
                sub.id, event.type.value, n, max_attempts, res.error_code, delay,
            )
            await self._sleep(delay)

        status_code = res.status_code if res.status_code is not None else NO_RESPONSE_STATUS
        await self._record(sub, status_code, attempts)

        report = DispatchReport(
            subscription_id=sub.id,
            event_type=event.type,
            ok=res.ok,
            attempts=len(attempts),
            status_code=status_code,
            error_code=res.error_code,
            error_message=res.error_message,
        )
        if report.ok:
            log.info("webhook delivered subscription=%s event=%s attempts=%d", sub.id, event.type.value, report.attempts)
        else:
            log.error("%s", report.failure)
        return report

    async def _record(self, sub: WebhookSubscription, status_code: int, attempts: list[WebhookAttempt]) -> None:
        # bookkeeping failures must not leak into other subscriptions' deliveries
        try:
            await self._subscriptions.record_execution(sub.id, executed_at=self._clock(), status_code=status_code)
            await self._subscriptions.add_attempts(attempts)
        except Exception:
            log.exception("failed to record webhook execution subscription=%s", sub.id)

"""At-least-once redelivery of pushed short URLs.

Every short URL pushed to a client gets a ``PendingDelivery`` that re-sends
the result on a fixed cadence until the client acknowledges it or the retry
bound is reached. Acknowledgment state lives in the store; this engine only
reads it and reacts to the store's acknowledgment notifications.

State Machine
=============
::
    ┌────────┐  start()   ┌────────────┐
    │ UNSENT │──────────► │ PENDING(n) │◄──┐
    └────────┘            └─────┬──────┘   │ tick, n < MAX:
                                │          │ push, n + 1
          ┌─────────────────────┼──────────┘
          │ acknowledged        │ n == MAX or
          │ (tick or cancel())  │ mapping removed
          ▼                     ▼
    ┌──────────────┐      ┌───────────┐
    │ ACKNOWLEDGED │      │ EXHAUSTED │
    └──────────────┘      └───────────┘

How to Use
===========
**Step 1 — Wire to the store**::
    engine = DeliveryEngine(store, retry_interval=5.0, max_retries=5)

**Step 2 — Start after the first push**::
    delivery = engine.start(short_code, resend)

**Step 3 — Shut down**::
    await engine.shutdown()

Key Behaviours
===============
- At most one active delivery per short code; ``start`` on an active code
  returns the existing delivery.
- ``cancel`` is idempotent and safe on finished or unknown codes.
- Exhaustion is logged at warning level and is terminal.
- Client disconnects do not affect pending deliveries.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from prometheus_client import Counter

from shortener.config import Settings
from shortener.enums import DeliveryState
from shortener.store import URLStore

__all__ = ["DeliveryEngine", "PendingDelivery", "PushCallback"]

logger = logging.getLogger("urlshortener.delivery")

PushCallback = Callable[[str], Awaitable[object]]


DELIVERY_RETRIES_TOTAL = Counter(
    "url_shortener_delivery_retries_total",
    "Short URL redelivery attempts",
)
DELIVERY_OUTCOMES_TOTAL = Counter(
    "url_shortener_delivery_outcomes_total",
    "Finished deliveries by terminal state",
    ["state"],
)


@dataclass
class PendingDelivery:
    """Retry bookkeeping for one short code."""

    short_code: str
    retry_count: int = 0
    state: DeliveryState = DeliveryState.UNSENT
    task: asyncio.Task | None = field(default=None, repr=False)

    async def wait(self) -> DeliveryState:
        """Block until the retry task has stopped and return the final state."""
        if self.task is not None:
            await asyncio.wait([self.task])
        return self.state


class DeliveryEngine:
    """Schedules redelivery of unacknowledged short URLs."""

    def __init__(self, store: URLStore, *, retry_interval: float = 5.0, max_retries: int = 5):
        assert retry_interval > 0, f"retry_interval must be positive, got {retry_interval!r}"
        assert max_retries >= 0, f"max_retries must be non-negative, got {max_retries!r}"
        self._store = store
        self._retry_interval = retry_interval
        self._max_retries = max_retries
        self._pending: dict[str, PendingDelivery] = {}
        store.add_acknowledgment_listener(self.cancel)

    @classmethod
    def from_settings(cls, store: URLStore, settings: Settings) -> "DeliveryEngine":
        return cls(
            store,
            retry_interval=settings.DELIVERY_RETRY_INTERVAL_SECONDS,
            max_retries=settings.DELIVERY_MAX_RETRIES,
        )

    def __len__(self) -> int:
        return len(self._pending)

    def get(self, short_code: str) -> PendingDelivery | None:
        return self._pending.get(short_code)

    def state(self, short_code: str) -> DeliveryState:
        delivery = self._pending.get(short_code)
        return delivery.state if delivery else DeliveryState.UNSENT

    def start(self, short_code: str, push: PushCallback) -> PendingDelivery:
        """Begin watching ``short_code`` for acknowledgment.

        Must be called from a running event loop, after the first push.
        """
        existing = self._pending.get(short_code)
        if existing is not None and existing.state is DeliveryState.PENDING:
            logger.debug(f"Delivery for {short_code} already pending, not rescheduling")
            return existing

        delivery = PendingDelivery(short_code=short_code, state=DeliveryState.PENDING)
        delivery.task = asyncio.create_task(self._run(delivery, push), name=f"delivery:{short_code}")
        self._pending[short_code] = delivery
        return delivery

    def cancel(self, short_code: str) -> None:
        """Stop redelivering ``short_code`` because the client acknowledged it."""
        delivery = self._pending.get(short_code)
        if delivery is None:
            return
        self._finish(delivery, DeliveryState.ACKNOWLEDGED)
        if delivery.task is not None and not delivery.task.done():
            delivery.task.cancel()

    async def shutdown(self) -> None:
        tasks = [d.task for d in self._pending.values() if d.task is not None and not d.task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info(f"Cancelled {len(tasks)} pending deliveries")
        self._pending.clear()

    async def _run(self, delivery: PendingDelivery, push: PushCallback) -> None:
        short_code = delivery.short_code
        while delivery.retry_count < self._max_retries:
            await asyncio.sleep(self._retry_interval)

            if self._store.is_acknowledged(short_code):
                self._finish(delivery, DeliveryState.ACKNOWLEDGED)
                return
            if short_code not in self._store:
                logger.info(f"Mapping for {short_code} no longer exists, stopping delivery")
                self._finish(delivery, DeliveryState.EXHAUSTED)
                return

            delivery.retry_count += 1
            DELIVERY_RETRIES_TOTAL.inc()
            logger.info(f"Retrying delivery for shortCode: {short_code}, attempt: {delivery.retry_count}")
            try:
                await push(short_code)
            except Exception as exc:
                logger.error(f"Redelivery of {short_code} failed: {exc}")

        logger.warning(f"Max retries reached for shortCode: {short_code}")
        self._finish(delivery, DeliveryState.EXHAUSTED)

    def _finish(self, delivery: PendingDelivery, state: DeliveryState) -> None:
        if delivery.state.is_terminal:
            return
        delivery.state = state
        DELIVERY_OUTCOMES_TOTAL.labels(state=state).inc()
        if self._pending.get(delivery.short_code) is delivery:
            del self._pending[delivery.short_code]

import asyncio
import logging
from typing import Optional

from saledetail.core.config import BATCH_SIZE, LOG_FORMAT, LOG_LEVEL, MAX_ATTEMPTS, POLLING_INTERVAL
from saledetail.core.db import close_db, init_db
from saledetail.events.publisher import EventPublisher, RabbitEventPublisher
from saledetail.repositories.outbox_repository import OutboxRepository
from saledetail.schemas.outbox import OutboxRecord

log = logging.getLogger("outbox_dispatcher")


class OutboxDispatcher:
    """
    Drains PENDING outbox events to the broker.

    Each pass reads on the default connection, never inside a business transaction.
    Publishing is at-least-once: a crash between publish and mark_published leaves
    the event PENDING and it is published again on the next pass.
    """

    def __init__(
        self,
        publisher: EventPublisher,
        repository: Optional[OutboxRepository] = None,
        batch_size: int = BATCH_SIZE,
        poll_interval: float = POLLING_INTERVAL,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self.publisher = publisher
        self.repository = repository or OutboxRepository()
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def dispatch_pending(self) -> int:
        """
        One pass over the pending events, oldest first.
        A failing event never blocks the rest of the batch. Returns how many were published.
        """
        events = await self.repository.fetch_pending(self.batch_size)
        if not events:
            return 0

        published = 0
        for event in events:
            if self._stop.is_set():
                break
            if await self._dispatch_one(event):
                published += 1
        return published

    async def _dispatch_one(self, event: OutboxRecord) -> bool:
        # 1. Publish
        try:
            await self.publisher.publish(event.routing_key, event.payload, message_id=str(event.id))
        except Exception as e:
            await self._record_failure(event, e)
            return False

        # 2. Mark as published. If this fails the event is re-published later.
        try:
            await self.repository.mark_published(event.id)
        except Exception:
            log.exception(f"Event {event.id} was published but could not be marked; it will be re-sent.")
            return False

        log.info(f"Outbox event {event.id} published rk={event.routing_key}")
        return True

    async def _record_failure(self, event: OutboxRecord, error: Exception) -> None:
        attempts = await self.repository.increment_attempt(event.id, str(error))
        log.warning(f"Failed to publish outbox event {event.id} rk={event.routing_key} (attempt {attempts}): {error}")
        if self.max_attempts > 0 and attempts >= self.max_attempts:
            await self.repository.mark_failed(event.id)
            log.error(f"Outbox event {event.id} moved to FAILED after {attempts} attempts.")

    # ----------- Loop -----------

    async def run(self) -> None:
        """Main loop. Returns once stop() has been requested and the current pass is done."""
        log.info("--- Outbox Dispatcher Started ---")
        while not self._stop.is_set():
            try:
                await self.dispatch_pending()
            except Exception:
                log.exception("Outbox dispatcher pass failed")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        log.info("--- Outbox Dispatcher Stopped ---")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Signals shutdown and waits for the in-flight pass to finish."""
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None


async def start_outbox_dispatcher():
    """Entry point for running the dispatcher as its own process."""
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    await init_db()
    publisher = RabbitEventPublisher()
    await publisher.connect()
    dispatcher = OutboxDispatcher(publisher)
    try:
        await dispatcher.run()
    finally:
        await publisher.close()
        await close_db()

if __name__ == "__main__":
    try:
        asyncio.run(start_outbox_dispatcher())
    except KeyboardInterrupt:
        log.info("Dispatcher service stopped.")

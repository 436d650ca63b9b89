import asyncio
import hashlib
import json
import logging
from typing import Any, Callable, Iterable, Optional

from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue, AbstractRobustConnection

from saledetail.consumers.saga_handlers import get_handler
from saledetail.core.config import (
    CONSUMER_MAX_REDELIVERIES,
    CONSUMER_PREFETCH,
    CONSUMER_REQUEUE_DELAY,
    LOG_FORMAT,
    LOG_LEVEL,
    RABBITMQ_BINDINGS,
    RABBITMQ_EXCHANGE,
    RABBITMQ_QUEUE,
    RABBITMQ_URL,
)
from saledetail.core.db import close_db, init_db
from saledetail.core.exceptions import MessageValidationError, is_transient
from saledetail.events import broker
from saledetail.repositories.unit_of_work import UnitOfWork

log = logging.getLogger("saga_consumer")

MESSAGE_ID_FIELDS = ("MessageId", "message_id", "messageId")


def derive_idempotency_key(routing_key: str, body: bytes, payload: Any = None) -> str:
    """
    Idempotency key of an inbound message: the producer's MessageId when present,
    otherwise a SHA-256 of routing key and raw body (deterministic for redeliveries).
    """
    if isinstance(payload, dict):
        for field in MESSAGE_ID_FIELDS:
            value = payload.get(field)
            if value:
                return str(value)
    digest = hashlib.sha256()
    digest.update(routing_key.encode("utf-8"))
    digest.update(b"|")
    digest.update(body)
    return digest.hexdigest()


def delivery_count(message: AbstractIncomingMessage) -> Optional[int]:
    """
    Previous deliveries of this message as counted by the broker (quorum queues set
    x-delivery-count). None when the broker does not count them.
    """
    headers = message.headers or {}
    try:
        return int(headers["x-delivery-count"])
    except (KeyError, TypeError, ValueError):
        return None


class SagaConsumer:
    """
    Subscribes to saga events and turns each delivery into one local transaction.

    The message is acknowledged only after that transaction commits. Malformed
    messages are rejected without requeue; transient failures are requeued a
    bounded number of times.
    """

    def __init__(
        self,
        url: str = RABBITMQ_URL,
        exchange_name: str = RABBITMQ_EXCHANGE,
        queue_name: str = RABBITMQ_QUEUE,
        bindings: Iterable[str] = RABBITMQ_BINDINGS,
        uow_factory: Callable[[], UnitOfWork] = UnitOfWork,
        prefetch_count: int = CONSUMER_PREFETCH,
        max_redeliveries: int = CONSUMER_MAX_REDELIVERIES,
        requeue_delay: float = CONSUMER_REQUEUE_DELAY,
    ):
        self.url = url
        self.exchange_name = exchange_name
        self.queue_name = queue_name
        self.bindings = list(bindings)
        self.uow_factory = uow_factory
        self.prefetch_count = prefetch_count
        self.max_redeliveries = max_redeliveries
        self.requeue_delay = requeue_delay

        self._connection: Optional[AbstractRobustConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._queue: Optional[AbstractQueue] = None
        self._consumer_tag: Optional[str] = None
        self._stopping = False
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    # ----------- Lifecycle -----------

    async def start(self) -> None:
        """Declares the topology and starts consuming. Broker errors propagate to abort startup."""
        self._stopping = False
        self._connection = await broker.connect(self.url)
        self._channel = await self._connection.channel()
        # One unacknowledged delivery at a time per consumer
        await self._channel.set_qos(prefetch_count=self.prefetch_count)
        exchange = await broker.declare_exchange(self._channel, self.exchange_name)
        self._queue = await broker.declare_queue(self._channel, exchange, self.queue_name, self.bindings)
        self._consumer_tag = await self._queue.consume(self.process_message, no_ack=False)
        log.info(f"Saga consumer listening on '{self.queue_name}' for {', '.join(self.bindings)}")

    async def stop(self) -> None:
        """
        Cancels the subscription, waits for deliveries already being handled to
        commit and settle, then closes the broker connection.
        """
        self._stopping = True
        if self._queue is not None and self._consumer_tag is not None:
            await self._queue.cancel(self._consumer_tag)
        if self._in_flight:
            log.info(f"Waiting for {self._in_flight} in-flight message(s) before closing.")
        await self._idle.wait()
        if self._channel is not None and not self._channel.is_closed:
            await self._channel.close()
        if self._connection is not None and not self._connection.is_closed:
            await self._connection.close()
        self._queue = None
        self._consumer_tag = None
        self._channel = None
        self._connection = None
        log.info("Saga consumer stopped.")

    # ----------- Message handling -----------

    async def process_message(self, message: AbstractIncomingMessage) -> None:
        if self._stopping:
            # Handed back untouched; another consumer picks it up
            await message.nack(requeue=True)
            return

        self._in_flight += 1
        self._idle.clear()
        try:
            await self._handle(message)
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    async def _handle(self, message: AbstractIncomingMessage) -> None:
        routing_key = message.routing_key or ""
        body = message.body

        try:
            await self._apply(routing_key, body)
        except Exception as e:
            await self._settle_failure(message, routing_key, e)
            return

        await message.ack()

    async def _apply(self, routing_key: str, body: bytes) -> None:
        """Parses the message and commits its effects in one unit of work."""
        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, ValueError) as e:
            raise MessageValidationError(f"Invalid JSON body: {e}") from e

        idempotency_key = derive_idempotency_key(routing_key, body, payload)
        handler = get_handler(routing_key)
        if handler is None:
            log.warning(f"Unhandled routing key: {routing_key}")
            return

        async with self.uow_factory() as uow:
            if await uow.processed_events.exists(idempotency_key):
                log.info(f"Idempotency: message {idempotency_key} rk={routing_key} already processed.")
                return
            await handler(uow, payload)
            await uow.processed_events.record(idempotency_key, routing_key)

        log.info(f"Message {idempotency_key} rk={routing_key} committed")

    async def _settle_failure(self, message: AbstractIncomingMessage, routing_key: str, error: Exception) -> None:
        if not is_transient(error):
            log.error(f"Dropping message rk={routing_key}: {error} body={message.body[:500]!r}")
            await message.reject(requeue=False)
            return

        deliveries = delivery_count(message)
        # Without a broker count, the redelivered flag allows a single retry
        exhausted = message.redelivered if deliveries is None else deliveries >= self.max_redeliveries
        if exhausted:
            log.error(f"Giving up on message rk={routing_key} after repeated transient failures: {error}")
            await message.reject(requeue=False)
            return

        log.warning(f"Transient failure on rk={routing_key}, requeueing: {error}")
        if self.requeue_delay > 0 and not self._stopping:
            await asyncio.sleep(self.requeue_delay * (2 ** (deliveries or 0)))
        await message.nack(requeue=True)


async def start_saga_consumer():
    """Entry point for running the consumer as its own process."""
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    await init_db()
    consumer = SagaConsumer()
    await consumer.start()
    try:
        await asyncio.Future()
    finally:
        await consumer.stop()
        await close_db()

if __name__ == "__main__":
    try:
        asyncio.run(start_saga_consumer())
    except KeyboardInterrupt:
        log.info("Saga consumer stopped.")

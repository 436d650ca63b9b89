import logging
from typing import Optional, Protocol

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractRobustConnection

from saledetail.core.config import RABBITMQ_EXCHANGE, RABBITMQ_URL
from saledetail.core.exceptions import PublishError
from saledetail.events import broker

log = logging.getLogger("event_publisher")


class EventPublisher(Protocol):
    """Hands a routing key and serialized payload to the broker. Raises PublishError on failure."""

    async def publish(self, routing_key: str, payload: str, message_id: Optional[str] = None) -> None: ...


class RabbitEventPublisher:
    """
    Stateless adapter over a RabbitMQ topic exchange.
    It never retries; the outbox dispatcher owns retry.
    """

    def __init__(self, url: str = RABBITMQ_URL, exchange_name: str = RABBITMQ_EXCHANGE):
        self.url = url
        self.exchange_name = exchange_name
        self._connection: Optional[AbstractRobustConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._exchange: Optional[AbstractExchange] = None

    async def connect(self) -> None:
        """Connects and declares the exchange. Errors propagate so startup aborts."""
        self._connection = await broker.connect(self.url)
        # Publisher confirms make publish() wait for the broker's ack
        self._channel = await self._connection.channel(publisher_confirms=True)
        self._exchange = await broker.declare_exchange(self._channel, self.exchange_name)
        log.info(f"Event publisher connected to exchange '{self.exchange_name}'")

    async def publish(self, routing_key: str, payload: str, message_id: Optional[str] = None) -> None:
        if self._exchange is None:
            raise PublishError("Publisher is not connected.")
        message = aio_pika.Message(
            body=payload.encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            message_id=message_id,
        )
        try:
            await self._exchange.publish(message, routing_key=routing_key)
        except Exception as e:
            raise PublishError(f"Could not publish '{routing_key}': {e}") from e

    async def close(self) -> None:
        if self._channel is not None and not self._channel.is_closed:
            await self._channel.close()
        if self._connection is not None and not self._connection.is_closed:
            await self._connection.close()
        self._channel = None
        self._connection = None
        self._exchange = None
        log.info("Event publisher closed.")

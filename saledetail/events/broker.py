import logging
from typing import Iterable

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractQueue, AbstractRobustConnection

log = logging.getLogger("broker")


async def connect(url: str) -> AbstractRobustConnection:
    """Opens a self-healing connection. A broker that is down at startup raises here."""
    return await aio_pika.connect_robust(url)


async def declare_exchange(channel: AbstractChannel, exchange_name: str) -> AbstractExchange:
    """Declares the shared saga topic exchange. Safe to repeat."""
    exchange = await channel.declare_exchange(
        exchange_name,
        aio_pika.ExchangeType.TOPIC,
        durable=True,
        auto_delete=False,
    )
    log.info(f"Exchange '{exchange_name}' declared")
    return exchange


async def declare_queue(
    channel: AbstractChannel,
    exchange: AbstractExchange,
    queue_name: str,
    bindings: Iterable[str],
) -> AbstractQueue:
    """Declares this service's durable queue and binds every routing key pattern. Safe to repeat."""
    queue = await channel.declare_queue(queue_name, durable=True, exclusive=False, auto_delete=False)
    for routing_key in bindings:
        await queue.bind(exchange, routing_key=routing_key)
        log.info(f"Binding created: {queue_name} <- {exchange.name} [{routing_key}]")
    return queue

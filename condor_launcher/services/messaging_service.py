# services/messaging_service.py
import logging
from typing import Awaitable, Callable, Optional

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractRobustConnection

from condor_launcher.services.job_models import UpdateMessage

logger = logging.getLogger(__name__)

JOBS_EXCHANGE = "jobs"
LAUNCHES_KEY  = "jobs.launches"
STOPS_KEY     = "jobs.stops.*"
UPDATES_KEY   = "jobs.updates"

LAUNCHES_QUEUE = "condor_launches"
STOPS_QUEUE    = "condor_stops"

MessageHandler = Callable[[bytes], Awaitable[None]]


class MessagingService:
    """
    AMQP client for the jobs exchange.

    Deliveries are acknowledged before the handler runs, so a failed
    handler never causes a redelivery.
    """

    def __init__(self, uri: str, exchange_name: str = JOBS_EXCHANGE):
        self.uri = uri
        self.exchange_name = exchange_name
        self._connection: Optional[AbstractRobustConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._exchange: Optional[AbstractExchange] = None

    async def connect(self) -> None:
        self._connection = await aio_pika.connect_robust(self.uri)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=1)
        self._exchange = await self._channel.declare_exchange(
            self.exchange_name, aio_pika.ExchangeType.TOPIC, durable=True
        )
        logger.info("Connected to exchange '%s'", self.exchange_name)

    async def close(self) -> None:
        if self._connection is not None and not self._connection.is_closed:
            await self._connection.close()
        self._connection = None
        self._channel = None
        self._exchange = None

    def _require_exchange(self) -> AbstractExchange:
        if self._exchange is None:
            raise RuntimeError("MessagingService.connect() has not been called")
        return self._exchange

    async def consume(self, queue_name: str, routing_key: str, handler: MessageHandler) -> None:
        """Binds a durable queue to routing_key and feeds its messages to handler one at a time"""
        exchange = self._require_exchange()
        queue = await self._channel.declare_queue(queue_name, durable=True)
        await queue.bind(exchange, routing_key=routing_key)
        logger.info("Consuming '%s' on queue '%s'", routing_key, queue_name)

        async with queue.iterator() as messages:
            async for message in messages:
                await message.ack()
                try:
                    await handler(message.body)
                except Exception:
                    logger.exception("Unhandled error processing message from '%s'", queue_name)

    async def publish_job_update(self, update: UpdateMessage) -> None:
        exchange = self._require_exchange()
        await exchange.publish(
            aio_pika.Message(
                body=update.to_json(),
                content_type="application/json",
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            ),
            routing_key=UPDATES_KEY,
        )

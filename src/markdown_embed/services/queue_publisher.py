"""RabbitMQ publisher for embedding jobs."""

import json
from typing import Any, Dict, Optional

import aio_pika
from aio_pika import DeliveryMode, ExchangeType, Message

from markdown_embed.config import Settings, get_settings
from markdown_embed.utils.errors import QueueError
from markdown_embed.utils.logging import get_logger

logger = get_logger("queue_publisher")

RETRY_COUNT_HEADER = "x-retry-count"


class EmbeddingQueuePublisher:
    """Publishes embedding jobs to the generate-embedding exchange."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        connection: Optional[aio_pika.abc.AbstractConnection] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._connection = connection
        self._owns_connection = connection is None
        self._channel: Optional[aio_pika.abc.AbstractChannel] = None
        self._exchange: Optional[aio_pika.abc.AbstractExchange] = None

    async def connect(self) -> None:
        """Connect to RabbitMQ (unless a connection was injected) and declare the exchange."""
        if self._exchange is not None and self._channel and not self._channel.is_closed:
            return

        rabbitmq = self._settings.rabbitmq
        if self._connection is None or self._connection.is_closed:
            self._connection = await aio_pika.connect_robust(rabbitmq.url)
            self._owns_connection = True
        self._channel = await self._connection.channel()
        self._exchange = await self._channel.declare_exchange(
            name=rabbitmq.exchange_name,
            type=ExchangeType.DIRECT,
            durable=True,
        )
        logger.info(
            f"RabbitMQ publisher connected: exchange={rabbitmq.exchange_name}, "
            f"routing_key={rabbitmq.routing_key}"
        )

    async def close(self) -> None:
        """Close channel, and the connection if this publisher opened it."""
        try:
            if self._channel and not self._channel.is_closed:
                await self._channel.close()
        finally:
            self._channel = None
            self._exchange = None
        if self._owns_connection and self._connection and not self._connection.is_closed:
            await self._connection.close()
        self._connection = None

    async def publish(self, payload: Dict[str, Any], retry_count: int = 0) -> None:
        """
        Publish one embedding job.

        Raises:
            QueueError: If the message cannot be published.
        """
        try:
            if self._exchange is None:
                await self.connect()

            message = Message(
                body=json.dumps(payload).encode("utf-8"),
                content_type="application/json",
                delivery_mode=DeliveryMode.PERSISTENT,
                headers={RETRY_COUNT_HEADER: retry_count},
            )
            await self._exchange.publish(message, routing_key=self._settings.rabbitmq.routing_key)
        except QueueError:
            raise
        except Exception as e:
            logger.error(f"Failed to publish embedding job: {e}", exc_info=True)
            raise QueueError(
                "Failed to publish embedding job", details={"error": str(e)}
            ) from e

        logger.debug(f"Published embedding job: url={payload.get('url')}, retry_count={retry_count}")

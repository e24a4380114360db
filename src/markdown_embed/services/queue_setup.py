"""RabbitMQ queue setup service.

Declares the embedding exchange and queue, plus the dead-letter exchange and
queue that receive jobs whose batches exhausted their retries.
"""

from typing import Any, Dict, Optional

import aio_pika
from aio_pika import ExchangeType

from markdown_embed.config import Settings, get_settings
from markdown_embed.utils.logging import get_logger

logger = get_logger("queue_setup")


async def setup_queues(
    connection: aio_pika.abc.AbstractConnection,
    settings: Optional[Settings] = None,
) -> None:
    """
    Declare exchanges and queues (idempotent).

    Creates:
    1. Dead-letter exchange (direct): `<exchange>-dlx`
    2. Dead-letter queue (durable)
    3. Main exchange (direct)
    4. Main queue (durable, dead-lettering into the DLX)
    """
    rabbitmq = (settings or get_settings()).rabbitmq
    channel = await connection.channel()
    try:
        dlx = await channel.declare_exchange(
            name=rabbitmq.dead_letter_exchange_name,
            type=ExchangeType.DIRECT,
            durable=True,
        )
        dlq = await channel.declare_queue(
            name=rabbitmq.dead_letter_queue_name,
            durable=rabbitmq.queue_durable,
        )
        await dlq.bind(dlx, routing_key=rabbitmq.routing_key)
        logger.info(
            f"Dead-letter queue ready: {rabbitmq.dead_letter_queue_name} "
            f"(exchange={rabbitmq.dead_letter_exchange_name})"
        )

        exchange = await channel.declare_exchange(
            name=rabbitmq.exchange_name,
            type=ExchangeType.DIRECT,
            durable=True,
        )

        queue_arguments: Dict[str, Any] = {
            "x-dead-letter-exchange": rabbitmq.dead_letter_exchange_name,
            "x-dead-letter-routing-key": rabbitmq.routing_key,
        }
        if rabbitmq.message_ttl:
            queue_arguments["x-message-ttl"] = rabbitmq.message_ttl

        queue = await channel.declare_queue(
            name=rabbitmq.queue_name,
            durable=rabbitmq.queue_durable,
            arguments=queue_arguments,
        )
        await queue.bind(exchange, routing_key=rabbitmq.routing_key)
        logger.info(
            f"Main queue ready: {rabbitmq.queue_name} "
            f"(exchange={rabbitmq.exchange_name}, routing_key={rabbitmq.routing_key})"
        )
    except Exception as e:
        logger.error(f"Failed to set up RabbitMQ queues: {e}", exc_info=True)
        raise
    finally:
        await channel.close()


async def verify_queues(
    connection: aio_pika.abc.AbstractConnection,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """Report existence and depth of the main and dead-letter queues."""
    rabbitmq = (settings or get_settings()).rabbitmq
    status: Dict[str, Any] = {}

    for key, name in (
        ("main_queue", rabbitmq.queue_name),
        ("dead_letter_queue", rabbitmq.dead_letter_queue_name),
    ):
        # A failed passive declare closes the channel, so use one channel per check
        channel = await connection.channel()
        try:
            queue = await channel.declare_queue(name=name, passive=True)
            status[key] = {
                "exists": True,
                "name": name,
                "message_count": queue.declaration_result.message_count,
            }
        except Exception as e:
            logger.warning(f"Queue check failed for {name}: {e}")
            status[key] = {"exists": False, "name": name, "message_count": None}
        finally:
            if not channel.is_closed:
                await channel.close()

    return status

"""Queue consumer that batches embedding jobs into pipeline runs."""

import asyncio
import json
import uuid
from typing import Any, Dict, List, Optional

import aio_pika
from aio_pika.abc import AbstractConnection, AbstractIncomingMessage, AbstractQueue
from pydantic import ValidationError as PydanticValidationError

from markdown_embed.config import Settings, get_settings
from markdown_embed.models.outcome import PipelineOutcome
from markdown_embed.models.request import EmbeddingJobPayload, EmbeddingRequest
from markdown_embed.pipeline.embedding_pipeline import EmbeddingPipeline
from markdown_embed.services.queue_publisher import RETRY_COUNT_HEADER, EmbeddingQueuePublisher
from markdown_embed.utils.errors import ValidationError
from markdown_embed.utils.logging import get_logger, set_request_id

logger = get_logger("queue_consumer")


def parse_job(message: AbstractIncomingMessage, default_namespace: str) -> EmbeddingRequest:
    """
    Decode a queue message into an EmbeddingRequest.

    Raises:
        ValidationError: If the body is not a JSON object with a ``url`` that parses.
    """
    try:
        body = json.loads(message.body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Invalid message format: {e}") from e

    if not isinstance(body, dict) or not body.get("url"):
        raise ValidationError("URL is required")

    try:
        return EmbeddingJobPayload.model_validate(body).to_request(default_namespace)
    except PydanticValidationError as e:
        raise ValidationError("Invalid embedding job", errors=e.errors()) from e
    except ValueError as e:
        raise ValidationError(f"Invalid URL: {body['url']}") from e


def get_retry_count(message: AbstractIncomingMessage) -> int:
    headers = message.headers or {}
    try:
        return int(headers.get(RETRY_COUNT_HEADER, 0))
    except (TypeError, ValueError):
        return 0


class QueueConsumer:
    """
    RabbitMQ consumer for embedding jobs.

    Messages are buffered into batches of up to ``RABBITMQ_BATCH_SIZE`` and
    flushed when the batch is full or ``RABBITMQ_BATCH_TIMEOUT`` seconds after
    its first message. One batch is processed at a time. The whole batch is
    the unit of retry:

    - success / hardfail: every message is acknowledged
    - softfail: every message is republished with an incremented retry count,
      or dead-lettered once it has been retried RABBITMQ_MAX_RETRIES times
    - undecodable messages are dead-lettered before the batch runs
    """

    def __init__(
        self,
        connection: AbstractConnection,
        pipeline: EmbeddingPipeline,
        settings: Optional[Settings] = None,
        publisher: Optional[EmbeddingQueuePublisher] = None,
    ):
        self.connection = connection
        self.pipeline = pipeline
        self._settings = settings or get_settings()
        self.publisher = publisher or EmbeddingQueuePublisher(self._settings, connection=connection)
        self.channel: Optional[aio_pika.abc.AbstractChannel] = None
        self.queue: Optional[AbstractQueue] = None
        self._consumer_tag: Optional[str] = None
        self._running = False

        self._buffer: List[AbstractIncomingMessage] = []
        self._buffer_lock = asyncio.Lock()
        self._batch_lock = asyncio.Lock()
        self._flush_task: Optional[asyncio.Task] = None

    @property
    def batch_size(self) -> int:
        return self._settings.rabbitmq.batch_size

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start consuming messages from the queue."""
        if self._running:
            logger.warning("Queue consumer is already running")
            return

        rabbitmq = self._settings.rabbitmq
        try:
            self.channel = await self.connection.channel()
            # One batch worth of unacknowledged messages per consumer
            await self.channel.set_qos(prefetch_count=rabbitmq.batch_size)
            self.queue = await self.channel.declare_queue(name=rabbitmq.queue_name, passive=True)

            self._running = True
            self._consumer_tag = await self.queue.consume(self._on_message)
            logger.info(
                f"Started consuming {rabbitmq.queue_name}: batch_size={rabbitmq.batch_size}, "
                f"batch_timeout={rabbitmq.batch_timeout}s, max_retries={rabbitmq.max_retries}"
            )
        except Exception as e:
            logger.error(f"Failed to start queue consumer: {e}", exc_info=True)
            self._running = False
            raise

    async def stop(self) -> None:
        """Stop consuming. Buffered, unacknowledged messages are redelivered by the broker."""
        if not self._running:
            return

        logger.info("Stopping queue consumer...")
        self._running = False

        if self._flush_task is not None:
            self._flush_task.cancel()
            self._flush_task = None

        if self.queue and self._consumer_tag:
            try:
                await self.queue.cancel(self._consumer_tag)
            except Exception as e:
                logger.error(f"Error cancelling queue consumer: {e}", exc_info=True)
            finally:
                self._consumer_tag = None

        # Wait for an in-flight batch to settle its messages
        async with self._batch_lock:
            self._buffer.clear()

        await self.publisher.close()

        if self.channel and not self.channel.is_closed:
            try:
                await self.channel.close()
            except Exception as e:
                logger.error(f"Error closing consumer channel: {e}", exc_info=True)

    def _take_buffer(self) -> List[AbstractIncomingMessage]:
        batch, self._buffer = self._buffer, []
        task, self._flush_task = self._flush_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        return batch

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        """Buffer an incoming message, running the batch once it is full."""
        batch: List[AbstractIncomingMessage] = []
        async with self._buffer_lock:
            self._buffer.append(message)
            if len(self._buffer) >= self.batch_size:
                batch = self._take_buffer()
            elif self._flush_task is None:
                self._flush_task = asyncio.create_task(self._flush_after_timeout())
                self._flush_task.add_done_callback(self._on_flush_done)

        if batch:
            await self.process_batch(batch)

    async def _flush_after_timeout(self) -> None:
        await asyncio.sleep(self._settings.rabbitmq.batch_timeout)
        async with self._buffer_lock:
            batch = self._take_buffer()
        if batch:
            await self.process_batch(batch)

    @staticmethod
    def _on_flush_done(task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Timed batch flush failed: {error}", exc_info=error)

    async def process_batch(
        self, messages: List[AbstractIncomingMessage]
    ) -> Optional[PipelineOutcome]:
        """
        Run one pipeline over a batch of messages and settle every message.

        Returns:
            The pipeline outcome, or None if no message in the batch was valid.
        """
        async with self._batch_lock:
            set_request_id(f"batch-{uuid.uuid4().hex[:12]}")
            requests: List[EmbeddingRequest] = []
            valid: List[AbstractIncomingMessage] = []

            for message in messages:
                try:
                    requests.append(parse_job(message, self._settings.default_namespace))
                    valid.append(message)
                except ValidationError as e:
                    logger.error(f"Dead-lettering invalid embedding job: {e.message}")
                    await message.reject(requeue=False)

            if not requests:
                return None

            logger.info(f"Processing embedding batch: messages={len(requests)}")
            outcome = await self.pipeline.run(requests)

            if outcome.should_retry:
                await self._retry_batch(valid, outcome)
            else:
                for message in valid:
                    await message.ack()
                logger.info(
                    f"Acknowledged embedding batch: status={outcome.status.value}, "
                    f"messages={len(valid)}"
                )
            return outcome

    async def _retry_batch(
        self, messages: List[AbstractIncomingMessage], outcome: PipelineOutcome
    ) -> None:
        max_retries = self._settings.rabbitmq.max_retries
        for message in messages:
            retry_count = get_retry_count(message)
            if retry_count >= max_retries:
                logger.error(
                    f"Embedding job exhausted retries ({retry_count}/{max_retries}); "
                    f"dead-lettering: {outcome.message}"
                )
                await message.reject(requeue=False)
                continue

            payload: Dict[str, Any] = json.loads(message.body.decode("utf-8"))
            try:
                await self.publisher.publish(payload, retry_count=retry_count + 1)
            except Exception as e:
                logger.error(f"Failed to republish embedding job, requeueing: {e}")
                await message.nack(requeue=True)
                continue
            await message.ack()

        logger.warning(
            f"Retrying embedding batch: messages={len(messages)}, reason={outcome.message}"
        )

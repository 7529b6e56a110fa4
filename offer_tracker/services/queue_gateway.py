# offer_tracker/services/queue_gateway.py
"""
Queue transport for inbound notifications.

Only the logical contract matters to the rest of the service: receive a
batch, delete a message once it reached a terminal state, purge. The SQS
implementation wraps boto3; its blocking calls run in a worker thread.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from offer_tracker.core.config import Settings, get_settings
from offer_tracker.core.exceptions import QueueTransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueMessage:
    body: str
    receipt_handle: str
    message_id: Optional[str] = None


class QueueClient(ABC):
    """Base class for notification queues"""

    @abstractmethod
    async def receive(self, max_messages: int, wait_seconds: int) -> List[QueueMessage]:
        pass

    @abstractmethod
    async def delete(self, receipt_handle: str) -> None:
        pass

    @abstractmethod
    async def purge(self) -> None:
        pass


class SqsQueueClient(QueueClient):
    """Amazon SQS queue that the notification destination delivers to."""

    def __init__(self, settings: Optional[Settings] = None, client=None):
        self.settings = settings or get_settings()
        self.queue_url = self.settings.SQS_QUEUE_URL
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "sqs",
                region_name=self.settings.SQS_REGION,
                aws_access_key_id=self.settings.SQS_ACCESS_KEY_ID or None,
                aws_secret_access_key=self.settings.SQS_SECRET_ACCESS_KEY or None,
            )
        return self._client

    async def receive(self, max_messages: int = 1, wait_seconds: int = 0) -> List[QueueMessage]:
        try:
            result = await asyncio.to_thread(
                self.client.receive_message,
                QueueUrl=self.queue_url,
                AttributeNames=["SentTimestamp"],
                MessageAttributeNames=["All"],
                MaxNumberOfMessages=max_messages,
                WaitTimeSeconds=wait_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise QueueTransportError(f"Error receiving SQS messages: {e}") from e

        return [
            QueueMessage(
                body=message["Body"],
                receipt_handle=message["ReceiptHandle"],
                message_id=message.get("MessageId"),
            )
            for message in result.get("Messages", [])
        ]

    async def delete(self, receipt_handle: str) -> None:
        try:
            await asyncio.to_thread(
                self.client.delete_message,
                QueueUrl=self.queue_url,
                ReceiptHandle=receipt_handle,
            )
        except (BotoCoreError, ClientError) as e:
            raise QueueTransportError(f"Failed to delete SQS message {receipt_handle}: {e}") from e

    async def purge(self) -> None:
        logger.info("PURGING SQS QUEUE")
        try:
            await asyncio.to_thread(self.client.purge_queue, QueueUrl=self.queue_url)
        except (BotoCoreError, ClientError) as e:
            raise QueueTransportError(f"Error purging SQS queue: {e}") from e

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, Field

from ..errors import QueueError

logger = logging.getLogger(__name__)


class QueueMessage(BaseModel):
    """One delivery of a queue message"""

    message_id: str
    receipt_handle: str
    body: Optional[str] = None
    receive_count: int = 1
    attributes: Dict[str, Any] = Field(default_factory=dict)


class MessageQueue(ABC):
    """At-least-once job queue with explicit acknowledgement"""

    @abstractmethod
    async def poll_messages(self) -> List[QueueMessage]:
        """Receive at most one message, waiting up to the backend's long-poll time"""

    @abstractmethod
    async def delete_message(self, receipt_handle: str):
        """Acknowledge a delivery so it is not redelivered"""

    @abstractmethod
    async def send_message(self, body: str) -> str:
        """Enqueue a message body and return its id"""

    async def close(self):
        pass


class SqsMessageQueue(MessageQueue):
    """Amazon SQS (or LocalStack) backed queue"""

    def __init__(
        self,
        queue_url: Optional[str] = None,
        queue_name: Optional[str] = None,
        region_name: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        wait_time_seconds: int = 20,
        visibility_timeout: Optional[int] = None,
        client=None
    ):
        if not queue_url and not queue_name:
            raise QueueError("Either a queue URL or a queue name is required")

        self._queue_url = queue_url
        self.queue_name = queue_name
        self.wait_time_seconds = wait_time_seconds
        self.visibility_timeout = visibility_timeout
        self.client = client or boto3.client(
            'sqs',
            region_name=region_name,
            endpoint_url=endpoint_url,
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key
        )

    async def get_queue_url(self) -> str:
        if not self._queue_url:
            response = await self._call(self.client.get_queue_url, QueueName=self.queue_name)
            self._queue_url = response['QueueUrl']
            logger.info(f"Resolved queue {self.queue_name} to {self._queue_url}")
        return self._queue_url

    async def poll_messages(self) -> List[QueueMessage]:
        params = {
            'QueueUrl': await self.get_queue_url(),
            'MaxNumberOfMessages': 1,
            'WaitTimeSeconds': self.wait_time_seconds,
            'MessageAttributeNames': ['All'],
            'AttributeNames': ['ApproximateReceiveCount']
        }
        if self.visibility_timeout is not None:
            params['VisibilityTimeout'] = self.visibility_timeout

        response = await self._call(self.client.receive_message, **params)

        messages = []
        for raw in response.get('Messages', []):
            attributes = raw.get('Attributes', {})
            messages.append(QueueMessage(
                message_id=raw['MessageId'],
                receipt_handle=raw['ReceiptHandle'],
                body=raw.get('Body'),
                receive_count=int(attributes.get('ApproximateReceiveCount', 1)),
                attributes=raw.get('MessageAttributes', {})
            ))
        return messages

    async def delete_message(self, receipt_handle: str):
        await self._call(
            self.client.delete_message,
            QueueUrl=await self.get_queue_url(),
            ReceiptHandle=receipt_handle
        )

    async def send_message(self, body: str) -> str:
        response = await self._call(
            self.client.send_message,
            QueueUrl=await self.get_queue_url(),
            MessageBody=body
        )
        return response['MessageId']

    async def _call(self, method, **kwargs) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(method, **kwargs)
        except (BotoCoreError, ClientError) as e:
            raise QueueError(f"SQS request failed: {str(e)}", {"operation": getattr(method, '__name__', None)})


class InMemoryMessageQueue(MessageQueue):
    """
    Process-local queue with SQS-like delivery semantics

    Received messages stay hidden for visibility_timeout seconds and are
    redelivered unless deleted. With max_receive_count set, a message
    received more often than that is moved to dead_letters instead.
    """

    def __init__(self, visibility_timeout: float = 30.0, max_receive_count: Optional[int] = None):
        self.visibility_timeout = visibility_timeout
        self.max_receive_count = max_receive_count
        self.dead_letters: List[QueueMessage] = []
        self._messages: List[Dict[str, Any]] = []

    @property
    def pending_count(self) -> int:
        return len(self._messages)

    async def send_message(self, body: str) -> str:
        message_id = str(uuid.uuid4())
        self._messages.append({
            'message_id': message_id,
            'body': body,
            'receive_count': 0,
            'visible_at': 0.0,
            'receipt_handle': None
        })
        return message_id

    async def poll_messages(self) -> List[QueueMessage]:
        now = time.monotonic()
        for entry in list(self._messages):
            if entry['visible_at'] > now:
                continue

            entry['receive_count'] += 1
            if self.max_receive_count is not None and entry['receive_count'] > self.max_receive_count:
                self._messages.remove(entry)
                self.dead_letters.append(self._to_message(entry))
                logger.warning(f"Message {entry['message_id']} moved to dead letters")
                continue

            entry['visible_at'] = now + self.visibility_timeout
            entry['receipt_handle'] = str(uuid.uuid4())
            return [self._to_message(entry)]

        return []

    async def delete_message(self, receipt_handle: str):
        for entry in self._messages:
            if entry['receipt_handle'] == receipt_handle:
                self._messages.remove(entry)
                return
        logger.debug(f"Delete for unknown or stale receipt handle {receipt_handle}")

    def _to_message(self, entry: Dict[str, Any]) -> QueueMessage:
        return QueueMessage(
            message_id=entry['message_id'],
            receipt_handle=entry['receipt_handle'] or '',
            body=entry['body'],
            receive_count=entry['receive_count']
        )

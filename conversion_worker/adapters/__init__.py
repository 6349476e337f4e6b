"""
Queue and blob storage backends
"""

from .queue import QueueMessage, MessageQueue, SqsMessageQueue, InMemoryMessageQueue
from .storage import FileStorage, S3FileStorage, LocalFileStorage

__all__ = [
    'QueueMessage',
    'MessageQueue',
    'SqsMessageQueue',
    'InMemoryMessageQueue',
    'FileStorage',
    'S3FileStorage',
    'LocalFileStorage'
]

from .base import JobRecordStore
from .memory import InMemoryJobStore

__all__ = ['JobRecordStore', 'InMemoryJobStore']

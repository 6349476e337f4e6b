from abc import ABC, abstractmethod
from typing import Optional, Tuple

from ..models import JobDescriptor, ProcessingResult


class FileProcessor(ABC):
    """
    Strategy for one family of (operation, target format) combinations.

    Subclasses declare what they accept through SUPPORTED_OPERATIONS and
    SUPPORTED_FORMATS; a missing target format matches any format. process()
    must not touch shared state and may be called repeatedly with the same
    input.
    """

    SUPPORTED_OPERATIONS: Tuple[str, ...] = ()
    SUPPORTED_FORMATS: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return type(self).__name__

    def can_process(self, operation: str, target_format: Optional[str] = None) -> bool:
        if operation not in self.SUPPORTED_OPERATIONS:
            return False
        if target_format and target_format.lower() not in self.SUPPORTED_FORMATS:
            return False
        return True

    @abstractmethod
    async def process(self, data: bytes, descriptor: JobDescriptor) -> ProcessingResult:
        """
        Transform a whole input buffer according to the descriptor

        Raises:
            ProcessingError: bad input, unsupported operation or missing codec
        """

"""
Abstract base class for batch processors.
"""

from abc import ABC, abstractmethod


class BaseProcessor(ABC):
    """Abstract processor interface for batch ingestion jobs."""

    @abstractmethod
    def process(self, since_days: int | None = None) -> dict:
        """
        Process messages received in the last `since_days` days.

        Returns:
            Processing statistics dict
        """
        pass

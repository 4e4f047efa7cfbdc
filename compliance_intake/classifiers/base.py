"""
Abstract base class for task type classifiers.
"""

from abc import ABC, abstractmethod

from compliance_intake.core.models import TaskSpec


class BaseClassifier(ABC):
    """Abstract classifier interface."""

    @abstractmethod
    def classify(self, body: str) -> list[TaskSpec]:
        """
        Decide which compliance tasks a message body asks for.

        Args:
            body: Plain-text email body

        Returns:
            Tasks to open for each address in the message, at most one per type
        """
        pass

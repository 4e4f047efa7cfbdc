"""
Task type classifiers.

Uses the keyword rule table for all classification.
"""

from compliance_intake.classifiers.base import BaseClassifier
from compliance_intake.classifiers.keywords import KeywordTaskClassifier, classify_task_types


def get_classifier() -> BaseClassifier:
    """Get the classifier used by ingestion."""
    return KeywordTaskClassifier()


__all__ = [
    "BaseClassifier",
    "KeywordTaskClassifier",
    "classify_task_types",
    "get_classifier",
]

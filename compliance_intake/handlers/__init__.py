"""Per-address upsert of properties, tasks, contacts and emails."""

from .upsert import PropertyTaskUpserter, Normalizer

__all__ = ["PropertyTaskUpserter", "Normalizer"]

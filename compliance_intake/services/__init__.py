"""External services and pure parsing helpers."""

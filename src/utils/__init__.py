"""Utility modules."""

from src.utils.logger import bind_context, clear_context, get_logger
from src.utils.periodic import PeriodicTask

__all__ = [
    "bind_context",
    "clear_context",
    "get_logger",
    "PeriodicTask",
]

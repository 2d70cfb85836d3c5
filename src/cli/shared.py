"""Shared CLI helpers: console and logger."""

from rich.console import Console

from src.utils.logger import get_logger

console = Console()
logger = get_logger("change_relay.cli")

"""Core module for the Heirloom deployment ledger."""
from .config import Settings
from .database import Base, create_engine, create_session_factory
from .events import EventBus, EventType
from .logging import get_logger

__all__ = [
    "Settings",
    "Base",
    "create_engine",
    "create_session_factory",
    "EventBus",
    "EventType",
    "get_logger",
]

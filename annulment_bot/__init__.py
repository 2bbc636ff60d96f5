"""Slack bot that collects approvals for fine annulments and records them in a ledger."""

from .background import run_async  # noqa: F401
from .config import AppSettings, get_settings  # noqa: F401
from .db import get_engine  # noqa: F401
from .ledger import Ledger, PersistenceError  # noqa: F401
from .logging_config import configure_logging  # noqa: F401

__all__ = [
    "AppSettings",
    "get_settings",
    "run_async",
    "get_engine",
    "Ledger",
    "PersistenceError",
    "configure_logging",
]

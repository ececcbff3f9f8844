"""Storage and reporting for candidates and trades."""

from .base import TradeStore, PersistenceError
from .db import Database
from .journal import TradeJournal

__all__ = [
    'TradeStore',
    'PersistenceError',
    'Database',
    'TradeJournal',
]

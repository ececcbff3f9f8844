"""Persistence interface consumed by the pipeline."""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..core.types import ExecutedTrade, Opportunity, OpportunityStatus


class PersistenceError(Exception):
    """Raised when the store cannot be read or written."""
    pass


class TradeStore(ABC):
    """Storage for candidates and executed trades."""

    @abstractmethod
    async def connect(self):
        pass

    @abstractmethod
    async def disconnect(self):
        pass

    @abstractmethod
    async def save_candidate(self, candidate: Opportunity):
        pass

    @abstractmethod
    async def update_candidate_status(self, candidate_id: str, status: OpportunityStatus,
                                      reason: Optional[str] = None):
        pass

    @abstractmethod
    async def save_executed_trade(self, trade: ExecutedTrade):
        pass

    @abstractmethod
    async def load_recent_trades(self, window_ms: int, now: Optional[int] = None) -> List[ExecutedTrade]:
        pass

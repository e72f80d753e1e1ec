"""Account store interface consumed by the session layer."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..domain.models import (
    Alert,
    AlertCondition,
    HistoryItem,
    Role,
    TradeType,
    UserAccount,
)
from ..domain.valuation import TradeResult


class AccountStore(ABC):
    """
    Durable owner of user accounts.

    All operations are async and raise ``StoreError`` on failure.
    """

    @abstractmethod
    async def create_account(
        self,
        full_name: str,
        email: str,
        password: str,
        country: Optional[str] = None,
        institution: Optional[str] = None,
        role: Role = Role.USER,
    ) -> UserAccount:
        pass

    @abstractmethod
    async def authenticate(self, email: str, password: str) -> Optional[str]:
        """Return the account id for valid credentials, None otherwise."""
        pass

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[UserAccount]:
        pass

    @abstractmethod
    async def list_accounts(self) -> List[UserAccount]:
        pass

    @abstractmethod
    async def update_account(self, account_id: str, updates: Dict[str, Any]) -> UserAccount:
        """
        Apply a partial update atomically.

        Supported keys: ``full_name``, ``portfolio`` (cash and holdings;
        initial value is immutable), ``transactions`` (appended, never
        rewritten), ``watchlist`` (replaced).
        """
        pass

    @abstractmethod
    async def apply_trade(
        self,
        account_id: str,
        side: TradeType,
        ticker: str,
        exchange: str,
        shares: Any,
        price: Any,
        company_name: str = "",
    ) -> TradeResult:
        """
        Execute a buy or sell against the stored portfolio.

        The portfolio is re-read, the trade applied and the holdings change
        persisted together with its transaction in one unit, so concurrent
        trades on the same account serialize instead of overwriting each
        other.

        Raises:
            InsufficientFunds, InsufficientShares, ValidationError: trade rejected
            StoreError: storage failure or unknown account
        """
        pass

    @abstractmethod
    async def append_history(self, account_id: str, item: HistoryItem) -> HistoryItem:
        pass

    @abstractmethod
    async def clear_history(self, account_id: str) -> bool:
        pass

    @abstractmethod
    async def add_alert(
        self, account_id: str, metric_label: str, condition: AlertCondition, threshold: float
    ) -> Alert:
        pass

    @abstractmethod
    async def remove_alert(self, alert_id: str) -> bool:
        pass

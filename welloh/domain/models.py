"""Domain models for the trading simulator."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class TradeType(str, Enum):
    BUY = "buy"
    SELL = "sell"


class AlertCondition(str, Enum):
    GT = "gt"  # metric value > threshold
    LT = "lt"  # metric value < threshold


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Portfolio
# ============================================================================

@dataclass
class Holding:
    """Open position in one (ticker, exchange) pair."""
    ticker: str
    exchange: str
    company_name: str
    shares: int
    purchase_price: Decimal  # volume-weighted average cost
    current_value: Optional[Decimal] = None  # last known unit price

    @property
    def key(self) -> Tuple[str, str]:
        return (self.ticker, self.exchange)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "exchange": self.exchange,
            "company_name": self.company_name,
            "shares": self.shares,
            "purchase_price": str(self.purchase_price),
            "current_value": str(self.current_value) if self.current_value is not None else None,
        }


@dataclass
class Portfolio:
    """Cash plus ordered holdings. ``initial_value`` is fixed at signup."""
    cash: Decimal
    initial_value: Decimal
    holdings: List[Holding] = field(default_factory=list)

    def find(self, ticker: str, exchange: str) -> Optional[Holding]:
        for holding in self.holdings:
            if holding.ticker == ticker and holding.exchange == exchange:
                return holding
        return None

    def cost_basis_value(self) -> Decimal:
        """Cash plus holdings valued at their purchase price."""
        return self.cash + sum(
            (h.purchase_price * h.shares for h in self.holdings), Decimal("0")
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cash": str(self.cash),
            "initial_value": str(self.initial_value),
            "holdings": [h.to_dict() for h in self.holdings],
        }


@dataclass(frozen=True)
class Transaction:
    """Immutable entry of the append-only trade log."""
    id: str
    type: TradeType
    ticker: str
    exchange: str
    company_name: str
    shares: int
    price: Decimal
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "ticker": self.ticker,
            "exchange": self.exchange,
            "company_name": self.company_name,
            "shares": self.shares,
            "price": str(self.price),
            "timestamp": self.timestamp.isoformat(),
        }


# ============================================================================
# Watchlist, alerts, analysis history
# ============================================================================

@dataclass(frozen=True)
class WatchItem:
    ticker: str
    exchange: str

    def to_dict(self) -> Dict[str, Any]:
        return {"ticker": self.ticker, "exchange": self.exchange}


@dataclass(frozen=True)
class Alert:
    """One-shot threshold alert on an analysis metric."""
    id: str
    metric_label: str
    condition: AlertCondition
    threshold: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "metric_label": self.metric_label,
            "condition": self.condition.value,
            "threshold": self.threshold,
        }


@dataclass
class HistoryItem:
    """Saved AI analysis run."""
    id: str
    timestamp: datetime
    company_identifier: str
    currency: str
    analysis: Dict[str, Any]  # {"main": {...}, "comparison": {...} | None}
    news: List[Dict[str, Any]] = field(default_factory=list)
    comparison_identifier: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "company_identifier": self.company_identifier,
            "comparison_identifier": self.comparison_identifier,
            "currency": self.currency,
            "analysis": self.analysis,
            "news": self.news,
        }


# ============================================================================
# Accounts
# ============================================================================

@dataclass
class UserAccount:
    """Full account as owned by the account store."""
    id: str
    full_name: str
    email: str
    role: Role
    portfolio: Portfolio
    transactions: List[Transaction] = field(default_factory=list)
    watchlist: List[WatchItem] = field(default_factory=list)
    analysis_history: List[HistoryItem] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)
    country: Optional[str] = None
    institution: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def is_watching(self, ticker: str, exchange: str) -> bool:
        return WatchItem(ticker, exchange) in self.watchlist

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "role": self.role.value,
            "country": self.country,
            "institution": self.institution,
            "portfolio": self.portfolio.to_dict(),
            "transactions": [t.to_dict() for t in self.transactions],
            "watchlist": [w.to_dict() for w in self.watchlist],
            "analysis_history": [h.to_dict() for h in self.analysis_history],
            "alerts": [a.to_dict() for a in self.alerts],
        }

    def public_profile(self) -> Dict[str, Any]:
        """Profile view of another user: no email, history or alerts."""
        return {
            "id": self.id,
            "full_name": self.full_name,
            "role": self.role.value,
            "country": self.country,
            "institution": self.institution,
            "portfolio": self.portfolio.to_dict(),
            "transactions": [t.to_dict() for t in self.transactions],
        }

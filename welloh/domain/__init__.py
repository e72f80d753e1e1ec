"""Domain layer: models, valuation, levels, alerts and navigation."""

from .alerts import AlertEvaluation, TriggeredAlert, evaluate
from .levels import DEFAULT_TIERS, LevelClassifier, PromotionEvent, Tier
from .models import (
    Alert,
    AlertCondition,
    HistoryItem,
    Holding,
    Portfolio,
    Role,
    TradeType,
    Transaction,
    UserAccount,
    WatchItem,
)
from .valuation import RevaluedPortfolio, TradeResult, buy, revalue, revalue_many, sell

__all__ = [
    "Alert",
    "AlertCondition",
    "AlertEvaluation",
    "DEFAULT_TIERS",
    "HistoryItem",
    "Holding",
    "LevelClassifier",
    "Portfolio",
    "PromotionEvent",
    "RevaluedPortfolio",
    "Role",
    "Tier",
    "TradeResult",
    "TradeType",
    "Transaction",
    "TriggeredAlert",
    "UserAccount",
    "WatchItem",
    "buy",
    "evaluate",
    "revalue",
    "revalue_many",
    "sell",
]

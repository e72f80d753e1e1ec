"""Application services built on the domain layer."""

from .leaderboard_service import LeaderboardService, RankedAccount, rank_accounts
from .session import PortfolioSnapshot, SessionController, SessionStatus
from .settings_store import ChartSettings, ChartSettingsStore

__all__ = [
    "ChartSettings",
    "ChartSettingsStore",
    "LeaderboardService",
    "PortfolioSnapshot",
    "RankedAccount",
    "SessionController",
    "SessionStatus",
    "rank_accounts",
]

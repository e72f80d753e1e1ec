"""Leaderboard and admin overview over all accounts."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from ..db.base import AccountStore
from ..domain.levels import LevelClassifier, Tier
from ..domain.models import UserAccount
from ..domain.valuation import PriceLookup, RevaluedPortfolio, revalue_many
from ..errors import ValidationError

logger = logging.getLogger(__name__)

ADMIN_SORT_KEYS = {
    "rank": lambda r: r.rank,
    "full_name": lambda r: r.account.full_name.lower(),
    "email": lambda r: r.account.email.lower(),
    "institution": lambda r: (r.account.institution or "").lower(),
    "country": lambda r: (r.account.country or "").lower(),
    "total_value": lambda r: r.valuation.total_value,
    "gain_loss": lambda r: r.valuation.gain_loss,
    "return_percentage": lambda r: r.valuation.return_percentage,
    "level": lambda r: r.level.threshold,
}


@dataclass
class RankedAccount:
    rank: int
    account: UserAccount
    valuation: RevaluedPortfolio
    level: Tier

    @property
    def total_value(self) -> Decimal:
        return self.valuation.total_value

    def to_dict(self, include_email: bool = False) -> Dict[str, Any]:
        data = {
            "rank": self.rank,
            "id": self.account.id,
            "full_name": self.account.full_name,
            "country": self.account.country,
            "institution": self.account.institution,
            "total_value": str(self.valuation.total_value),
            "gain_loss": str(self.valuation.gain_loss),
            "return_percentage": str(self.valuation.return_percentage),
            "level": self.level.name,
        }
        if include_email:
            data["email"] = self.account.email
        return data


async def rank_accounts(
    accounts: Sequence[UserAccount],
    price_lookup: Optional[PriceLookup],
    classifier: Optional[LevelClassifier] = None,
) -> List[RankedAccount]:
    """
    Revalue non-admin accounts in one deduplicated batch and rank by total value.

    Ranks are 1..n in descending total value; ties keep store order.
    """
    classifier = classifier or LevelClassifier()
    players = [a for a in accounts if not a.is_admin]
    valuations = await revalue_many([a.portfolio for a in players], price_lookup)

    pairs = sorted(zip(players, valuations), key=lambda pair: pair[1].total_value, reverse=True)
    ranked = [
        RankedAccount(
            rank=index + 1,
            account=account,
            valuation=revalued,
            level=classifier.classify(revalued.total_value),
        )
        for index, (account, revalued) in enumerate(pairs)
    ]
    logger.info("Ranked %d accounts (%d admins excluded)", len(ranked), len(accounts) - len(players))
    return ranked


def sort_overview(
    rows: List[RankedAccount], sort_by: str = "rank", descending: bool = False
) -> List[RankedAccount]:
    key = ADMIN_SORT_KEYS.get(sort_by)
    if key is None:
        raise ValidationError(f"Unknown sort column: {sort_by}")
    return sorted(rows, key=key, reverse=descending)


class LeaderboardService:
    """Builds the public leaderboard and the admin overview from the store."""

    def __init__(
        self,
        store: AccountStore,
        price_lookup: Optional[PriceLookup] = None,
        classifier: Optional[LevelClassifier] = None,
    ):
        self.store = store
        self.price_lookup = price_lookup
        self.classifier = classifier or LevelClassifier()

    async def leaderboard(self) -> List[RankedAccount]:
        accounts = await self.store.list_accounts()
        return await rank_accounts(accounts, self.price_lookup, self.classifier)

    async def admin_overview(self, sort_by: str = "rank", descending: bool = False) -> List[RankedAccount]:
        rows = await self.leaderboard()
        return sort_overview(rows, sort_by, descending)

"""Progression tiers derived from total portfolio value."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from .parsing import to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tier:
    name: str
    threshold: Decimal

    def to_dict(self):
        return {"name": self.name, "threshold": str(self.threshold)}


@dataclass(frozen=True)
class PromotionEvent:
    """Upward tier transition, shown once to the user."""
    old_tier: Tier
    new_tier: Tier

    def to_dict(self):
        return {"old_level": self.old_tier.name, "new_level": self.new_tier.name}


DEFAULT_TIERS: Tuple[Tier, ...] = (
    Tier("Novice", Decimal("0")),
    Tier("Apprentice", Decimal("110000")),
    Tier("Trader", Decimal("150000")),
    Tier("Investor", Decimal("250000")),
    Tier("Maestro", Decimal("500000")),
)


class LevelClassifier:
    """Maps portfolio values onto an ascending tier table."""

    def __init__(self, tiers: Iterable[Tier] = DEFAULT_TIERS):
        ordered = tuple(sorted(tiers, key=lambda t: t.threshold))
        if not ordered:
            raise ValueError("At least one tier is required")
        self.tiers = ordered

    @classmethod
    def from_string(cls, text: Optional[str]) -> "LevelClassifier":
        """
        Build from a ``"Name:threshold,Name:threshold"`` string.

        Falls back to the default table when ``text`` is empty or malformed.
        """
        if not text:
            return cls()
        tiers = []
        for chunk in text.split(","):
            name, _, raw = chunk.partition(":")
            threshold = to_decimal(raw)
            if not name.strip() or threshold is None:
                logger.warning("Invalid level table %r, using default tiers", text)
                return cls()
            tiers.append(Tier(name.strip(), threshold))
        return cls(tiers)

    def classify(self, value) -> Tier:
        """Highest tier whose threshold is <= value; lowest tier otherwise."""
        value = to_decimal(value)
        if value is None:
            return self.tiers[0]
        current = self.tiers[0]
        for tier in self.tiers:
            if value >= tier.threshold:
                current = tier
            else:
                break
        return current

    def detect_promotion(self, old_value, new_value) -> Optional[PromotionEvent]:
        old_tier = self.classify(old_value)
        new_tier = self.classify(new_value)
        if new_tier.threshold > old_tier.threshold:
            return PromotionEvent(old_tier=old_tier, new_tier=new_tier)
        return None

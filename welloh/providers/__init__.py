"""External data providers."""

from .market import MarketService, OpenAIMarketService

__all__ = ["MarketService", "OpenAIMarketService"]

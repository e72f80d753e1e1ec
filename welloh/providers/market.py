"""
Market data and AI analysis provider.

Quotes, histories, analyses and editorial content are produced by an
OpenAI-compatible chat-completions endpoint. Every JSON answer goes through
``parse_payload`` before reaching the domain.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Optional, Type

import httpx
from pydantic import BaseModel

from ..cache import CacheInterface
from ..config import Config
from ..domain.parsing import normalize_ticker, to_price
from ..domain.schemas import (
    AnalysisEnvelope,
    HistoricalPricePoint,
    MarketIndex,
    ParseError,
    PublicTender,
    StockData,
    parse_list_payload,
    parse_payload,
)
from ..errors import LookupFailure, ValidationError
from ..http_client import post_json, stream_lines

logger = logging.getLogger(__name__)

JSON_ONLY = (
    "Answer with ONLY valid JSON, without any extra text or markdown formatting."
)


class MarketService(ABC):
    """Price lookup and analysis collaborator."""

    @abstractmethod
    async def get_quote(self, ticker: str) -> StockData:
        pass

    async def get_price(self, ticker: str) -> Decimal:
        """Current unit price; used as the valuation price lookup."""
        quote = await self.get_quote(ticker)
        return to_price(quote.price)

    @abstractmethod
    async def get_history(self, ticker: str) -> List[HistoricalPricePoint]:
        pass

    @abstractmethod
    async def search_symbols(self, query: str) -> List[StockData]:
        pass

    @abstractmethod
    async def get_analysis(self, identifier: str, currency: str) -> AnalysisEnvelope:
        pass

    async def get_comparison(
        self, identifier: str, comparison_identifier: str, currency: str
    ) -> Dict[str, AnalysisEnvelope]:
        """Analyse two companies concurrently; both must succeed."""
        main, comparison = await asyncio.gather(
            self.get_analysis(identifier, currency),
            self.get_analysis(comparison_identifier, currency),
        )
        return {"main": main, "comparison": comparison}

    @abstractmethod
    async def get_market_overview(self) -> List[MarketIndex]:
        pass

    @abstractmethod
    async def search_public_tenders(self, query: str) -> List[PublicTender]:
        pass

    @abstractmethod
    def stream_text(self, topic: str) -> AsyncIterator[str]:
        """Educational article on ``topic`` as markdown chunks."""
        pass

    @abstractmethod
    def stream_strategy(self, prompt: str) -> AsyncIterator[str]:
        pass


class OpenAIMarketService(MarketService):
    """
    Market service backed by an OpenAI-compatible chat-completions API.

    Features:
    - Semaphore-controlled concurrency shared with the rest of the app
    - Retry with exponential backoff (see ``http_client``)
    - TTL caching of quotes, histories and the market overview
    - Quota errors surfaced as ``RateLimited``
    """

    def __init__(
        self,
        config: Config,
        cache: CacheInterface,
        http_client: httpx.AsyncClient,
        semaphore: asyncio.Semaphore,
    ):
        self.config = config
        self.cache = cache
        self.http_client = http_client
        self.semaphore = semaphore

    @property
    def _url(self) -> str:
        return f"{self.config.openai_base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        if not self.config.openai_api_key:
            raise LookupFailure("The market service is not configured (missing OPENAI_API_KEY).")
        return {
            "Authorization": f"Bearer {self.config.openai_api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, prompt: str, model: Optional[str] = None, stream: bool = False) -> dict:
        payload = {
            "model": model or self.config.openai_model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0.2,
        }
        if stream:
            payload["stream"] = True
        return payload

    async def _complete(self, prompt: str, model: Optional[str] = None) -> str:
        data = await post_json(
            self.http_client,
            self._url,
            json=self._payload(prompt, model),
            headers=self._headers(),
            semaphore=self.semaphore,
            timeout=self.config.http_timeout,
            retries=self.config.max_retries,
            backoff_factor=self.config.retry_backoff_factor,
        )
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            logger.error("Unexpected completion shape: %s", exc)
            raise LookupFailure("The analysis service returned an unexpected response.") from exc

    async def _complete_json(
        self,
        prompt: str,
        model_cls: Type[BaseModel],
        many: bool = False,
        model: Optional[str] = None,
        what: str = "data",
    ):
        text = await self._complete(prompt, model)
        result = parse_list_payload(text, model_cls) if many else parse_payload(text, model_cls)
        if isinstance(result, ParseError):
            logger.warning("Could not parse %s: %s", what, result.message)
            raise LookupFailure(f"Could not retrieve {what}. The service returned an unexpected format.")
        return result.data

    @staticmethod
    def _ticker(ticker: str) -> str:
        normalized = normalize_ticker(ticker or "")
        if not normalized:
            raise ValidationError("Please enter a ticker.")
        return normalized

    # ==================== Quotes ====================

    async def get_quote(self, ticker: str) -> StockData:
        ticker = self._ticker(ticker)
        cache_key = f"quote:{ticker}"
        cached = self.cache.get(cache_key, ttl_seconds=self.config.quote_cache_ttl)
        if cached is not None:
            return cached

        prompt = (
            "Act as a real-time stock market data simulator. For the stock with ticker "
            f'"{ticker}", provide realistic market data based on the most recent public '
            f"information. {JSON_ONLY}\n"
            'Shape: {"companyName": string, "ticker": string, "exchange": string, '
            '"price": number, "change": number, "percentChange": string, "volume": string, '
            '"summary": string, "recommendation": "Acheter" | "Conserver" | "Vendre", '
            '"confidenceScore": number (0-100), "marketCap": string, "country": string}'
        )
        quote = await self._complete_json(prompt, StockData, what=f"the quote for {ticker}")
        self.cache.set(cache_key, quote)
        logger.info("Quote %s: %s", ticker, quote.price)
        return quote

    async def get_history(self, ticker: str) -> List[HistoricalPricePoint]:
        ticker = self._ticker(ticker)
        cache_key = f"history:{ticker}"
        cached = self.cache.get(cache_key, ttl_seconds=self.config.market_data_cache_ttl)
        if cached is not None:
            return cached

        prompt = (
            f'Act as a historical stock data simulator. For ticker "{ticker}", generate the '
            "closing prices of the last 30 days (today included), ordered from oldest to most "
            "recent, with realistic volatility. "
            f'{JSON_ONLY} Shape: [{{"date": "YYYY-MM-DD", "price": number}}]'
        )
        points = await self._complete_json(
            prompt, HistoricalPricePoint, many=True, what=f"the price history for {ticker}"
        )
        points.sort(key=lambda p: p.date)
        self.cache.set(cache_key, points)
        return points

    async def search_symbols(self, query: str) -> List[StockData]:
        query = (query or "").strip()
        if not query:
            return []
        prompt = (
            f'Act as a stock market data API. Based on the query "{query}", list up to 8 '
            f"relevant listed stocks. {JSON_ONLY} Shape: an array of objects with "
            '"companyName", "ticker", "exchange", "price" (number), "change" (number), '
            '"percentChange", "volume", "summary", "country".'
        )
        return await self._complete_json(
            prompt,
            StockData,
            many=True,
            model=self.config.openai_analysis_model,
            what="search results",
        )

    # ==================== Analysis ====================

    async def get_analysis(self, identifier: str, currency: str) -> AnalysisEnvelope:
        identifier = (identifier or "").strip()
        currency = (currency or "USD").strip().upper()
        if not identifier:
            raise ValidationError("Please enter a company name or ticker.")

        prompt = (
            "As an expert financial analyst, run an in-depth analysis of the company "
            f'identified by "{identifier}". {JSON_ONLY}\n'
            'The object has two keys, "analysis" and "news".\n'
            '"analysis": {"companyName": string, "ticker": string, "summary": string, '
            f'"keyMetrics": [{{"label": string, "value": string (e.g. "2.5T {currency}"), '
            '"change": string, "changeType": "positive" | "negative" | "neutral", '
            '"tooltip": string}], '
            '"projections": [3 items for the next 3 years: {"year": string, '
            f'"revenue": number (millions of {currency}), "profit": number}}], '
            '"strengths": [3-5 strings], "weaknesses": [3-5 strings], '
            '"recommendation": "Acheter" | "Conserver" | "Vendre", '
            '"confidenceScore": number (0-100)}\n'
            '"news": [3-5 recent articles: {"title": string, "uri": string}]\n'
            f"Financial figures must be expressed in {currency}."
        )
        envelope = await self._complete_json(
            prompt,
            AnalysisEnvelope,
            model=self.config.openai_analysis_model,
            what=f"the analysis for {identifier}",
        )
        logger.info(
            "Analysis %s: %s (%s)",
            identifier,
            envelope.analysis.recommendation,
            envelope.analysis.confidence_score,
        )
        return envelope

    async def get_market_overview(self) -> List[MarketIndex]:
        cached = self.cache.get("market_overview", ttl_seconds=self.config.market_data_cache_ttl)
        if cached is not None:
            return cached

        prompt = (
            "Give an overview of the main world stock indices (S&P 500, NASDAQ, CAC 40) and "
            "African indices (BRVM Composite, JSE All Share, NSE All Share - Nigeria). For each "
            "index give its name, current value, change in points, change in percent and a "
            f"change type ('positive', 'negative', 'neutral'). {JSON_ONLY} Shape: "
            '[{"name": string, "value": string, "change": string, "percentChange": string, '
            '"changeType": string}]'
        )
        indices = await self._complete_json(prompt, MarketIndex, many=True, what="the market overview")
        self.cache.set("market_overview", indices)
        return indices

    async def search_public_tenders(self, query: str) -> List[PublicTender]:
        query = (query or "").strip()
        if not query:
            raise ValidationError("Please enter a search query.")
        prompt = (
            f'Act as a public procurement database API. Based on the query "{query}", list '
            "relevant public tenders, focusing on African markets when the query is general. "
            f"{JSON_ONLY} Shape: an array of objects with "
            '"id", "title", "country", "sector", "issuingEntity", "summary", '
            '"deadline" (YYYY-MM-DD), "uri".'
        )
        return await self._complete_json(
            prompt,
            PublicTender,
            many=True,
            model=self.config.openai_analysis_model,
            what="public tenders",
        )

    # ==================== Streams ====================

    async def _stream(self, prompt: str) -> AsyncIterator[str]:
        async for line in stream_lines(
            self.http_client,
            self._url,
            json=self._payload(prompt, stream=True),
            headers=self._headers(),
            semaphore=self.semaphore,
            timeout=self.config.http_timeout,
        ):
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if data == "[DONE]":
                break
            try:
                chunk = json.loads(data)
                delta = chunk["choices"][0].get("delta", {}).get("content")
            except (ValueError, KeyError, IndexError, TypeError):
                logger.debug("Skipping malformed stream chunk: %r", data[:200])
                continue
            if delta:
                yield delta

    def stream_text(self, topic: str) -> AsyncIterator[str]:
        topic = (topic or "").strip()
        if not topic:
            raise ValidationError("Please choose a topic.")
        prompt = (
            "As an expert financial educator, write a clear and concise article on the "
            f'following topic: "{topic}". It must be well structured, easy to follow for '
            "beginners to intermediate readers, and formatted as Markdown with headings, "
            "bullet lists where useful and important terms in bold."
        )
        return self._stream(prompt)

    def stream_strategy(self, prompt: str) -> AsyncIterator[str]:
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValidationError("Please describe what you are looking for.")
        full_prompt = (
            "Act as an expert financial advisor and mentor. Produce a detailed investment "
            f'strategy or an instructive answer for the following request: "{prompt}". '
            "The answer must be well structured, informative and easy to understand. "
            "Use Markdown."
        )
        return self._stream(full_prompt)

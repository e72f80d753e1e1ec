"""
Validated shapes of AI-generated JSON.

Model output is never trusted into the domain directly: ``parse_payload``
strips markdown fences, decodes and validates, and returns either
``Ok(data)`` or ``ParseError``.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Generic, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

T = TypeVar("T")

Recommendation = Literal["Acheter", "Conserver", "Vendre"]
ChangeType = Literal["positive", "negative", "neutral"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Metric(_CamelModel):
    label: str
    value: str
    change: Optional[str] = None
    change_type: Optional[ChangeType] = None
    tooltip: Optional[str] = None


class Projection(_CamelModel):
    year: str
    revenue: float
    profit: float


class AnalysisData(_CamelModel):
    company_name: str
    ticker: str
    summary: str
    key_metrics: List[Metric] = Field(default_factory=list)
    projections: List[Projection] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    recommendation: Recommendation
    confidence_score: float = Field(ge=0, le=100)


class NewsArticle(_CamelModel):
    title: str
    uri: str


class AnalysisEnvelope(_CamelModel):
    analysis: AnalysisData
    news: List[NewsArticle] = Field(default_factory=list)


class StockData(_CamelModel):
    company_name: str
    ticker: str
    exchange: str
    price: float = Field(gt=0)
    change: float = 0.0
    percent_change: str = "0%"
    volume: str = ""
    summary: str = ""
    recommendation: Optional[Recommendation] = None
    confidence_score: Optional[float] = Field(default=None, ge=0, le=100)
    market_cap: Optional[str] = None
    country: Optional[str] = None


class HistoricalPricePoint(_CamelModel):
    date: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")
    price: float


class MarketIndex(_CamelModel):
    name: str
    value: str
    change: str
    percent_change: str
    change_type: ChangeType = "neutral"


class PublicTender(_CamelModel):
    id: str
    title: str
    country: str
    sector: str
    issuing_entity: str
    summary: str
    deadline: str
    uri: str


# ============================================================================
# Tagged parse result
# ============================================================================

@dataclass(frozen=True)
class Ok(Generic[T]):
    data: T


@dataclass(frozen=True)
class ParseError:
    message: str
    raw: str = ""


ParseResult = Union[Ok[Any], ParseError]


def clean_json_text(text: str) -> str:
    """Drop a surrounding ```json ... ``` (or bare ```) fence."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.find("\n")
        cleaned = cleaned[first_newline + 1:] if first_newline != -1 else cleaned[3:]
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return cleaned.strip()


def _decode(text: str) -> Union[Any, ParseError]:
    cleaned = clean_json_text(text)
    try:
        return json.loads(cleaned)
    except (json.JSONDecodeError, TypeError) as exc:
        return ParseError(f"Response is not valid JSON: {exc}", raw=text or "")


def parse_payload(text: str, model: Type[BaseModel]) -> ParseResult:
    decoded = _decode(text)
    if isinstance(decoded, ParseError):
        return decoded
    try:
        return Ok(model.model_validate(decoded))
    except PydanticValidationError as exc:
        logger.debug("Payload failed %s validation: %s", model.__name__, exc)
        return ParseError(f"Unexpected {model.__name__} format: {exc.error_count()} error(s)", raw=text)


def parse_list_payload(text: str, model: Type[BaseModel]) -> ParseResult:
    decoded = _decode(text)
    if isinstance(decoded, ParseError):
        return decoded
    if not isinstance(decoded, list):
        return ParseError(f"Expected a JSON array of {model.__name__}", raw=text)
    try:
        return Ok(TypeAdapter(List[model]).validate_python(decoded))
    except PydanticValidationError as exc:
        logger.debug("Payload failed list[%s] validation: %s", model.__name__, exc)
        return ParseError(f"Unexpected {model.__name__} list format: {exc.error_count()} error(s)", raw=text)

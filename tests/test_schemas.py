"""Tests for AI payload cleaning and validation."""

import json

from welloh.domain.schemas import (
    AnalysisEnvelope,
    HistoricalPricePoint,
    Ok,
    ParseError,
    StockData,
    clean_json_text,
    parse_list_payload,
    parse_payload,
)

ANALYSIS = {
    "analysis": {
        "companyName": "Apple Inc.",
        "ticker": "AAPL",
        "summary": "Consumer electronics.",
        "keyMetrics": [{"label": "P/E Ratio", "value": "25.3", "changeType": "positive"}],
        "projections": [{"year": "2027", "revenue": 400000, "profit": 100000}],
        "strengths": ["Brand"],
        "weaknesses": ["China exposure"],
        "recommendation": "Acheter",
        "confidenceScore": 80,
    },
    "news": [{"title": "Apple beats estimates", "uri": "https://example.com/apple"}],
}


def test_clean_json_fence_variants():
    assert clean_json_text('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert clean_json_text('```\n[1, 2]\n```') == "[1, 2]"
    assert clean_json_text('  {"a": 1}  ') == '{"a": 1}'


def test_parse_analysis_envelope_in_fence():
    text = "```json\n" + json.dumps(ANALYSIS) + "\n```"
    result = parse_payload(text, AnalysisEnvelope)

    assert isinstance(result, Ok)
    assert result.data.analysis.company_name == "Apple Inc."
    assert result.data.analysis.key_metrics[0].change_type == "positive"
    assert result.data.news[0].uri == "https://example.com/apple"
    dumped = result.data.analysis.model_dump(by_alias=True)
    assert dumped["confidenceScore"] == 80


def test_invalid_json_is_parse_error():
    result = parse_payload("Sorry, I cannot help with that.", AnalysisEnvelope)
    assert isinstance(result, ParseError)
    assert result.raw == "Sorry, I cannot help with that."


def test_unknown_recommendation_rejected():
    payload = json.loads(json.dumps(ANALYSIS))
    payload["analysis"]["recommendation"] = "Strong Buy"
    assert isinstance(parse_payload(json.dumps(payload), AnalysisEnvelope), ParseError)


def test_confidence_out_of_range_rejected():
    payload = json.loads(json.dumps(ANALYSIS))
    payload["analysis"]["confidenceScore"] = 140
    assert isinstance(parse_payload(json.dumps(payload), AnalysisEnvelope), ParseError)


def test_quote_price_must_be_positive():
    text = json.dumps({"companyName": "X", "ticker": "X", "exchange": "NYSE", "price": 0})
    assert isinstance(parse_payload(text, StockData), ParseError)


def test_parse_history_list():
    text = json.dumps([{"date": "2026-01-01", "price": 10.5}, {"date": "2026-01-02", "price": 11}])
    result = parse_list_payload(text, HistoricalPricePoint)
    assert isinstance(result, Ok)
    assert [p.price for p in result.data] == [10.5, 11.0]


def test_list_payload_requires_array():
    result = parse_list_payload(json.dumps({"date": "2026-01-01", "price": 1}), HistoricalPricePoint)
    assert isinstance(result, ParseError)


def test_bad_history_date_rejected():
    text = json.dumps([{"date": "01/02/2026", "price": 1}])
    assert isinstance(parse_list_payload(text, HistoricalPricePoint), ParseError)

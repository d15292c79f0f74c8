"""Tolerant decoding of raw model text into chat replies and query results.

The model is asked for a bare JSON object but routinely wraps it in prose or
markdown fences. We cut from the first `{` to the last `}` and try to decode
that slice. The cut is not brace-balance aware: a stray `}` after the object,
or braces inside string values of surrounding prose, can yield a bad slice.
Such replies degrade to plain text instead of raising.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any

from lifemanager.ai.intents import decode_intent
from lifemanager.ai.models import (
    CommandIntent,
    DataQueryResult,
    QueryDetail,
    QuickReply,
    TrendDirection,
)
from lifemanager.ai.schema import (
    INTENT_KEY,
    QUERY_DETAIL_KEYS,
    QUERY_RESULT_KEYS,
    SUGGESTIONS_KEY,
    TEXT_KEY,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParsedReply:
    text: str
    intent: CommandIntent | None
    suggestions: tuple[QuickReply, ...]


def extract_json(text: str) -> str:
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        return text[start : end + 1]
    return text


def _load_object(raw_text: str) -> dict[str, Any] | None:
    candidate = extract_json(raw_text)
    try:
        decoded = json.loads(candidate)
    except (ValueError, RecursionError):
        logger.debug("Model reply is not JSON (%d chars); using raw text", len(raw_text))
        return None

    if not isinstance(decoded, dict):
        logger.debug("Model reply decoded to %s, not an object", type(decoded).__name__)
        return None

    return decoded


def _string_items(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def parse_conversational_response(raw_text: str) -> ParsedReply:
    """Decode a chat reply; never raises."""
    payload = _load_object(raw_text)
    if payload is None:
        return ParsedReply(text=raw_text, intent=None, suggestions=())

    text = payload.get(TEXT_KEY)
    if not isinstance(text, str):
        text = raw_text

    suggestions = tuple(QuickReply(item) for item in _string_items(payload.get(SUGGESTIONS_KEY)))

    return ParsedReply(
        text=text,
        intent=decode_intent(payload.get(INTENT_KEY)),
        suggestions=suggestions,
    )


def _parse_detail(item: Any) -> QueryDetail | None:
    if not isinstance(item, dict):
        return None

    label_key, value_key, change_key, trend_key = QUERY_DETAIL_KEYS

    label = item.get(label_key)
    value = item.get(value_key)

    change = item.get(change_key)
    if isinstance(change, bool) or not isinstance(change, (int, float)) or not math.isfinite(change):
        change = None

    trend = None
    raw_trend = item.get(trend_key)
    if isinstance(raw_trend, str):
        try:
            trend = TrendDirection(raw_trend)
        except ValueError:
            trend = None

    return QueryDetail(
        label=label if isinstance(label, str) else "",
        value="" if value is None else str(value),
        change=float(change) if change is not None else None,
        trend=trend,
    )


def parse_query_result(raw_text: str) -> DataQueryResult:
    """Decode a query answer; undecodable text becomes `success=False`."""
    candidate = extract_json(raw_text)
    try:
        payload = json.loads(candidate)
    except (ValueError, RecursionError) as exc:
        logger.debug("Query reply is not JSON (%d chars)", len(raw_text))
        return DataQueryResult(success=False, query_type="", summary=f"解析失败: {exc}")

    if not isinstance(payload, dict):
        return DataQueryResult(success=False, query_type="", summary="解析失败")

    success_key, query_type_key, summary_key, details_key, suggestions_key = QUERY_RESULT_KEYS

    success = payload.get(success_key)
    query_type = payload.get(query_type_key)
    summary = payload.get(summary_key)

    raw_details = payload.get(details_key)
    details: list[QueryDetail] = []
    if isinstance(raw_details, list):
        for item in raw_details:
            detail = _parse_detail(item)
            if detail is not None:
                details.append(detail)

    return DataQueryResult(
        success=success if isinstance(success, bool) else True,
        query_type=query_type if isinstance(query_type, str) else "",
        summary=summary if isinstance(summary, str) else "",
        details=tuple(details),
        suggestions=tuple(_string_items(payload.get(suggestions_key))),
    )

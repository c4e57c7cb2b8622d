"""
Strict parsers for model output. Anything that does not match the expected shape
raises MalformedAnalysisResponse; nothing is guessed.
"""
from __future__ import annotations

import json
import re
from typing import Any

from assist.analysis.base import EscalationResult, SentimentResult
from assist.errors import MalformedAnalysisResponse
from assist.models import Sentiment

_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```\s*$")
_REASON_CHARS = re.compile(r"[^a-z0-9_]+")


def extract_json_object(kind: str, raw: str) -> dict[str, Any]:
    """Parse a JSON object from model text (may be wrapped in a markdown code block)."""
    text = (raw or "").strip()
    if text.startswith("```"):
        text = _FENCE_START.sub("", text)
        text = _FENCE_END.sub("", text)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # Models sometimes add a sentence around the object; take the outermost braces.
        start, end = text.find("{"), text.rfind("}")
        if start < 0 or end <= start:
            raise MalformedAnalysisResponse(kind, f"no JSON object in response: {text[:120]!r}")
        try:
            data = json.loads(text[start : end + 1])
        except json.JSONDecodeError as e:
            raise MalformedAnalysisResponse(kind, f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedAnalysisResponse(kind, f"expected JSON object, got {type(data).__name__}")
    return data


def _confidence(kind: str, value: Any) -> float:
    if isinstance(value, bool):
        raise MalformedAnalysisResponse(kind, "confidence must be a number")
    try:
        conf = float(value)
    except (TypeError, ValueError) as e:
        raise MalformedAnalysisResponse(kind, f"confidence is not a number: {value!r}") from e
    if conf != conf:  # NaN
        raise MalformedAnalysisResponse(kind, "confidence is NaN")
    return min(1.0, max(0.0, conf))


def parse_sentiment(raw: str) -> SentimentResult:
    data = extract_json_object("sentiment", raw)
    label = str(data.get("sentiment", "")).strip().lower()
    try:
        sentiment = Sentiment(label)
    except ValueError as e:
        raise MalformedAnalysisResponse("sentiment", f"unknown sentiment label {label!r}") from e
    if "confidence" not in data:
        raise MalformedAnalysisResponse("sentiment", "missing confidence")
    return SentimentResult(
        sentiment=sentiment,
        confidence=_confidence("sentiment", data["confidence"]),
        reasoning=str(data.get("reasoning", "") or ""),
    )


def _as_bool(kind: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise MalformedAnalysisResponse(kind, f"shouldEscalate is not a boolean: {value!r}")


def parse_escalation(raw: str) -> EscalationResult:
    data = extract_json_object("escalation", raw)
    if "shouldEscalate" not in data or "confidence" not in data:
        raise MalformedAnalysisResponse("escalation", "missing shouldEscalate or confidence")
    return EscalationResult(
        should_escalate=_as_bool("escalation", data["shouldEscalate"]),
        confidence=_confidence("escalation", data["confidence"]),
        reasoning=str(data.get("reasoning", "") or ""),
    )


def parse_call_reason(raw: str) -> str:
    """First line, lower-cased, reduced to a snake_case category."""
    text = (raw or "").strip().strip("`\"'").strip()
    first_line = text.splitlines()[0] if text else ""
    category = _REASON_CHARS.sub("_", first_line.strip().lower()).strip("_")
    if not category:
        raise MalformedAnalysisResponse("call_reason", "empty category")
    return category

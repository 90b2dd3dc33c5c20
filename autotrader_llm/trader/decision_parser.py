"""
Decision Parser: turns a free-form model response into structured trade decisions.

Handles:
- <think>...</think> reasoning blocks (stripped)
- Markdown code fences (```json ... ```)
- A JSON array, a single JSON object, or either embedded in surrounding prose
- Trailing commas before closing brackets
"""

import json
import logging
import math
import re
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

THINK_TAG_RE = re.compile(r'<think>.*?</think>', re.DOTALL)
TRAILING_COMMA_RE = re.compile(r',(\s*[}\]])')

ERROR_PREVIEW_CHARS = 200


class ParseError(ValueError):
    """No parsing strategy produced decisions; carries a bounded preview of the text"""

    def __init__(self, text: str):
        self.preview = text[:ERROR_PREVIEW_CHARS]
        super().__init__(f"failed to parse AI response as JSON: {self.preview}")


def _to_float(value: Any) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return result if math.isfinite(result) else 0.0


class TradeDecision(BaseModel):
    """
    One decision from the model.

    action is BUY, SELL or HOLD; anything else is kept as-is and treated as a
    no-op by the executor. A stop_loss/take_profit of 0 means "not given".
    """
    action: str = ""
    ticker: str = ""
    stop_loss: float = 0.0
    take_profit: float = 0.0
    confidence: int = Field(default=0, ge=0, le=100)
    reasoning: str = ""

    @field_validator('action', 'ticker', mode='before')
    @classmethod
    def normalize_code(cls, v):
        return str(v).strip().upper() if v is not None else ""

    @field_validator('reasoning', mode='before')
    @classmethod
    def coerce_text(cls, v):
        return str(v) if v is not None else ""

    @field_validator('stop_loss', 'take_profit', mode='before')
    @classmethod
    def coerce_price(cls, v):
        return max(0.0, _to_float(v))

    @field_validator('confidence', mode='before')
    @classmethod
    def coerce_confidence(cls, v):
        return max(0, min(100, int(_to_float(v))))

    @classmethod
    def from_raw(cls, raw: Any) -> "TradeDecision":
        """Build a decision from one decoded JSON element, never raising"""
        if not isinstance(raw, dict):
            logger.debug(f"Ignoring non-object decision element: {raw!r}")
            return cls()

        fields = {name: raw[name] for name in cls.model_fields if name in raw}
        return cls(**fields)


def strip_think_tags(text: str) -> str:
    """Remove reasoning blocks emitted by reasoning models"""
    return THINK_TAG_RE.sub('', text).strip()


def _strip_fences(text: str) -> str:
    if text.startswith("```json"):
        text = text[len("```json"):]
    elif text.startswith("```"):
        text = text[len("```"):]
    if text.endswith("```"):
        text = text[:-len("```")]
    return text.strip()


def _loads(text: str) -> Optional[Any]:
    """json.loads that also tolerates trailing commas; None when undecodable"""
    for candidate in (text, TRAILING_COMMA_RE.sub(r'\1', text)):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return None


def _decisions_from(value: Any, want: type) -> Optional[List[TradeDecision]]:
    if want is list and isinstance(value, list):
        return [TradeDecision.from_raw(item) for item in value]
    if want is dict and isinstance(value, dict):
        return [TradeDecision.from_raw(value)]
    return None


def parse_decisions(text: str) -> List[TradeDecision]:
    """
    Parse a model response into decisions.

    Strategies, first success wins: whole text as an array, whole text as
    one object, the span between the first '[' and last ']', the span
    between the first '{' and last '}'.

    Args:
        text: Raw model output

    Returns:
        Decisions in response order (empty for "" or "[]")

    Raises:
        ParseError: If no strategy yields decisions
    """
    cleaned = _strip_fences(strip_think_tags(text or ""))

    if cleaned in ("", "[]"):
        return []

    whole = _loads(cleaned)
    for want in (list, dict):
        decisions = _decisions_from(whole, want)
        if decisions is not None:
            return decisions

    for opener, closer, want in (('[', ']', list), ('{', '}', dict)):
        start = cleaned.find(opener)
        end = cleaned.rfind(closer)
        if start >= 0 and end > start:
            decisions = _decisions_from(_loads(cleaned[start:end + 1]), want)
            if decisions is not None:
                return decisions

    raise ParseError(cleaned)


def decisions_to_json(decisions: List[TradeDecision]) -> str:
    """Serialize decisions for the analysis log"""
    try:
        return json.dumps([d.model_dump() for d in decisions], ensure_ascii=False)
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to serialize decisions: {e}")
        return "[]"

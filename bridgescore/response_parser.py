"""
Validation of assistant replies.

Replies are untrusted text. Each parse function returns a tagged result,
``Ok(value)`` or ``Err(ResponseParseError)``, and never returns unvalidated
data; callers decide whether an ``Err`` is fatal.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar, Union

from pydantic import ValidationError

from .errors import ResponseParseError
from .schemas import BridgeStep, Coaching, ScoreColor, StepScore, color_for_credit, normalize_credit

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_NOTES = "No notes provided"
DEFAULT_REASONING = "No reasoning provided"
MAX_COACHING_ITEMS = 3


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: ResponseParseError

    @property
    def ok(self) -> bool:
        return False


ParseResult = Union[Ok[T], Err]


def extract_json_object(text: Optional[str]) -> Optional[str]:
    """Return the first balanced {...} span in text, or None.

    Braces inside JSON strings (including escaped quotes) are ignored.
    """
    if not text:
        return None

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def _load_object(raw: Optional[str]) -> Union[Dict[str, Any], ResponseParseError]:
    span = extract_json_object(raw)
    if span is None:
        return ResponseParseError("No JSON object found in assistant reply", raw_response=raw)
    try:
        data = json.loads(span)
    except json.JSONDecodeError as e:
        return ResponseParseError(f"Assistant reply is not valid JSON: {e}", raw_response=raw)
    if not isinstance(data, dict):
        return ResponseParseError("Assistant reply JSON is not an object", raw_response=raw)
    return data


def _text_field(data: Dict[str, Any], key: str, default: str) -> str:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, list):
        value = " ".join(str(item) for item in value if item)
    value = str(value).strip()
    return value or default


def parse_step_reply(raw: Optional[str], step: BridgeStep) -> ParseResult[StepScore]:
    """Validate a per-step reply of the form {credit, color, notes, reasoning}"""
    data = _load_object(raw)
    if isinstance(data, ResponseParseError):
        return Err(data)

    if "credit" not in data:
        return Err(ResponseParseError(f"Missing credit for step {step.key}", raw_response=raw))
    try:
        credit = normalize_credit(data["credit"])
    except ValueError as e:
        return Err(ResponseParseError(f"Invalid credit for step {step.key}: {e}", raw_response=raw))

    color_value = data.get("color")
    valid_colors = {c.value for c in ScoreColor}
    if not isinstance(color_value, str) or color_value not in valid_colors:
        return Err(ResponseParseError(f"Invalid color for step {step.key}: {color_value!r}", raw_response=raw))

    expected = color_for_credit(credit)
    if color_value != expected.value:
        logger.warning(f"Step {step.key}: color {color_value} disagrees with credit {credit}; using {expected.value}")

    return Ok(StepScore(
        step=step.key,
        step_name=step.name,
        weight=step.weight,
        credit=credit,
        color=expected,
        notes=_text_field(data, "notes", DEFAULT_NOTES),
        reasoning=_text_field(data, "reasoning", DEFAULT_REASONING),
    ))


def parse_coaching_reply(raw: Optional[str]) -> ParseResult[Coaching]:
    """Validate {thingsTheyDidWell: [...], areasForImprovement: [{area, howToImprove, bridgeStep}]}"""
    data = _load_object(raw)
    if isinstance(data, ResponseParseError):
        return Err(data)

    try:
        coaching = Coaching.model_validate(data)
    except ValidationError as e:
        return Err(ResponseParseError(f"Invalid coaching reply: {e.error_count()} validation errors", raw_response=raw))

    if not coaching.things_they_did_well or not coaching.areas_for_improvement:
        return Err(ResponseParseError("Coaching reply has empty strengths or improvement areas", raw_response=raw))

    return Ok(Coaching(
        things_they_did_well=coaching.things_they_did_well[:MAX_COACHING_ITEMS],
        areas_for_improvement=coaching.areas_for_improvement[:MAX_COACHING_ITEMS],
    ))

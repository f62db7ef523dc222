"""JSON extraction utilities for parsing model responses."""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from storyspec.utils.exceptions import JSONParseError

logger = logging.getLogger(__name__)

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)
_THINK_TAG = re.compile(r"</?think>")
_JSON_FENCE = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)
_ANY_FENCE = re.compile(r"```\s*(.*?)\s*```", re.DOTALL)


@dataclass
class ParseResult:
    """Result of a JSON extraction attempt with diagnostics."""

    data: dict[str, Any] | list[Any] | None = None
    success: bool = False
    strategy: str | None = None
    strategies_tried: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        """Allow ParseResult to be used in boolean context."""
        return self.success


def strip_reasoning(text: str) -> str:
    """Remove <think> reasoning blocks some local models emit before output."""
    text = _THINK_BLOCK.sub("", text)
    return _THINK_TAG.sub("", text)


def _try_parse_json(json_str: str) -> dict[str, Any] | list[Any] | None:
    try:
        parsed: dict[str, Any] | list[Any] = json.loads(json_str.strip())
        return parsed
    except json.JSONDecodeError as e:
        logger.debug("try_parse failed: %s (input preview: %.100s...)", e, json_str)
        return None


def _close_truncated(text: str) -> dict[str, Any] | list[Any] | None:
    """Close unbalanced braces and brackets left by a truncated response.

    Walks the text once tracking string context so braces inside string
    values are not counted.
    """
    stack: list[str] = []
    in_string = False
    escape_next = False
    for char in text:
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack:
            stack.pop()

    repaired = text.rstrip(",: \n\t")
    if in_string:
        repaired += '"'
    repaired += "".join(reversed(stack))
    return _try_parse_json(repaired)


def extract_json_with_info(response: str) -> ParseResult:
    """Extract JSON from a response, recording which strategy succeeded.

    Strategies, in order: ```json fence, bare ``` fence, outermost object,
    outermost array, truncated-JSON repair.

    Args:
        response: The model response text.

    Returns:
        ParseResult with the parsed data when any strategy succeeded.
    """
    result = ParseResult()
    text = strip_reasoning(response)

    candidates: list[tuple[str, str | None]] = []
    json_match = _JSON_FENCE.search(text)
    candidates.append(("json_fence", json_match.group(1) if json_match else None))
    code_match = _ANY_FENCE.search(text)
    candidates.append(("code_fence", code_match.group(1) if code_match else None))
    obj_match = re.search(r"(\{[\s\S]*\})", text)
    candidates.append(("raw_object", obj_match.group(1) if obj_match else None))
    arr_match = re.search(r"(\[[\s\S]*\])", text)
    candidates.append(("raw_array", arr_match.group(1) if arr_match else None))

    for strategy, candidate in candidates:
        if candidate is None:
            continue
        result.strategies_tried.append(strategy)
        parsed = _try_parse_json(candidate)
        if parsed is not None:
            result.data = parsed
            result.success = True
            result.strategy = strategy
            return result

    stripped = text.strip()
    if stripped.startswith(("{", "[")):
        result.strategies_tried.append("truncation_repair")
        parsed = _close_truncated(stripped)
        if parsed is not None:
            logger.warning("Repaired truncated JSON response (%d chars)", len(stripped))
            result.data = parsed
            result.success = True
            result.strategy = "truncation_repair"

    return result


def extract_json(response: str, strict: bool = True) -> dict[str, Any] | list[Any] | None:
    """Extract a JSON object or array from a model response.

    Args:
        response: The model response text.
        strict: If True, raise JSONParseError on failure; otherwise return None.

    Returns:
        Parsed JSON (dict or list), or None when strict is False and nothing parsed.

    Raises:
        JSONParseError: If strict is True and no valid JSON could be extracted.
    """
    result = extract_json_with_info(response)
    if result.success:
        return result.data

    error_msg = f"No valid JSON found in response. Response preview: {response[:200]}..."
    if strict:
        logger.error(error_msg)
        raise JSONParseError(
            error_msg,
            response_preview=response[:500],
            expected_type="dict or list",
        )
    logger.debug(error_msg)
    return None


def parse_json_to_model[T: BaseModel](
    response: str,
    model_class: type[T],
    strict: bool = True,
) -> T | None:
    """Extract JSON from a response and validate it into a pydantic model.

    Args:
        response: The model response text.
        model_class: The pydantic model class to validate into.
        strict: If True, raise JSONParseError on failure; otherwise return None.

    Returns:
        Instance of model_class, or None only if strict is False and parsing fails.

    Raises:
        JSONParseError: If strict is True and extraction or validation fails.
    """
    data = extract_json(response, strict=strict)
    if data is None:
        return None

    if isinstance(data, list):
        error_msg = f"Expected JSON object for {model_class.__name__}, got a list"
        if strict:
            logger.error(error_msg)
            raise JSONParseError(
                error_msg,
                response_preview=response[:500],
                expected_type=model_class.__name__,
            )
        return None

    try:
        return model_class.model_validate(data)
    except PydanticValidationError as e:
        error_msg = f"Failed to create {model_class.__name__}: {e.error_count()} validation errors"
        if strict:
            logger.error("%s: %s", error_msg, e)
            raise JSONParseError(
                error_msg,
                response_preview=response[:500],
                expected_type=model_class.__name__,
            ) from e
        logger.debug(error_msg)
        return None

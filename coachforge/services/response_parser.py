"""Parse and repair raw generation-service output into JSON data.

Strict parsing is always attempted first. When it fails the text goes through
one repair pass (fence/prose stripping, trailing commas, double encoding,
truncation recovery). Repaired results are flagged low-confidence; anything
that still does not parse raises GenerationUnparseable.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from coachforge.core.errors import GenerationUnparseable

logger = logging.getLogger(__name__)

CLEAN_CONFIDENCE = 1.0
REPAIRED_CONFIDENCE = 0.6

_FENCE_BLOCK_RE = re.compile(r"^[ \t]*```[\w-]*[ \t]*\n(.*?)\n[ \t]*```[ \t]*$", re.MULTILINE | re.DOTALL)
_OPEN_FENCE_RE = re.compile(r"^\s*```[\w-]*[ \t]*\n")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_PARTIAL_LITERAL_RE = re.compile(r"[A-Za-z]+$")
_CLOSERS = {"{": "}", "[": "]"}
_MAX_CANDIDATES = 16


@dataclass
class ParsedResponse:
    data: Any
    repaired: bool = False
    repairs: List[str] = field(default_factory=list)

    @property
    def confidence(self) -> float:
        return REPAIRED_CONFIDENCE if self.repaired else CLEAN_CONFIDENCE


def parse_generation_output(raw: Any, *, step: Optional[str] = None) -> ParsedResponse:
    """Turn generation output (already-structured data or raw text) into a ParsedResponse."""
    if isinstance(raw, (dict, list)):
        data, decoded = _decode_nested_strings(raw)
        return ParsedResponse(data=data, repaired=decoded, repairs=["double_encoded_properties"] if decoded else [])
    if not isinstance(raw, str) or not raw.strip():
        raise GenerationUnparseable("Generation service returned an empty response", step=step)

    text = raw.strip()
    strict = _try_parse(text)
    if strict is not None:
        data, decoded = _unwrap_double_encoding(strict)
        return ParsedResponse(data=data, repaired=decoded, repairs=["double_encoded"] if decoded else [])

    unfenced = strip_code_fences(text)
    wrapper = ["stripped_wrapper"] if unfenced != text else []
    candidates = container_candidates(unfenced) or [unfenced]

    for candidate in candidates:
        parsed = _try_parse(candidate)
        if parsed is not None:
            data, decoded = _unwrap_double_encoding(parsed)
            repairs = wrapper + (["double_encoded"] if decoded else [])
            # Fence stripping alone is not a content repair.
            return ParsedResponse(data=data, repaired=decoded, repairs=repairs)

    for candidate in candidates:
        repaired = _repair(candidate)
        if repaired is not None:
            data, decoded = _unwrap_double_encoding(repaired[0])
            repairs = wrapper + repaired[1] + (["double_encoded"] if decoded else [])
            logger.info("Repaired generation output (step=%s, repairs=%s)", step, ",".join(repairs))
            return ParsedResponse(data=data, repaired=True, repairs=repairs)

    logger.warning("Unrecoverable generation output (step=%s, length=%s)", step, len(text))
    raise GenerationUnparseable("Generation output could not be parsed after repair", step=step, raw_excerpt=text)


def _repair(text: str) -> Optional[Tuple[Any, List[str]]]:
    repairs: List[str] = []
    fixed = remove_trailing_commas(text)
    if fixed != text:
        repairs.append("trailing_commas")
    parsed = _try_parse(fixed)
    if parsed is None:
        balanced = drop_unmatched_closers(fixed)
        if balanced != fixed:
            repairs.append("unmatched_closers")
            fixed = remove_trailing_commas(balanced)
            parsed = _try_parse(fixed)
    if parsed is None:
        closed = close_truncated_json(fixed)
        if closed != fixed:
            repairs.append("truncation_recovery")
        parsed = _try_parse(closed)
    if parsed is None:
        return None
    return parsed, repairs


def strip_code_fences(text: str) -> str:
    """Return the body of a markdown fence block; text inside JSON strings is left alone."""
    block = _FENCE_BLOCK_RE.search(text)
    if block:
        return block.group(1).strip()
    # Truncated output can lose its closing fence.
    return _OPEN_FENCE_RE.sub("", text, count=1).strip()


def clean_response(text: str) -> str:
    """Remove markdown fences and any prose around the first JSON container."""
    stripped = strip_code_fences(text)
    candidates = container_candidates(stripped)
    return candidates[0] if candidates else stripped


def container_candidates(text: str) -> List[str]:
    """Top-level `{`/`[` slices in order, each cut at its balancing close when there is one."""
    candidates: List[str] = []
    start = 0
    while len(candidates) < _MAX_CANDIDATES:
        positions = [pos for pos in (text.find("{", start), text.find("[", start)) if pos != -1]
        if not positions:
            break
        start = min(positions)
        end = _matching_close_index(text, start)
        if end is None:
            candidates.append(text[start:])
            break
        candidates.append(text[start : end + 1])
        start = end + 1
    return candidates


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def drop_unmatched_closers(text: str) -> str:
    """Remove `}`/`]` characters that do not close the innermost open container."""
    _, _, strays = _scan(text)
    if not strays:
        return text
    skip = set(strays)
    return "".join(char for index, char in enumerate(text) if index not in skip)


def close_truncated_json(text: str) -> str:
    """Drop any partial trailing token, then close open containers innermost first."""
    stack, string_start, _ = _scan(text)
    candidate = text
    if string_start is not None:
        candidate = candidate[:string_start]
    candidate = _trim_dangling(candidate)
    stack, string_start, _ = _scan(candidate)
    if string_start is not None:
        return candidate
    return candidate + "".join(_CLOSERS[opener] for opener in reversed(stack))


def _trim_dangling(text: str) -> str:
    candidate = text.rstrip()
    while candidate:
        if candidate.endswith(","):
            candidate = candidate[:-1].rstrip()
            continue
        if candidate.endswith(":"):
            candidate = _drop_trailing_key(candidate[:-1].rstrip())
            continue
        literal = _PARTIAL_LITERAL_RE.search(candidate)
        if literal and literal.group(0) not in {"true", "false", "null"}:
            candidate = candidate[: literal.start()].rstrip()
            continue
        break
    return candidate


def _drop_trailing_key(text: str) -> str:
    if not text.endswith('"'):
        return text
    index = len(text) - 2
    while index >= 0:
        if text[index] == '"' and (index == 0 or text[index - 1] != "\\"):
            return text[:index].rstrip()
        index -= 1
    return text


def _scan(text: str) -> Tuple[List[str], Optional[int], List[int]]:
    """Return open containers, the start of an unterminated string, and unmatched closer positions."""
    stack: List[str] = []
    strays: List[int] = []
    in_string = False
    escaped = False
    string_start: Optional[int] = None
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
                string_start = None
            continue
        if char == '"':
            in_string = True
            string_start = index
        elif char in _CLOSERS:
            stack.append(char)
        elif char in ("}", "]"):
            if stack and _CLOSERS[stack[-1]] == char:
                stack.pop()
            else:
                strays.append(index)
    return stack, string_start if in_string else None, strays


def _matching_close_index(text: str, start: int) -> Optional[int]:
    stack: List[str] = []
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(char)
        elif char in ("}", "]") and stack and _CLOSERS[stack[-1]] == char:
            stack.pop()
            if not stack:
                return index
    return None


def _try_parse(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def _unwrap_double_encoding(value: Any) -> Tuple[Any, bool]:
    decoded = False
    if isinstance(value, str):
        inner = _try_parse(value.strip())
        if isinstance(inner, (dict, list)):
            value = inner
            decoded = True
    nested_value, nested_decoded = _decode_nested_strings(value)
    return nested_value, decoded or nested_decoded


def _decode_nested_strings(value: Any) -> Tuple[Any, bool]:
    """Decode object properties whose values are JSON documents serialized as strings."""
    if isinstance(value, dict):
        changed = False
        result = {}
        for key, item in value.items():
            if isinstance(item, str) and item.strip()[:1] in ("{", "["):
                inner = _try_parse(item.strip())
                if isinstance(inner, (dict, list)):
                    item = inner
                    changed = True
            item, nested = _decode_nested_strings(item)
            result[key] = item
            changed = changed or nested
        return result, changed
    if isinstance(value, list):
        changed = False
        items = []
        for item in value:
            item, nested = _decode_nested_strings(item)
            items.append(item)
            changed = changed or nested
        return items, changed
    return value, False

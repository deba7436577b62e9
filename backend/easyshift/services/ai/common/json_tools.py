"""Recovery of JSON objects from raw LLM output.

Each repair is an independent pass over text so it can be tested on its own:
fence strip, outer-object slice, trailing-comma removal, bare-key quoting and
truncated-array trimming. ``recover`` chains them and checks the shape.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from .errors import ExtractionParseError

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 500

_OPENING_FENCE = re.compile(r"^\s*```[\w-]*[ \t]*\n?")
_CLOSING_FENCE = re.compile(r"\n?[ \t]*```\s*$")
_BARE_KEY = re.compile(r"(\s*)([A-Za-z_]\w*)(\s*):")
_CLOSERS = {"{": "}", "[": "]"}


def _preview(text: str) -> str:
    return text[:PREVIEW_CHARS]


def strip_code_fences(text: str) -> str:
    """Drop a wrapping markdown code fence, with or without a language tag."""
    stripped = text.strip()
    stripped = _OPENING_FENCE.sub("", stripped, count=1)
    stripped = _CLOSING_FENCE.sub("", stripped, count=1)
    return stripped.strip()


def extract_outer_object(text: str) -> str:
    """Slice from the first ``{`` to the last ``}``, discarding surrounding prose.

    An object that never closes is returned from its opening brace to the end
    so the truncation pass can still repair it.
    """
    first = text.find("{")
    if first == -1:
        raise ExtractionParseError(
            ExtractionParseError.NO_STRUCTURE,
            "No JSON structure found in response",
            preview=_preview(text),
        )
    last = text.rfind("}")
    if last < first:
        return text[first:]
    return text[first : last + 1]


def remove_trailing_commas(text: str) -> str:
    """Remove commas that directly precede ``}`` or ``]`` outside string literals."""
    out: list[str] = []
    in_string = False
    escape = False
    length = len(text)

    for i, ch in enumerate(text):
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
            continue

        if ch == ",":
            j = i + 1
            while j < length and text[j].isspace():
                j += 1
            if j < length and text[j] in "}]":
                continue
        out.append(ch)

    return "".join(out)


def quote_bare_keys(text: str) -> str:
    """Quote identifier keys written without quotes, e.g. ``{vendor: "X"}``."""
    out: list[str] = []
    in_string = False
    escape = False
    i = 0
    length = len(text)

    while i < length:
        ch = text[i]
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
            continue

        out.append(ch)
        i += 1
        if ch in "{,":
            match = _BARE_KEY.match(text, i)
            if match:
                leading, key, trailing = match.groups()
                out.append(f'{leading}"{key}"{trailing}')
                i = match.end() - 1  # leave the colon for the main loop
    return "".join(out)


def _open_brackets(text: str, end: int) -> list[str]:
    """Stack of brackets still open at ``text[:end]``, ignoring string contents."""
    stack: list[str] = []
    in_string = False
    escape = False
    for ch in text[:end]:
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in "}]" and stack:
            stack.pop()
    return stack


def trim_truncated_array(text: str, list_field: str) -> str:
    """Cut an unterminated ``list_field`` array back to its last complete element.

    The array and every bracket enclosing it are re-closed. Text whose array is
    already terminated is returned unchanged. Braces inside string literals do
    not count towards nesting.
    """
    match = re.search(r'"%s"\s*:\s*\[' % re.escape(list_field), text)
    if not match:
        return text

    prefix_stack = _open_brackets(text, match.start())
    array_start = match.end()
    stack: list[str] = ["["]
    in_string = False
    escape = False
    last_complete = array_start

    for i in range(array_start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in "}]":
            stack.pop()
            if not stack:
                return text
            if len(stack) == 1:
                last_complete = i + 1

    closers = "]" + "".join(_CLOSERS[opener] for opener in reversed(prefix_stack))
    trimmed = text[:last_complete].rstrip().rstrip(",") + closers
    logger.warning(
        "Trimmed truncated %r array at char %d of %d",
        list_field,
        last_complete,
        len(text),
    )
    return trimmed


def _non_finite_to_null(name: str) -> None:
    # NaN and Infinity are not JSON; JSONB columns reject them in the archived reply.
    logger.warning("Replaced non-finite literal %s with null", name)
    return None


def recover(raw_text: str, list_field: str) -> dict[str, Any]:
    """Repair and parse *raw_text*, requiring a non-empty ``list_field`` list.

    Raises ``ExtractionParseError`` with reason ``no_structure``, ``wrong_shape``
    or ``empty_result``.
    """
    if not raw_text or not raw_text.strip():
        raise ExtractionParseError(
            ExtractionParseError.NO_STRUCTURE, "Empty response", preview=""
        )

    text = strip_code_fences(raw_text)
    text = extract_outer_object(text)
    text = remove_trailing_commas(text)
    text = quote_bare_keys(text)
    text = trim_truncated_array(text, list_field)

    try:
        parsed = json.loads(text, parse_constant=_non_finite_to_null)
    except ValueError as exc:
        raise ExtractionParseError(
            ExtractionParseError.NO_STRUCTURE,
            f"Invalid JSON after repair: {exc}",
            preview=_preview(raw_text),
        ) from exc

    if not isinstance(parsed, dict):
        raise ExtractionParseError(
            ExtractionParseError.WRONG_SHAPE,
            "Top-level JSON value is not an object",
            preview=_preview(raw_text),
        )

    records = parsed.get(list_field)
    if not isinstance(records, list):
        raise ExtractionParseError(
            ExtractionParseError.WRONG_SHAPE,
            f"Invalid JSON structure: missing or invalid {list_field} array",
            preview=_preview(raw_text),
        )
    if not records:
        raise ExtractionParseError(
            ExtractionParseError.EMPTY_RESULT,
            f"No {list_field} found in response",
            preview=_preview(raw_text),
        )
    return parsed

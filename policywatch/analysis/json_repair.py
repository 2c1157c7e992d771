"""
Parsing of model output that is supposed to be JSON but often is not quite.

Order of attempts: direct decode, decode of the content of a markdown code
fence, then a repair pass for output cut off mid-object (token limit).
"""
import json
import logging
import re
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL)
_DANGLING_KEY_RE = re.compile(r'"(?:[^"\\]|\\.)*"\s*:\s*$')


def strip_code_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    # Opening fence without a closing one (truncated response)
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
    return stripped.strip()


def repair_truncated_json(text: str) -> Optional[Any]:
    """
    Close a JSON document that was cut off part-way.

    Drops a trailing unterminated string (and its key, if it was a value),
    a trailing key still waiting for its colon, and trailing separators, then
    appends the missing closers in nesting order.
    Returns the decoded value, or None when the text is not recoverable.
    """
    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return None
    text = text[min(starts):]

    stack = []
    in_string = False
    escape = False
    string_start = -1
    string_ends = {}
    for i, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
                string_ends[i] = string_start
            continue
        if ch == '"':
            in_string = True
            string_start = i
        elif ch in "{[":
            stack.append(ch)
        elif ch in "}]" and stack:
            stack.pop()

    if not stack:
        return None

    body = text[:string_start] if in_string else text
    while True:
        body = body.rstrip()
        if body.endswith(","):
            body = body[:-1]
            continue
        if body.endswith(":"):
            trimmed = _DANGLING_KEY_RE.sub("", body)
            if trimmed == body:
                return None
            body = trimmed
            continue
        if stack[-1] == "{" and body.endswith('"'):
            # A complete key with no colon yet
            start = string_ends.get(len(body) - 1)
            if start is not None and body[:start].rstrip().endswith(("{", ",")):
                body = body[:start]
                continue
        break

    closers = "".join("}" if opener == "{" else "]" for opener in reversed(stack))
    try:
        return json.loads(body + closers)
    except json.JSONDecodeError:
        return None


def parse_model_json(text: Optional[str]) -> Tuple[Optional[Any], bool]:
    """
    Decode model output. Returns ``(data, repaired)``; ``data`` is None when
    nothing could be decoded. ``repaired`` marks a lower-confidence result.
    """
    if not text or not text.strip():
        return None, False

    try:
        return json.loads(text.strip()), False
    except json.JSONDecodeError:
        pass

    unfenced = strip_code_fences(text)
    try:
        return json.loads(unfenced), False
    except json.JSONDecodeError:
        pass

    repaired = repair_truncated_json(unfenced)
    if repaired is not None:
        logger.info("Recovered truncated JSON response via repair pass")
        return repaired, True
    return None, False

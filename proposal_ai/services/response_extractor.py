"""
Response Extractor
Recovers a structured object from free-text model output that was asked to be JSON.

The cascade is an ordered list of pure strategies. Each strategy either returns
a dict or raises ParseError; the first success wins. When every strategy fails
a sentinel dict is returned, so callers always receive an object and never see
an exception.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from proposal_ai.core.exceptions import ParseError

logger = logging.getLogger(__name__)

MAX_CONTENT_PREVIEW = 2000

_FENCE_RE = re.compile(r"```(?:json|JSON)?")
_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```", re.IGNORECASE)
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_QUESTIONS_ARRAY_RE = re.compile(r'"questions"\s*:\s*(\[[\s\S]*\])')

Strategy = Callable[[str], Dict[str, Any]]


def _strip_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing brace or bracket, outside string literals"""
    out = []
    in_string = False
    escape = False
    i = 0
    n = len(text)
    while i < n:
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
        elif ch == ",":
            j = i + 1
            while j < n and text[j] in " \t\r\n":
                j += 1
            if j < n and text[j] in "}]":
                i += 1
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def sanitize(text: str) -> str:
    """
    Clean model output before parsing:
    strip markdown fences, keep the span from the first '{' to the last '}',
    remove control characters (newlines and tabs survive) and trailing commas.
    """
    cleaned = _FENCE_RE.sub("", text)

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        cleaned = cleaned[start:end + 1]

    cleaned = _CONTROL_CHARS_RE.sub("", cleaned)
    cleaned = _strip_trailing_commas(cleaned)
    return cleaned.strip()


def _parse_object(text: str, stage: str, strict: bool = False) -> Dict[str, Any]:
    try:
        value = json.loads(text, strict=strict)
    except (ValueError, TypeError, RecursionError) as e:
        raise ParseError(f"{stage}: {e}", stage=stage)
    if not isinstance(value, dict):
        raise ParseError(f"{stage}: parsed value is {type(value).__name__}, not an object", stage=stage)
    return value


def _balanced_objects(text: str) -> List[str]:
    """
    Outermost balanced {...} spans, honouring braces inside string literals.

    Single pass with a stack of open-brace positions. Braces that never close
    are dropped, so objects nested inside them still count as outermost.
    """
    closed: List[Tuple[int, int]] = []
    stack: List[int] = []
    in_string = False
    escape = False
    for j, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            # Quotes only delimit strings inside an object
            in_string = bool(stack)
        elif ch == "{":
            stack.append(j)
        elif ch == "}" and stack:
            start = stack.pop()
            # Spans close in order, so any span inside this one is at the tail
            while closed and closed[-1][0] > start:
                closed.pop()
            closed.append((start, j))
    return [text[start:end + 1] for start, end in closed]


# ── Strategies ────────────────────────────────────────────────────────

def sanitize_then_parse(text: str) -> Dict[str, Any]:
    return _parse_object(sanitize(text), "sanitize")


def code_block(text: str) -> Dict[str, Any]:
    match = _CODE_BLOCK_RE.search(text)
    if not match:
        raise ParseError("code_block: no fenced block found", stage="code_block")
    return _parse_object(sanitize(match.group(1)), "code_block")


def largest_brace_match(text: str) -> Dict[str, Any]:
    spans = _balanced_objects(text)
    if not spans:
        raise ParseError("largest_brace: no balanced object found", stage="largest_brace")
    longest = max(spans, key=len)
    return _parse_object(sanitize(longest), "largest_brace")


def raw_parse(text: str) -> Dict[str, Any]:
    return _parse_object(text, "raw", strict=True)


STRATEGIES: List[Tuple[str, Strategy]] = [
    ("sanitize", sanitize_then_parse),
    ("code_block", code_block),
    ("largest_brace", largest_brace_match),
    ("raw", raw_parse),
]


def parse_error_sentinel(text: str, error_message: str) -> Dict[str, Any]:
    """Terminal fallback carrying the failure plus a minimal default shape"""
    try:
        sanitized = sanitize(text)
    except Exception:
        sanitized = ""
    return {
        "parse_error": True,
        "error_message": error_message,
        "original_content": text[:MAX_CONTENT_PREVIEW],
        "sanitized_content": sanitized[:MAX_CONTENT_PREVIEW],
        "title": "",
        "summary": "",
        "sections": [],
    }


def is_parse_error(value: Any) -> bool:
    return isinstance(value, dict) and value.get("parse_error") is True


def extract(text: Any, strategies: Optional[List[Tuple[str, Strategy]]] = None) -> Dict[str, Any]:
    """Best-effort structured object from model output. Never raises."""
    if not isinstance(text, str):
        text = "" if text is None else str(text)

    last_error = "empty response"
    for name, strategy in strategies or STRATEGIES:
        try:
            result = strategy(text)
            if name != "sanitize":
                logger.info(f"[EXTRACTOR] Recovered JSON with '{name}' strategy")
            return result
        except ParseError as e:
            last_error = e.message
        except Exception as e:
            # A strategy bug must not escape the extractor
            logger.warning(f"[EXTRACTOR] Strategy '{name}' crashed: {e}")
            last_error = str(e)

    logger.warning(f"[EXTRACTOR] All strategies failed ({last_error}); returning sentinel. Length={len(text)}")
    return parse_error_sentinel(text, last_error)


def extract_double_encoded(text: Any) -> Dict[str, Any]:
    """Handle a payload that was JSON-serialized twice, then fall back to extract()"""
    if not isinstance(text, str):
        return extract(text)

    try:
        decoded = json.loads(text)
    except (ValueError, TypeError, RecursionError):
        return extract(text)

    if isinstance(decoded, dict):
        return decoded

    if isinstance(decoded, str):
        try:
            inner = json.loads(decoded)
            if isinstance(inner, dict):
                logger.info("[EXTRACTOR] Unwrapped double-encoded JSON")
                return inner
        except (ValueError, TypeError, RecursionError):
            pass
        return extract(decoded)

    return extract(text)


# ── Question payloads ─────────────────────────────────────────────────

_TYPE_ALIASES = {
    "text": "text",
    "short_text": "text",
    "textarea": "textarea",
    "long_text": "textarea",
    "select": "select",
    "radio": "select",
    "single_choice": "select",
    "multiselect": "multiselect",
    "checkbox": "multiselect",
    "multiple_choice": "multiselect",
    "number": "number",
    "numeric": "number",
}


def _normalize_question(raw: Dict[str, Any]) -> Dict[str, Any]:
    question_type = str(raw.get("expectedFormat") or raw.get("type") or "textarea").lower()
    priority = str(raw.get("priority") or "medium").lower()
    confidence = raw.get("confidenceScore", raw.get("confidence"))
    try:
        confidence = float(confidence) if confidence is not None else 0.8
    except (TypeError, ValueError):
        confidence = 0.8

    options = raw.get("options")
    if not isinstance(options, list):
        options = None
    else:
        options = [str(o) for o in options]

    return {
        "category": str(raw.get("category") or "General"),
        "text": str(raw.get("question") or raw.get("text") or "").strip(),
        "type": _TYPE_ALIASES.get(question_type, "textarea"),
        "options": options,
        "required": bool(raw.get("required", False)),
        "helpText": str(raw.get("context") or raw.get("helpText") or ""),
        "priority": priority if priority in ("high", "medium", "low") else "medium",
        "confidence": max(0.0, min(1.0, confidence)),
    }


def extract_questions(text: Any) -> List[Dict[str, Any]]:
    """
    Normalized question dicts from a model response.
    Returns an empty list when nothing usable is found.
    """
    if not isinstance(text, str):
        text = "" if text is None else str(text)
    cleaned = _FENCE_RE.sub("", text).strip()

    items: Any = None
    parsed = extract(cleaned)
    if not is_parse_error(parsed) and isinstance(parsed.get("questions"), list):
        items = parsed["questions"]
    else:
        match = _QUESTIONS_ARRAY_RE.search(cleaned)
        if match:
            try:
                items = json.loads(_strip_trailing_commas(match.group(1)), strict=False)
                logger.info("[EXTRACTOR] Recovered bare questions array")
            except (ValueError, RecursionError) as e:
                logger.warning(f"[EXTRACTOR] questions array did not parse: {e}")
        if items is None:
            try:
                candidate = json.loads(_strip_trailing_commas(cleaned), strict=False)
                if isinstance(candidate, list):
                    items = candidate
            except (ValueError, RecursionError):
                pass

    if not isinstance(items, list):
        logger.warning(f"[EXTRACTOR] No questions array found (length={len(text)})")
        return []

    questions = [
        _normalize_question(item) for item in items if isinstance(item, dict)
    ]
    questions = [q for q in questions if q["text"]]
    logger.info(f"[EXTRACTOR] Parsed {len(questions)} questions")
    return questions

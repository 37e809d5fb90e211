# =============================================================================
# Response Decoder — Remote Agent Payload Normalisation
# =============================================================================
#
# Every stage endpoint answers with `{"result": ...}`, but the shape of
# `result` drifts between agents and agent versions:
#
#   {"result": {"summary": "...", "recommendations": [...]}}   → structure
#   {"result": "{\"summary\": \"...\"}"}                          → JSON text
#   {"result": "The plan covers ..."}                             → plain text
#   {"result": {"evaluator": "Evaluation(company=CompanyMatch(...), ...)"}}
#
# The last form is a Python repr of the agent's output objects, flattened
# to text. It is NOT JSON. `decode_record()` parses it into nested dicts.
#
# CONTRACT: decoding never raises. The worst case is a DecodedResult whose
# only field is the raw text (opaque=True), or one carrying just `error`.
# Parse failures are logged at warning level and absorbed here.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# Field under which opaque (non-structured) text is preserved
TEXT_FIELD = "text"

# Stage 5 nests its evaluator record under this key
EVALUATOR_FIELD = "evaluator"

# Known sub-records are keyed by their type, whatever field (if any) holds
# them. These keys are always present in a decoded evaluator (None when
# missing).
SUB_RECORD_ALIASES: dict[str, str] = {
    "CompanyMatch": "company",
    "MarketSummary": "market",
}

_RECORD_RE = re.compile(r"^\s*([A-Za-z_]\w*)\s*\(", re.DOTALL)
_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")

_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {")", "]", "}"}
_QUOTES = {"'", '"'}


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class DecodedResult:
    """
    Canonical result of one stage call.

    `fields` holds primitives, lists and nested dicts. `error` is set only
    when the remote agent itself reported a failure. `opaque` marks results
    that could only be kept as raw text under `fields["text"]`.
    """

    fields: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    opaque: bool = False

    @classmethod
    def from_text(cls, text: str) -> DecodedResult:
        return cls(fields={TEXT_FIELD: text}, opaque=True)

    @property
    def text(self) -> str | None:
        value = self.fields.get(TEXT_FIELD)
        return value if isinstance(value, str) else None

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def as_payload(self) -> Any:
        """
        Value forwarded to later stages in their request bodies.

        Opaque results go back as the original string; structured results
        go back as their field mapping, with `error` re-attached so the
        downstream agent sees what the upstream one reported.
        """
        if self.opaque and self.error is None:
            return self.fields.get(TEXT_FIELD, "")
        payload = dict(self.fields)
        if self.error is not None:
            payload["error"] = self.error
        return payload

    def to_dict(self) -> dict[str, Any]:
        return {"fields": self.fields, "error": self.error, "opaque": self.opaque}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def decode_response(body: Any) -> DecodedResult:
    """
    Normalise a raw response body into a DecodedResult.

    Args:
        body: The parsed JSON body (usually a dict), or the raw response
            text when the HTTP body was not valid JSON.

    Returns:
        A DecodedResult. Never raises.
    """
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")

    if isinstance(body, str):
        parsed = _try_json(body)
        if parsed is _NOT_JSON:
            return DecodedResult.from_text(body)
        body = parsed

    if not isinstance(body, dict):
        return _from_value(body)

    top_level_error = _error_text(body.get("error"))

    if "result" in body:
        result = _from_value(body["result"])
    else:
        rest = {k: v for k, v in body.items() if k != "error"}
        result = _from_value(rest)

    if result.error is None and top_level_error is not None:
        result.error = top_level_error
    return result


def decode_record(text: str) -> dict[str, Any]:
    """
    Parse a flattened repr such as::

        Evaluation(company=CompanyMatch(product_id='P1', current_price=120000),
                   benefits_to_add=['X', 'Y'], note=None)

    into ``{"company": {"product_id": "P1", "current_price": "120000"},
    "benefits_to_add": ["X", "Y"], "note": None}``.

    Unquoted tokens stay strings, `None` becomes None, `[...]` becomes a
    list, nested `Name(...)` becomes a dict. Missing closing parens are
    tolerated (the record runs to the end of the text).
    """
    name, inner = _split_record(text)
    fields = _parse_fields(inner)
    if name in SUB_RECORD_ALIASES:
        return {SUB_RECORD_ALIASES[name]: fields}
    return fields


def decode_evaluator(value: Any) -> Any:
    """
    Decode the stage-5 evaluator value.

    Dicts pass through, repr text is parsed with decode_record(). Either
    way the known sub-record keys are present afterwards. Text that does
    not look like a record is returned unchanged.
    """
    if isinstance(value, str):
        parsed_json = _try_json(value)
        if isinstance(parsed_json, dict):
            value = parsed_json
        elif "(" in value or "=" in value:
            value = decode_record(value)
        else:
            logger.warning(
                "Evaluator is not a record, keeping raw text: '%s'", value[:80],
            )
            return value

    if not isinstance(value, dict):
        return value

    decoded = dict(value)
    for alias in SUB_RECORD_ALIASES.values():
        decoded.setdefault(alias, None)
    return decoded


# ---------------------------------------------------------------------------
# Internal Helpers — result shapes
# ---------------------------------------------------------------------------

_NOT_JSON = object()


def _try_json(text: str) -> Any:
    stripped = text.strip()
    if not stripped:
        return _NOT_JSON
    try:
        return json.loads(stripped)
    except ValueError as e:
        # Plain prose is expected here; only log things that looked like JSON
        if stripped[0] in "{[\"":
            logger.warning("Malformed JSON payload, keeping raw text: %s", e)
        return _NOT_JSON


def _from_value(value: Any) -> DecodedResult:
    """Turn the `result` value (any JSON type) into a DecodedResult."""
    if value is None:
        return DecodedResult()

    if isinstance(value, str):
        parsed = _try_json(value)
        if parsed is _NOT_JSON or isinstance(parsed, str):
            return DecodedResult.from_text(
                value if parsed is _NOT_JSON else parsed
            )
        value = parsed

    if isinstance(value, dict):
        fields = dict(value)
        error = _error_text(fields.pop("error", None))
        if EVALUATOR_FIELD in fields:
            fields[EVALUATOR_FIELD] = decode_evaluator(fields[EVALUATOR_FIELD])
        return DecodedResult(fields=fields, error=error)

    if isinstance(value, list):
        return DecodedResult(fields={"items": value})

    return DecodedResult(fields={"value": value})


def _error_text(value: Any) -> str | None:
    if value is None or value == "" or value is False:
        return None
    if isinstance(value, dict):
        return str(value.get("message") or value.get("detail") or value)
    return str(value)


# ---------------------------------------------------------------------------
# Internal Helpers — record scanner
# ---------------------------------------------------------------------------


def _split_record(text: str) -> tuple[str | None, str]:
    """Return (TypeName, inner text) for `TypeName(...)`, else (None, text)."""
    match = _RECORD_RE.match(text)
    if not match:
        return None, text.strip()

    start = match.end()
    end = _find_closing(text, start - 1)
    if end is None:
        logger.warning(
            "Unbalanced record '%s', reading to end of text", match.group(1),
        )
        return match.group(1), text[start:].rstrip().rstrip(")")
    return match.group(1), text[start:end]


def _find_closing(text: str, open_index: int) -> int | None:
    """Index of the bracket closing the one at open_index, or None."""
    depth = 0
    quote: str | None = None
    i = open_index
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in _QUOTES:
            quote = ch
        elif ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return None


def _split_top_level(text: str) -> list[str]:
    """Split on commas that are outside quotes and brackets."""
    parts: list[str] = []
    depth = 0
    quote: str | None = None
    current: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            current.append(ch)
            if ch == "\\" and i + 1 < len(text):
                current.append(text[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in _QUOTES:
            quote = ch
            current.append(ch)
        elif ch in _OPENERS:
            depth += 1
            current.append(ch)
        elif ch in _CLOSERS:
            depth = max(0, depth - 1)
            current.append(ch)
        elif ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def _parse_fields(inner: str) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for part in _split_top_level(inner):
        key, sep, raw = part.partition("=")
        key = key.strip()
        if sep and key.isidentifier():
            type_name, _ = _split_record(raw.strip())
            if type_name in SUB_RECORD_ALIASES:
                key = SUB_RECORD_ALIASES[type_name]
            fields[key] = _parse_value(raw)
            continue

        # Positional sub-record: CompanyMatch(...) without `company=`
        name, _ = _split_record(part)
        if name is not None:
            fields[_alias_for(name)] = _parse_value(part)
        else:
            logger.debug("Skipping unnamed record segment: '%s'", part[:40])
    return fields


def _parse_value(raw: str) -> Any:
    value = raw.strip()
    if value == "None":
        return None
    if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
        return _unescape(value[1:-1])
    if value.startswith("["):
        return _parse_list(value)
    if _RECORD_RE.match(value):
        _, inner = _split_record(value)
        return _parse_fields(inner)
    return value


def _parse_list(value: str) -> list[Any]:
    end = _find_closing(value, 0)
    inner = value[1:end] if end is not None else value[1:].rstrip("]")
    items: list[Any] = []
    for element in _split_top_level(inner):
        if element == "None":
            items.append(None)
        elif _RECORD_RE.match(element):
            _, record_inner = _split_record(element)
            items.append(_parse_fields(record_inner))
        else:
            items.append(element.strip("'\""))
    return items


def _unescape(text: str) -> str:
    return text.replace("\\'", "'").replace('\\"', '"').replace("\\n", "\n")


def _alias_for(type_name: str) -> str:
    return SUB_RECORD_ALIASES.get(
        type_name, _CAMEL_RE.sub("_", type_name).lower(),
    )

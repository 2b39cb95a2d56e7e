"""
Inbound email payload normalizer.

Turns an arbitrary inbound webhook body into a RawEmailFields tuple
(from / to / subject / text / html). Providers disagree wildly on shape, so
the body is run through an ordered list of strategies and the first one that
yields from, to and subject wins:

  1. string body:        JSON-decoded when possible, otherwise kept as text
  2. nested message:     {"event-data": {"message": {"headers": {...}}}}
  3. recipient object:   {"recipient": ..., "sender": ..., "body-plain": ...}
  4. simple object:      {"from": ..., "to": ..., "subject": ..., "text": ...}
                         (keys matched case-insensitively, so PascalCase
                         payloads like {"From", "To", "TextBody"} work too)
  5. array / array-like: a list, or a dict whose keys are mostly numeric
                         strings (a serialized array transported as an
                         object). Small arrays are scanned for an email
                         object; massive ones are sampled.
  6. regex fallback:     the body is serialized (bounded) and searched for
                         from/to/subject/body patterns, filling whatever the
                         structured strategies left empty.

normalize_payload() never raises and never validates: it returns its best
effort and the caller decides whether the result is complete enough.

Cost is bounded independent of payload size: massive arrays are sampled in
fixed windows, full-array scans are only done below a hard element ceiling,
and serialization for regex matching is lazy and capped.
"""

import json
import logging
import re
from dataclasses import replace
from typing import Any, Callable, Iterable, Optional

from app.models.inbound_email import RawEmailFields

logger = logging.getLogger(__name__)

# Arrays at or below this size are scanned element by element.
MAX_SCANNED_ELEMENTS = 1000

# Massive arrays: number of elements sampled at the start, middle and end.
SAMPLE_WINDOW = 100

# Massive arrays below this size may be serialized in full once when
# sampling finds nothing. Larger arrays never are.
FULL_SCAN_ELEMENT_CEILING = 10_000
FULL_SCAN_CHAR_LIMIT = 500_000

# Regex fallback looks at no more than this many serialized characters.
REGEX_SCAN_CHAR_LIMIT = 50_000

# A dict is array-like when at least this share of its keys are numeric.
ARRAY_LIKE_KEY_RATIO = 0.5

# Double-encoded JSON strings are unwrapped at most this many times.
MAX_JSON_UNWRAP = 3

_EMAIL_KEYS = ("from", "to", "subject", "sender", "recipient")

_TEXT_KEYS = ("body-plain", "stripped-text", "body", "text")
_HTML_KEYS = ("body-html", "stripped-html", "html")

# Longer digit strings are not indices and would overflow int() parsing.
_NUMERIC_KEY_RE = re.compile(r"^\d{1,9}$")

_ENCODER = json.JSONEncoder(ensure_ascii=False, default=str)

# ---------------------------------------------------------------------------
# Regex patterns (tried in order, first match per field wins)
# ---------------------------------------------------------------------------

_JSON_STRING = r'"((?:[^"\\]|\\.)*)"'
# Parts are length-bounded so a failed match at one label costs a fixed amount.
_ADDRESS = r"([^\s\"'<>,;]{1,64}@[^\s\"'<>,;]{1,255})"
_DISPLAY_NAME = r"(?:[^\n<]{0,128}<)?"


def _json_key(name: str) -> re.Pattern:
    return re.compile(r'"' + re.escape(name) + r'"\s*:\s*' + _JSON_STRING, re.IGNORECASE)


def _label(name: str, value: str) -> re.Pattern:
    return re.compile(r"\b" + re.escape(name) + r":\s*" + value, re.IGNORECASE)


_FROM_PATTERNS = [
    _json_key("from"),
    _json_key("sender"),
    _label("from", _DISPLAY_NAME + _ADDRESS),
    _label("sender", _DISPLAY_NAME + _ADDRESS),
]
_TO_PATTERNS = [
    _json_key("to"),
    _json_key("recipient"),
    _label("to", _DISPLAY_NAME + _ADDRESS),
    _label("recipient", _DISPLAY_NAME + _ADDRESS),
]
_SUBJECT_PATTERNS = [
    _json_key("subject"),
    _label("subject", r"([^\r\n\"]+)"),
]
_TEXT_PATTERNS = [_json_key(key) for key in _TEXT_KEYS]
_HTML_PATTERNS = [_json_key(key) for key in _HTML_KEYS]


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def _as_text(value: Any) -> str:
    """
    Coerce a payload value to a string.

    Lists yield their first usable entry (recipient lists), address objects
    like {"email": ..., "name": ...} yield the address.
    """
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        for item in value:
            text = _as_text(item)
            if text:
                return text
        return ""
    if isinstance(value, dict):
        for key in ("email", "address", "Email", "Address"):
            if key in value:
                return _as_text(value[key])
    return ""


def _get(obj: dict, *names: str) -> str:
    """First non-empty value among names, matching keys case-insensitively."""
    lowered: Optional[dict] = None
    for name in names:
        if name in obj:
            text = _as_text(obj[name])
            if text:
                return text
            continue
        if lowered is None:
            lowered = {}
            for key, value in obj.items():
                if isinstance(key, str):
                    lowered.setdefault(key.lower(), value)
        if name.lower() in lowered:
            text = _as_text(lowered[name.lower()])
            if text:
                return text
    return ""


def _has_any_key(obj: dict, names: Iterable[str]) -> bool:
    return any(_get(obj, name) for name in names)


def _try_json(value: str) -> Any:
    """json.loads that returns None instead of raising."""
    try:
        return json.loads(value)
    except (ValueError, RecursionError):
        return None


def _unescape_json_string(raw: str) -> str:
    decoded = _try_json('"' + raw + '"')
    return decoded if isinstance(decoded, str) else raw


def _bounded_dump(value: Any, limit: int) -> str:
    """
    Serialize value as JSON text, stopping after `limit` characters.

    iterencode() yields chunks lazily, so a massive payload is never fully
    serialized just to look at its head.
    """
    if isinstance(value, str):
        return value[:limit]

    chunks: list[str] = []
    size = 0
    try:
        for chunk in _ENCODER.iterencode(value):
            chunks.append(chunk)
            size += len(chunk)
            if size >= limit:
                break
    except (ValueError, TypeError, RecursionError) as exc:
        logger.debug(f"Partial serialization of payload stopped: {exc}")
    return "".join(chunks)[:limit]


def _merge(base: RawEmailFields, extra: Optional[RawEmailFields]) -> RawEmailFields:
    """Fill the empty fields of base from extra. Non-empty fields are kept."""
    if extra is None:
        return base
    return replace(
        base,
        sender_email=base.sender_email or extra.sender_email,
        recipient_email=base.recipient_email or extra.recipient_email,
        subject=base.subject or extra.subject,
        text=base.text or extra.text,
        html=base.html or extra.html,
    )


# ---------------------------------------------------------------------------
# Strategy 1: string body
# ---------------------------------------------------------------------------

def decode_body(body: Any) -> Any:
    """
    Decode bytes and JSON-encoded strings.

    Returns the parsed JSON value when the body is JSON text, otherwise the
    original string. Double-encoded JSON ('"{\\"from\\": ...}"') is unwrapped.
    """
    if isinstance(body, (bytes, bytearray)):
        body = bytes(body).decode("utf-8", errors="replace")

    for _ in range(MAX_JSON_UNWRAP):
        if not isinstance(body, str):
            break
        stripped = body.strip()
        if not stripped:
            break
        parsed = _try_json(stripped)
        if parsed is None:
            break
        body = parsed
    return body


# ---------------------------------------------------------------------------
# Strategies 2-4: object shapes
# ---------------------------------------------------------------------------

def match_nested_message(body: Any) -> Optional[RawEmailFields]:
    """{"event-data": {"message": {"headers": {from, to, subject}, "body-plain": ...}}}"""
    if not isinstance(body, dict):
        return None
    event_data = body.get("event-data")
    if not isinstance(event_data, dict):
        return None
    message = event_data.get("message")
    if not isinstance(message, dict):
        return None

    headers = message.get("headers")
    if not isinstance(headers, dict):
        headers = {}

    return RawEmailFields(
        sender_email=_get(headers, "from") or _get(message, "from"),
        recipient_email=_get(headers, "to") or _get(message, "to"),
        subject=_get(headers, "subject") or _get(message, "subject"),
        text=_get(message, "body-plain", "stripped-text", "body"),
        html=_get(message, "body-html", "stripped-html"),
    )


def match_recipient_object(body: Any) -> Optional[RawEmailFields]:
    """Flat route payload: {"recipient", "sender", "subject", "body-plain", ...}"""
    if not isinstance(body, dict) or not _get(body, "recipient"):
        return None

    return RawEmailFields(
        sender_email=_get(body, "sender", "from"),
        recipient_email=_get(body, "recipient", "to"),
        subject=_get(body, "subject"),
        text=_get(body, "body-plain", "stripped-text", "body", "text"),
        html=_get(body, "body-html", "stripped-html", "html"),
    )


def match_simple_object(body: Any) -> Optional[RawEmailFields]:
    """{"from", "to", "subject", "text", "html"}, any key casing."""
    if not isinstance(body, dict):
        return None
    if not (_get(body, "from") or _get(body, "to") or _get(body, "subject")):
        return None

    return RawEmailFields(
        sender_email=_get(body, "from"),
        recipient_email=_get(body, "to"),
        subject=_get(body, "subject"),
        text=_get(body, "text", "body-plain", "stripped-text", "TextBody"),
        html=_get(body, "html", "body-html", "stripped-html", "HtmlBody"),
    )


Strategy = Callable[[Any], Optional[RawEmailFields]]

_OBJECT_STRATEGIES: list[tuple[str, Strategy]] = [
    ("nested message", match_nested_message),
    ("recipient object", match_recipient_object),
    ("simple object", match_simple_object),
]


def run_strategies(
    strategies: list[tuple[str, Strategy]],
    body: Any,
) -> Optional[RawEmailFields]:
    """
    Apply strategies in order and return the first complete candidate.

    Incomplete candidates are merged field by field, earlier strategies
    taking precedence. None when no strategy applied to the body at all.
    """
    candidate: Optional[RawEmailFields] = None
    for name, strategy in strategies:
        found = strategy(body)
        if found is None:
            continue
        if found.is_complete():
            logger.info(f"Email fields extracted with {name} strategy")
            return found
        candidate = _merge(candidate or RawEmailFields(), found)
    return candidate


def match_object(body: Any) -> Optional[RawEmailFields]:
    """Strategies 2-4 on a single object."""
    return run_strategies(_OBJECT_STRATEGIES, body)


# ---------------------------------------------------------------------------
# Strategy 5: arrays and array-like objects
# ---------------------------------------------------------------------------

def is_array_like(body: Any) -> bool:
    """True for a non-empty dict whose keys are at least 50% numeric strings."""
    if not isinstance(body, dict) or not body:
        return False
    numeric = sum(1 for key in body if isinstance(key, str) and _NUMERIC_KEY_RE.match(key))
    return numeric / len(body) >= ARRAY_LIKE_KEY_RATIO


def array_elements(body: Any) -> Optional[list]:
    """Elements of a list, or the numeric-keyed values of an array-like dict in index order."""
    if isinstance(body, list):
        return body
    if is_array_like(body):
        numeric_keys = [
            key for key in body if isinstance(key, str) and _NUMERIC_KEY_RE.match(key)
        ]
        return [body[key] for key in sorted(numeric_keys, key=int)]
    return None


def _looks_like_email_object(value: Any) -> bool:
    return isinstance(value, dict) and _has_any_key(value, _EMAIL_KEYS)


def find_email_object(elements: list) -> Optional[dict]:
    """First element (or JSON-encoded string element) carrying email keys."""
    for element in elements:
        if _looks_like_email_object(element):
            return element
        if isinstance(element, str):
            parsed = _try_json(element)
            if _looks_like_email_object(parsed):
                return parsed
    return None


def sample_indices(length: int, window: int = SAMPLE_WINDOW) -> list[int]:
    """
    Indices of the start, middle and end sampling windows, in order, without
    duplicates. Offsets outside these windows are never inspected.
    """
    middle_start = max(0, length // 2 - window // 2)
    ranges = [
        range(0, min(window, length)),
        range(middle_start, min(middle_start + window, length)),
        range(max(0, length - window), length),
    ]
    seen: set[int] = set()
    indices: list[int] = []
    for index_range in ranges:
        for index in index_range:
            if index not in seen:
                seen.add(index)
                indices.append(index)
    return indices


def _fields_from_headers_object(element: dict) -> Optional[RawEmailFields]:
    """Header objects at element["headers"], element["message"]["headers"], or the element itself."""
    header_sources: list[dict] = []
    headers = element.get("headers")
    if isinstance(headers, dict):
        header_sources.append(headers)
    message = element.get("message")
    if isinstance(message, dict) and isinstance(message.get("headers"), dict):
        header_sources.append(message["headers"])

    candidate = RawEmailFields()
    for headers in header_sources:
        candidate = _merge(candidate, RawEmailFields(
            sender_email=_get(headers, "from", "sender"),
            recipient_email=_get(headers, "to", "recipient"),
            subject=_get(headers, "subject"),
        ))

    direct = match_object(element)
    if direct is not None:
        candidate = _merge(candidate, direct)

    if isinstance(message, dict):
        candidate = _merge(candidate, RawEmailFields(
            text=_get(message, *_TEXT_KEYS),
            html=_get(message, *_HTML_KEYS),
        ))

    return candidate if candidate != RawEmailFields() else None


def extract_from_element(element: Any) -> Optional[RawEmailFields]:
    """Pull whatever email fields a single sampled array element carries."""
    if isinstance(element, dict):
        return _fields_from_headers_object(element)
    if isinstance(element, str):
        parsed = _try_json(element)
        if isinstance(parsed, dict):
            return _fields_from_headers_object(parsed)
        return _match_address_patterns(element)
    return None


def _match_address_patterns(text: str) -> Optional[RawEmailFields]:
    """Raw-string patterns; from/to only count when they hold an address with '@'."""
    sender = _first_match(_FROM_PATTERNS, text)
    recipient = _first_match(_TO_PATTERNS, text)
    candidate = RawEmailFields(
        sender_email=sender if "@" in sender else "",
        recipient_email=recipient if "@" in recipient else "",
        subject=_first_match(_SUBJECT_PATTERNS, text),
    )
    return candidate if candidate != RawEmailFields() else None


def sample_massive_array(elements: list) -> RawEmailFields:
    """
    Accumulate email fields from the sampled windows of a massive array,
    stopping as soon as from, to and subject are all known.
    """
    candidate = RawEmailFields()
    for index in sample_indices(len(elements)):
        candidate = _merge(candidate, extract_from_element(elements[index]))
        if candidate.is_complete():
            logger.info(f"Email fields found in sampled array element {index}")
            break
    return candidate


def match_array(body: Any) -> Optional[RawEmailFields]:
    """Strategy 5 entry point. None when the body is not array-shaped."""
    elements = array_elements(body)
    if elements is None:
        return None

    count = len(elements)
    if count <= MAX_SCANNED_ELEMENTS:
        email_object = find_email_object(elements)
        if email_object is None:
            return RawEmailFields()
        logger.info(f"Found email data in array of {count} elements")
        return match_object(email_object) or RawEmailFields()

    logger.info(f"Massive array of {count} elements, sampling")
    candidate = sample_massive_array(elements)
    if candidate.is_complete():
        return candidate

    if count < FULL_SCAN_ELEMENT_CEILING:
        logger.info(f"Sampling incomplete, scanning full array of {count} elements")
        candidate = _merge(candidate, match_patterns(_bounded_dump(elements, FULL_SCAN_CHAR_LIMIT)))
    else:
        logger.info(
            f"Sampling incomplete and array exceeds {FULL_SCAN_ELEMENT_CEILING} elements, skipping full scan"
        )
    return candidate


_STRATEGIES: list[tuple[str, Strategy]] = _OBJECT_STRATEGIES + [("array", match_array)]


# ---------------------------------------------------------------------------
# Strategy 6: regex fallback
# ---------------------------------------------------------------------------

def _first_match(patterns: list[re.Pattern], text: str) -> str:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            value = _unescape_json_string(match.group(1)).strip()
            if value:
                return value
    return ""


def match_patterns(text: str) -> RawEmailFields:
    """Search serialized payload text for each field independently."""
    if not text:
        return RawEmailFields()
    return RawEmailFields(
        sender_email=_first_match(_FROM_PATTERNS, text),
        recipient_email=_first_match(_TO_PATTERNS, text),
        subject=_first_match(_SUBJECT_PATTERNS, text),
        text=_first_match(_TEXT_PATTERNS, text),
        html=_first_match(_HTML_PATTERNS, text),
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def normalize_payload(body: Any) -> RawEmailFields:
    """
    Extract from/to/subject/text/html from an arbitrary webhook body.

    Returns the first complete candidate from the structured strategies, or
    the first partial candidate with its gaps filled by the regex fallback.
    Never raises.
    """
    body = decode_body(body)

    candidate = run_strategies(_STRATEGIES, body) or RawEmailFields()
    if candidate.is_complete():
        return candidate

    missing = ", ".join(candidate.missing_fields())
    logger.info(f"Structured extraction incomplete (missing: {missing}), trying pattern fallback")
    return _merge(candidate, match_patterns(_bounded_dump(body, REGEX_SCAN_CHAR_LIMIT)))

import json
import logging
import re
from typing import Any, Callable, Optional

from .models import (
    LIST_KINDS,
    OBJECT_KINDS,
    NormalizedResult,
    NormalizeTrace,
    ParseStatus,
    ResponseSchema,
    SchemaField,
    TierAttempt,
)

logger = logging.getLogger(__name__)

FALLBACK_WARNING = "AI response was not valid JSON; fields were extracted heuristically."
FAILED_WARNING = "AI response could not be parsed; returning raw text only."
FALLBACK_NOTE = "Showing a best-effort text version of this result; some sections may be incomplete."
FAILED_NOTE = "The AI response could not be structured, so the raw text is shown instead."

_FENCED_BLOCK = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\r?\n?(.*?)\r?\n?[ \t]*```", re.S)
_OPEN_FENCE = re.compile(r"^\s*```[A-Za-z0-9_-]*[ \t]*\r?\n?")
_JSON_NUMBER = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?")
_GROUPED_NUMBER = re.compile(r"-?\d{1,3}(?:,\d{3})+(?:\.\d+)?|-?\d+(?:\.\d+)?")
_BULLET_PREFIX = re.compile(r"^[-\d.\s]+")
_LIST_SPLIT = re.compile(r"\n|\*")
_WORDS = re.compile(r"[A-Za-z0-9]+")
_SQUASH = re.compile(r"[^a-z0-9]")

_DECOR = r"[ \t>#*_\-\d.)]*"
_PAREN = r"(?:[ \t]*\([^)\n]*\))?"
_SCALAR_EDGES = " \t\r\n\"',*{}"
_JSON_TAIL = " \t\r\n,\"}]"

_MISSING = object()


def _squash(value: str) -> str:
    return _SQUASH.sub("", value.lower())


def _is_numeric_keyed(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(isinstance(k, str) and k.isdigit() for k in value)


def _ordered_values(value: dict) -> list[Any]:
    return [value[key] for key in sorted(value, key=int)]


def _strip_fences(text: str, rewrites: list[str]) -> str:
    stripped = text.strip()
    fenced = _FENCED_BLOCK.search(stripped)
    if fenced:
        rewrites.append("code_fence")
        return fenced.group(1).strip()
    if _OPEN_FENCE.match(stripped):
        # unterminated fence, usually a reply cut off at the token limit
        rewrites.append("code_fence")
        return _OPEN_FENCE.sub("", stripped, count=1).strip()
    return stripped


def _rewrite_numeric(text: str, keys: list[str], rewrites: list[str]) -> str:
    for key in keys:
        changed: list[bool] = []
        quoted = re.compile(r'("%s"\s*:\s*)"\s*(-?\d[\d,]*(?:\.\d+)?)\s*"' % re.escape(key))
        bare = re.compile(
            r'("%s"\s*:\s*)(-?\d[^"\n{}\[\]]*?)(?=\s*(?:,\s*"|[}\]]|\n|\Z))' % re.escape(key)
        )

        def _unquote(match: re.Match) -> str:
            compact = match.group(2).replace(",", "")
            if not _JSON_NUMBER.fullmatch(compact):
                return match.group(0)
            changed.append(True)
            return match.group(1) + compact

        def _bare(match: re.Match) -> str:
            value = match.group(2).strip()
            if _JSON_NUMBER.fullmatch(value):
                return match.group(0)
            changed.append(True)
            compact = value.replace(",", "")
            if _JSON_NUMBER.fullmatch(compact):
                return match.group(1) + compact
            return match.group(1) + json.dumps(value)

        text = quoted.sub(_unquote, text)
        text = bare.sub(_bare, text)
        if changed:
            rewrites.append(f"numeric:{key}")
    return text


def _outer_json_slice(text: str, root: str) -> Optional[str]:
    # a bracketed list inside prose only counts as the payload for array schemas
    openers = "{[" if root == "array" else "{"
    starts = [idx for idx in (text.find(opener) for opener in openers) if idx != -1]
    if not starts:
        return None
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end <= start:
        return None
    return text[start : end + 1]


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return "\n".join(_as_text(item) for item in value if item is not None)
    if isinstance(value, dict):
        return "\n".join(f"{key}: {_as_text(item)}" for key, item in value.items())
    return str(value)


def _as_items(value: Any) -> list[Any]:
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    if _is_numeric_keyed(value):
        return _ordered_values(value)
    return [value]


def _lookup(data: dict, field: SchemaField) -> Any:
    if field.name in data:
        return data[field.name]
    wanted = {_squash(heading) for heading in field.headings}
    for key, value in data.items():
        if isinstance(key, str) and _squash(key) in wanted:
            return value
    return None


def _match_subfield(field: SchemaField, key: Any) -> Optional[SchemaField]:
    if not isinstance(key, str):
        return None
    for sub in field.subfields:
        if sub.name == key:
            return sub
    squashed = _squash(key)
    for sub in field.subfields:
        if squashed in {_squash(heading) for heading in sub.headings}:
            return sub
    return None


def _coerce_object(field: SchemaField, obj: dict) -> dict:
    if not field.subfields:
        return dict(obj)
    result: dict[str, Any] = {}
    for key, value in obj.items():
        sub = _match_subfield(field, key)
        if sub is None:
            result[key] = value
        else:
            result[sub.name] = _coerce(sub, value)
    return result


def _coerce(field: SchemaField, value: Any) -> Any:
    if field.kind == "string":
        return _as_text(value)
    if field.kind == "number":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        return _as_text(value)
    if field.kind == "string_list":
        return [_as_text(item) for item in _as_items(value) if item is not None]
    if field.kind == "object":
        candidates = [item for item in _as_items(value) if isinstance(item, dict)]
        return _coerce_object(field, candidates[0]) if candidates else {}
    return [_coerce_object(field, item) for item in _as_items(value) if isinstance(item, dict)]


def _has_content(value: Any) -> bool:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return True
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, dict):
        return any(_has_content(item) for item in value.values())
    if isinstance(value, list):
        return bool(value)
    return value is not None


def _map_parsed(data: Any, schema: ResponseSchema) -> dict[str, Any]:
    if not isinstance(data, (dict, list)):
        raise ValueError(f"top-level JSON value is {type(data).__name__}, not an object or array")

    if schema.root == "array":
        field = schema.fields[0]
        value = data
        if isinstance(data, dict) and not _is_numeric_keyed(data):
            wrapped = _lookup(data, field)
            if wrapped is not None:
                value = wrapped
        return {field.name: _coerce(field, value)}

    if isinstance(data, list):
        target = next((field for field in schema.fields if field.kind in LIST_KINDS), None)
        if target is None:
            raise ValueError("JSON array cannot fill an object schema without list fields")
        data = {target.name: data}

    return {field.name: _coerce(field, _lookup(data, field)) for field in schema.fields}


def _parse_wrapped(text: str, root: str, rewrites: list[str]) -> Any:
    cleaned = _strip_fences(text, rewrites)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        sliced = _outer_json_slice(cleaned, root)
        if sliced is None or sliced == cleaned:
            raise
        data = json.loads(sliced)
        rewrites.append("prose_wrapper")
        return data


def _strict_parse(text: str, schema: ResponseSchema, rewrites: list[str]) -> dict[str, Any]:
    # a reply that already parses is never fence-stripped
    try:
        data = json.loads(text.strip())
    except json.JSONDecodeError:
        data = _parse_wrapped(text, schema.root, rewrites)
    return _map_parsed(data, schema)


def _label_patterns(field: SchemaField, joiner: str) -> list[str]:
    patterns: list[str] = []
    for heading in field.headings:
        tokens = _WORDS.findall(heading)
        if not tokens:
            continue
        pattern = joiner.join(re.escape(token) for token in tokens)
        if pattern not in patterns:
            patterns.append(pattern)
    return patterns


def _heading_pattern(field: SchemaField) -> str:
    label = "(?:" + "|".join(_label_patterns(field, r"[ \t_\-&/]+")) + ")"
    inline = rf"\b{label}\b{_PAREN}[ \t*_\"']*(?::|[-–—](?=\s))"
    alone = rf"^{_DECOR}{label}\b{_PAREN}[ \t*_\"'#:]*$"
    return rf"(?:{inline}|{alone})"


def _section_regex(field: SchemaField, others: list[SchemaField]) -> re.Pattern:
    stops = "|".join(_heading_pattern(other) for other in others)
    lookahead = rf"(?={stops}|\Z)" if stops else r"\Z"
    return re.compile(_heading_pattern(field) + r"(.*?)" + lookahead, re.I | re.M | re.S)


def _leading_json(block: str) -> Any:
    stripped = block.lstrip()
    if not stripped or stripped[0] not in "[{\"-0123456789":
        return _MISSING
    try:
        value, end = json.JSONDecoder().raw_decode(stripped)
    except json.JSONDecodeError:
        return _MISSING
    if stripped[end:].strip(_JSON_TAIL):
        return _MISSING
    return value


def _scan_objects(text: str, field: SchemaField) -> list[dict]:
    decoder = json.JSONDecoder()
    found: list[dict] = []
    idx = text.find("{")
    while idx != -1:
        try:
            obj, end = decoder.raw_decode(text, idx)
        except json.JSONDecodeError:
            idx = text.find("{", idx + 1)
            continue
        if isinstance(obj, dict) and (
            not field.subfields or any(_match_subfield(field, key) for key in obj)
        ):
            found.append(obj)
            idx = text.find("{", end)
        else:
            idx = text.find("{", idx + 1)
    return found


def _split_lines(block: str) -> list[str]:
    items = [_BULLET_PREFIX.sub("", part).strip() for part in _LIST_SPLIT.split(block)]
    return [item for item in items if item]


def _to_number(text: str) -> Any:
    if not _GROUPED_NUMBER.fullmatch(text):
        return text
    compact = text.replace(",", "")
    return float(compact) if "." in compact else int(compact)


def _coerce_block(field: SchemaField, block: str) -> Any:
    decoded = _leading_json(block)
    if decoded is not _MISSING and (field.kind not in OBJECT_KINDS or isinstance(decoded, (dict, list))):
        return _coerce(field, decoded)

    if field.kind == "string":
        return block.strip(_SCALAR_EDGES)
    if field.kind == "number":
        return _to_number(block.strip(_SCALAR_EDGES))
    if field.kind == "string_list":
        return _split_lines(block)
    if field.kind == "object":
        objects = _scan_objects(block, field)
        if objects:
            return _coerce_object(field, objects[0])
        sections = _extract_sections(block, field.subfields)
        return {name: value for name, value in sections.items() if _has_content(value)}
    return [_coerce_object(field, obj) for obj in _scan_objects(block, field)]


def _extract_sections(text: str, fields: list[SchemaField]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field in fields:
        others = [other for other in fields if other is not field]
        match = _section_regex(field, others).search(text)
        values[field.name] = _coerce_block(field, match.group(1)) if match else field.empty_value()
    return values


def _line_matchers(fields: list[SchemaField]) -> list[tuple[SchemaField, re.Pattern]]:
    matchers = []
    for field in fields:
        for label in _label_patterns(field, r"[\W_]*"):
            pattern = re.compile(rf"^(?P<lead>{_DECOR})(?:{label})\b(?P<rest>.*)$", re.I)
            matchers.append((len(label), field, pattern))
    matchers.sort(key=lambda item: item[0], reverse=True)
    return [(field, pattern) for _, field, pattern in matchers]


def _heading_line(line: str, matchers: list[tuple[SchemaField, re.Pattern]]) -> Optional[tuple[SchemaField, str]]:
    for field, pattern in matchers:
        match = pattern.match(line)
        if not match:
            continue
        rest = match.group("rest")
        inline = rest.lstrip(" \t*_\"'#:)-–—.?").rstrip(" \t*_\"'#")
        marked = any(marker in match.group("lead") for marker in "#*")
        separated = rest.lstrip(" \t*_\"')")[:1] in {":", "-", "–", "—"}
        if not inline or marked or separated:
            return field, inline
    return None


def _scan_lines(text: str, fields: list[SchemaField]) -> dict[str, Any]:
    matchers = _line_matchers(fields)
    buffers: dict[str, list[str]] = {}
    current: Optional[str] = None
    for line in text.splitlines():
        heading = _heading_line(line, matchers)
        if heading:
            field, inline = heading
            current = field.name
            buffers.setdefault(current, [])
            if inline:
                buffers[current].append(inline)
        elif current is not None:
            buffers[current].append(line)

    values: dict[str, Any] = {}
    for field in fields:
        lines = buffers.get(field.name)
        values[field.name] = _coerce_block(field, "\n".join(lines)) if lines else field.empty_value()
    return values


def _heuristic_tier(extract: Callable[[str, list[SchemaField]], dict[str, Any]]) -> Callable:
    def _run(text: str, schema: ResponseSchema) -> dict[str, Any]:
        values = extract(text, schema.fields)
        if schema.root == "array":
            field = schema.fields[0]
            if not values[field.name]:
                values[field.name] = _coerce_block(field, text)
        return values

    return _run


_HEURISTIC_TIERS = (
    ("section_regex", _heuristic_tier(_extract_sections)),
    ("line_scan", _heuristic_tier(_scan_lines)),
)


def _count_warnings(schema: ResponseSchema, fields: dict[str, Any]) -> list[str]:
    warnings = []
    for field in schema.fields:
        if field.expected_count is None:
            continue
        received = len(fields[field.name])
        if received < field.expected_count:
            label = field.item_label or "items"
            warnings.append(f"Expected {field.expected_count} {label} but received {received}.")
    return warnings


def _finish(
    schema: ResponseSchema,
    fields: dict[str, Any],
    status: ParseStatus,
    trace: NormalizeTrace,
) -> NormalizedResult:
    fields = {field.name: fields.get(field.name, field.empty_value()) for field in schema.fields}
    trace.populated = [name for name, value in fields.items() if _has_content(value)]

    notes = [FALLBACK_WARNING] if status == "fallback_used" else []
    counts = _count_warnings(schema, fields)
    for warning in counts:
        logger.warning("normalizer: %s", warning)

    return NormalizedResult(
        fields=fields,
        parse_status=status,
        warning=" ".join(notes + counts) or None,
        user_note=FALLBACK_NOTE if status == "fallback_used" else None,
        trace=trace,
    )


def normalize(raw_text: str, schema: ResponseSchema) -> NormalizedResult:
    """Structure a model reply according to ``schema``; never raises.

    Tiers run in order (strict JSON, regex sections, line scan) and the first
    one that yields data wins. When none does, every field is empty and the
    reply is passed through as ``raw_response`` with ``parse_status="failed"``.
    """
    if raw_text is None:
        raw_text = ""
    elif not isinstance(raw_text, str):
        raw_text = str(raw_text)

    trace = NormalizeTrace()
    rewrites: list[str] = []
    try:
        prepared = _rewrite_numeric(raw_text, schema.numeric_keys(), rewrites)
    except Exception as exc:
        logger.debug("normalizer: numeric rewrite skipped: %s", exc)
        prepared = raw_text

    try:
        fields = _strict_parse(prepared, schema, rewrites)
    except Exception as exc:
        trace.attempts.append(TierAttempt(tier="strict_json", outcome="error", detail=f"{type(exc).__name__}: {exc}"))
    else:
        trace.attempts.append(TierAttempt(tier="strict_json", outcome="success"))
        trace.rewrites = rewrites
        return _finish(schema, fields, "success", trace)
    trace.rewrites = rewrites

    for tier, extract in _HEURISTIC_TIERS:
        try:
            fields = extract(prepared, schema)
        except Exception as exc:
            logger.debug("normalizer: %s tier failed: %s", tier, exc)
            trace.attempts.append(TierAttempt(tier=tier, outcome="error", detail=f"{type(exc).__name__}: {exc}"))
            continue
        if any(_has_content(value) for value in fields.values()):
            trace.attempts.append(TierAttempt(tier=tier, outcome="success"))
            return _finish(schema, fields, "fallback_used", trace)
        trace.attempts.append(TierAttempt(tier=tier, outcome="empty"))

    trace.attempts.append(TierAttempt(tier="raw_passthrough", outcome="success"))
    logger.info("normalizer: no tier produced data, returning raw text")
    return NormalizedResult(
        fields=schema.empty_fields(),
        parse_status="failed",
        warning=FAILED_WARNING,
        user_note=FAILED_NOTE,
        raw_response=raw_text,
        trace=trace,
    )

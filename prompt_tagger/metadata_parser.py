"""
Generation metadata parsing.

Turns the decoded text of an image (keyword -> text) into a
CanonicalMetadata record. Several layouts are seen in the wild, so the
parser tries a fixed list of dialects in order and keeps the first one
that yields a non-empty positive prompt:

1. ``parameters`` block (AUTOMATIC1111 / Forge)
2. the same block under description / comment / pnginfo / software,
   located via the header-line boundary
3. JSON objects (NovelAI, ComfyUI-style exports)
4. free text containing ``Negative prompt:``
5. every value joined together, parsed as free text
"""

import json
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .models import CanonicalMetadata, ImageSize
from .png_text import decode_text_chunks

Dialect = Callable[[Mapping[str, str]], Optional[CanonicalMetadata]]

HEADER_KEYS = r"Steps|Sampler|CFG scale|CFG|Seed|Size|Model|Hires|Denoising|Clip|ENSD"

# A metadata header starts a line with one of the known keys followed by ':'
HEADER_RE = re.compile(rf"(?:^|\n)[ \t]*(?:{HEADER_KEYS})[\w \t]*?:", re.IGNORECASE)
NEGATIVE_BLOCK_RE = re.compile(r"(?:^|[\r\n]+)[ \t]*Negative prompt:[ \t]*", re.IGNORECASE)
NEGATIVE_MARKER_RE = re.compile(r"Negative prompt:[ \t]*", re.IGNORECASE)
POSITIVE_LABEL_RE = re.compile(r"Positive\s*prompt:\s*([\s\S]*)", re.IGNORECASE)
LINE_BREAK_RE = re.compile(r"[\r\n]+")
SIZE_RE = re.compile(r"(\d+)\s*x\s*(\d+)", re.IGNORECASE)

_PAREN_WEIGHT_RE = re.compile(r"\(([^()]+?)(?::[0-9.]+)+\)")
_BARE_WEIGHT_RE = re.compile(r"(\S+?)(?::[0-9.]+)+(?=\s|,|$)")

LOOSE_KEYS = ("description", "comment", "pnginfo", "software")
JSON_POSITIVE_KEYS = ("prompt", "positive", "caption", "text")
JSON_NEGATIVE_KEYS = ("negative_prompt", "negative", "uc")
JSON_CFG_KEYS = ("cfg_scale", "cfg", "scale")

# Exact header keys always win; a key that only shares a prefix
# ("Model hash", "Seed resize from") fills a field that is still empty.
_EXACT_HEADER_FIELDS = {
    "steps": "steps",
    "sampler": "sampler",
    "cfg": "cfg",
    "cfg scale": "cfg",
    "seed": "seed",
    "size": "size",
    "model": "model",
}
_PREFIX_HEADER_FIELDS = (
    ("steps", "steps"),
    ("sampler", "sampler"),
    ("cfg", "cfg"),
    ("seed", "seed"),
    ("size", "size"),
    ("model", "model"),
)


def remove_weights(text: str) -> str:
    """Drop attention weights: ``(flower:1.2)`` -> ``(flower)``, ``tree:0.8`` -> ``tree``."""
    result = _PAREN_WEIGHT_RE.sub(r"(\1)", text)
    return _BARE_WEIGHT_RE.sub(r"\1", result)


def _to_number(value: str) -> Optional[float]:
    cleaned = re.sub(r"[^\d.]", "", value)
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return int(number) if number.is_integer() else number


def _to_seed(value: str):
    try:
        return int(value)
    except ValueError:
        return value


def _convert_header_value(field: str, value: str) -> Any:
    if field in ("steps", "cfg"):
        return _to_number(value)
    if field == "seed":
        return _to_seed(value)
    if field == "size":
        match = SIZE_RE.search(value)
        if not match:
            return None
        return ImageSize(width=int(match.group(1)), height=int(match.group(2)))
    return value


def parse_header_line(line: str) -> Dict[str, Any]:
    """Parse ``Steps: 20, Sampler: Euler a, CFG scale: 7, ...`` into canonical fields.

    Keys are matched case-insensitively and in any order; unknown keys are
    ignored and numbers that do not parse are dropped.
    """
    meta: Dict[str, Any] = {}

    for part in re.split(r"\s*[,\r\n]+\s*", line):
        if ":" not in part:
            continue
        key, value = part.split(":", 1)
        key = key.strip().lower()
        value = value.strip()
        if not key or not value:
            continue

        field = _EXACT_HEADER_FIELDS.get(key)
        exact = field is not None
        if field is None:
            field = next((name for prefix, name in _PREFIX_HEADER_FIELDS if key.startswith(prefix)), None)
        if field is None or (not exact and field in meta):
            continue

        converted = _convert_header_value(field, value)
        if converted is not None:
            meta[field] = converted

    return meta


def _build(
    positive: Optional[str],
    negative: Optional[str],
    meta: Dict[str, Any],
    raw: Mapping[str, str],
) -> Optional[CanonicalMetadata]:
    """Normalize weights and accept the record only with a non-empty positive prompt."""
    positive = remove_weights(positive).strip() if positive else ""
    if not positive:
        return None
    negative = remove_weights(negative).strip() if negative else ""
    return CanonicalMetadata(positive=positive, negative=negative or None, raw=dict(raw), **meta)


def _split_negative_and_tail(text: str) -> Tuple[Optional[str], str]:
    """First line is the negative prompt, the rest is the header."""
    parts = LINE_BREAK_RE.split(text, maxsplit=1)
    negative = parts[0].strip() or None
    tail = parts[1].strip() if len(parts) > 1 else ""
    return negative, tail


def parse_parameters_block(
    raw: str,
    source: Optional[Mapping[str, str]] = None,
    loose: bool = False,
) -> Optional[CanonicalMetadata]:
    """Parse an AUTOMATIC1111-style parameters block.

    Layout::

        <positive prompt...>
        Negative prompt: <negative prompt>
        Steps: 20, Sampler: Euler a, CFG scale: 7, Seed: 123, Size: 512x512, Model: foo

    In loose mode a block without ``Negative prompt:`` is only accepted when a
    header line marks where the prompt ends.
    """
    source = source if source is not None else {"parameters": raw}
    split = NEGATIVE_BLOCK_RE.split(raw, maxsplit=1)

    if len(split) > 1:
        negative, tail = _split_negative_and_tail(split[1])
        return _build(split[0], negative, parse_header_line(tail), source)

    if loose:
        match = HEADER_RE.search(raw)
        if not match or match.start() <= 0:
            return None
        part = raw[:match.start()]
        labelled = POSITIVE_LABEL_RE.search(part)
        positive = labelled.group(1) if labelled else part
        return _build(positive, None, parse_header_line(raw[match.start():]), source)

    lines = raw.strip().splitlines()
    if lines and HEADER_RE.match(lines[-1]):
        return _build("\n".join(lines[:-1]), None, parse_header_line(lines[-1]), source)
    return _build(raw, None, {}, source)


def parse_free_form(text: str, source: Optional[Mapping[str, str]] = None) -> Optional[CanonicalMetadata]:
    """Best-effort parse of arbitrary text that may hold A1111-style fields."""
    source = source if source is not None else {"text": text}
    split = NEGATIVE_MARKER_RE.split(text, maxsplit=1)

    if len(split) > 1:
        remainder = split[1]
        match = HEADER_RE.search(remainder)
        if match:
            negative = remainder[:match.start()].strip() or None
            tail = remainder[match.start():]
        else:
            negative, tail = _split_negative_and_tail(remainder)
        return _build(split[0], negative, parse_header_line(tail), source)

    match = HEADER_RE.search(text)
    if match and match.start() > 0:
        return _build(text[:match.start()], None, parse_header_line(text[match.start():]), source)
    return None


def _json_lookup(obj: Mapping[str, Any], names: Sequence[str]) -> Any:
    lowered = {str(key).lower(): value for key, value in obj.items()}
    for name in names:
        value = lowered.get(name)
        if value is not None:
            return value
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_json_object(obj: Any, source: Mapping[str, str]) -> Optional[CanonicalMetadata]:
    """Pull canonical fields out of a JSON export using the usual field aliases."""
    if isinstance(obj, list):
        for item in obj:
            info = parse_json_object(item, source)
            if info:
                return info
        return None
    if not isinstance(obj, dict):
        return None

    positive = next(
        (value for value in (_json_lookup(obj, (key,)) for key in JSON_POSITIVE_KEYS) if isinstance(value, str)),
        None,
    )
    negative = next(
        (value for value in (_json_lookup(obj, (key,)) for key in JSON_NEGATIVE_KEYS) if isinstance(value, str)),
        None,
    )

    meta: Dict[str, Any] = {}
    steps = _json_lookup(obj, ("steps",))
    if _is_number(steps):
        meta["steps"] = steps
    sampler = _json_lookup(obj, ("sampler",))
    if isinstance(sampler, str):
        meta["sampler"] = sampler
    cfg = _json_lookup(obj, JSON_CFG_KEYS)
    if _is_number(cfg):
        meta["cfg"] = cfg
    seed = _json_lookup(obj, ("seed",))
    if _is_number(seed):
        meta["seed"] = int(seed) if float(seed).is_integer() else str(seed)
    elif isinstance(seed, str) and seed.strip():
        meta["seed"] = _to_seed(seed.strip())
    model = _json_lookup(obj, ("model",))
    if isinstance(model, str):
        meta["model"] = model
    width, height = _json_lookup(obj, ("width",)), _json_lookup(obj, ("height",))
    try:
        if width and height:
            meta["size"] = ImageSize(width=int(width), height=int(height))
    except (TypeError, ValueError):
        pass

    return _build(positive, negative, meta, source)


def _meaningful(text_map: Mapping[str, str]) -> Dict[str, str]:
    """Lower-cased keys, without empty values."""
    lowered: Dict[str, str] = {}
    for key, value in text_map.items():
        if not key or value is None or not str(value).strip():
            continue
        name = key.lower()
        lowered[name] = f"{lowered[name]}\n{value}" if name in lowered else str(value)
    return lowered


def parse_standard(text_map: Mapping[str, str]) -> Optional[CanonicalMetadata]:
    block = _meaningful(text_map).get("parameters")
    return parse_parameters_block(block, text_map) if block else None


def parse_loose(text_map: Mapping[str, str]) -> Optional[CanonicalMetadata]:
    lowered = _meaningful(text_map)
    for key in LOOSE_KEYS:
        if key in lowered:
            info = parse_parameters_block(lowered[key], text_map, loose=True)
            if info:
                return info
    return None


def parse_structured(text_map: Mapping[str, str]) -> Optional[CanonicalMetadata]:
    for value in _meaningful(text_map).values():
        stripped = value.strip()
        if not stripped.startswith(("{", "[")):
            continue
        try:
            obj = json.loads(stripped)
        except json.JSONDecodeError:
            continue
        info = parse_json_object(obj, text_map)
        if info:
            return info
    return None


def parse_marked_free_form(text_map: Mapping[str, str]) -> Optional[CanonicalMetadata]:
    for value in _meaningful(text_map).values():
        if NEGATIVE_MARKER_RE.search(value):
            info = parse_free_form(value, text_map)
            if info:
                return info
    return None


def parse_whole_map(text_map: Mapping[str, str]) -> Optional[CanonicalMetadata]:
    joined = "\n".join(_meaningful(text_map).values())
    return parse_free_form(joined, text_map) if joined else None


DIALECTS: List[Dialect] = [
    parse_standard,
    parse_loose,
    parse_structured,
    parse_marked_free_form,
    parse_whole_map,
]


def parse_text_map(text_map: Mapping[str, str]) -> Optional[CanonicalMetadata]:
    """Run the dialects in order; the first with a positive prompt wins."""
    if not text_map:
        return None
    for dialect in DIALECTS:
        info = dialect(text_map)
        if info:
            return info
    return None


def extract_png_metadata(data: bytes) -> Optional[CanonicalMetadata]:
    """Decode the text chunks of PNG bytes and parse them."""
    return parse_text_map(decode_text_chunks(data))

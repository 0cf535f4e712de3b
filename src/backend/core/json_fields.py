"""
Decoding of JSON-valued fields.

Rows written by older clients may hold JSON as text, malformed text, or an
already-decoded structure. ``load_json`` turns any of those into a value of
the expected shape, falling back to a default.
"""

import copy
import json
import logging
from typing import Any, Iterable, Mapping

logger = logging.getLogger(__name__)


def load_json(value: Any, default: Any = None) -> Any:
    """
    Decode a JSON field with a typed fallback.

    - ``None`` returns a copy of ``default``
    - ``str``/``bytes`` are parsed; parse errors return ``default``
    - anything else is treated as already decoded

    When ``default`` is a dict or list, a decoded value of another type is
    rejected and ``default`` is returned instead.
    """
    if value is None:
        return copy.deepcopy(default)

    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")

    if isinstance(value, str):
        try:
            value = json.loads(value)
        except (TypeError, ValueError):
            logger.debug(f"Malformed JSON field value, using default: {value[:80]!r}")
            return copy.deepcopy(default)

    if isinstance(default, (dict, list)) and not isinstance(value, type(default)):
        return copy.deepcopy(default)

    return value


def decode_fields(row: Mapping[str, Any], defaults: Mapping[str, Any], *, only_present: bool = False) -> dict:
    """
    Return a copy of ``row`` with every field in ``defaults`` decoded.

    With ``only_present`` fields missing from the row are left out instead of
    being filled with their defaults.
    """
    decoded = dict(row)
    for field, default in defaults.items():
        if only_present and field not in decoded:
            continue
        decoded[field] = load_json(decoded.get(field), default)
    return decoded


def decode_input(data: Mapping[str, Any], fields: Iterable[str]) -> dict:
    """Parse JSON-text input values for ``fields`` before they are written."""
    prepared = dict(data)
    for field in fields:
        value = prepared.get(field)
        if isinstance(value, (str, bytes, bytearray)):
            prepared[field] = load_json(value, None)
    return prepared

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Set

from .models import TransformDefinition
from .normalization import collapse_whitespace, safe_get, title_case

logger = logging.getLogger(__name__)


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def _zip_plus4(value: str) -> str:
    digits = _digits(value)
    if len(digits) >= 9:
        return f"{digits[:5]}-{digits[5:9]}"
    return digits[:5]


def _phone10(value: str) -> str:
    digits = _digits(value)
    return digits[-10:] if len(digits) > 10 else digits


SIMPLE_TRANSFORMS: Dict[str, Callable[[str], str]] = {
    "trim": lambda value: value.strip(),
    "upper": lambda value: value.upper(),
    "lower": lambda value: value.lower(),
    "titlecase": title_case,
    "whitespace_collapse": collapse_whitespace,
    "zip5": lambda value: _digits(value)[:5],
    "zip_plus4": _zip_plus4,
    "phone10": _phone10,
}


def _resolve_argument(argument: str, row: Mapping[str, Any]) -> str:
    """Arguments naming a source column are replaced by that row's value."""
    if argument in row:
        return safe_get(row, argument)
    return argument


def _slice(value: str, arguments: Sequence[str], from_left: bool) -> str:
    try:
        length = int(arguments[0]) if arguments else -1
    except ValueError:
        return value
    if length < 0 or len(value) <= length:
        return value
    return value[:length] if from_left else value[len(value) - length:]


def apply_transform(
    value: str,
    transform: Optional[TransformDefinition],
    row: Mapping[str, Any],
    warned: Optional[Set[str]] = None,
) -> str:
    """Apply one transform; unknown verbs warn once per ``warned`` set and pass the value through."""
    if transform is None or not transform.verb:
        return value
    verb = transform.verb.lower()
    handler = SIMPLE_TRANSFORMS.get(verb)
    if handler is not None:
        return handler(value or "")
    if verb == "left":
        return _slice(value or "", transform.arguments, from_left=True)
    if verb == "right":
        return _slice(value or "", transform.arguments, from_left=False)
    if verb == "replace":
        if len(transform.arguments) < 2:
            return value
        search = _resolve_argument(transform.arguments[0], row)
        replacement = _resolve_argument(transform.arguments[1], row)
        if not search:
            return value
        return re.sub(re.escape(search), lambda _: replacement, value or "", flags=re.IGNORECASE)
    if verb == "concat":
        return (value or "") + "".join(_resolve_argument(arg, row) for arg in transform.arguments)
    if warned is None or verb not in warned:
        logger.warning("Unknown transform '%s' ignored", transform.verb)
        if warned is not None:
            warned.add(verb)
    return value


def apply_transforms(
    value: str,
    transforms: Sequence[TransformDefinition],
    row: Mapping[str, Any],
    warned: Optional[Set[str]] = None,
) -> str:
    for transform in transforms:
        value = apply_transform(value, transform, row, warned)
    return value


def is_known_transform(verb: str) -> bool:
    return (verb or "").lower() in SIMPLE_TRANSFORMS or (verb or "").lower() in {
        "left",
        "right",
        "replace",
        "concat",
    }

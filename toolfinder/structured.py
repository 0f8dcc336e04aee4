from __future__ import annotations

"""
Tagged results for decoding structured (JSON) completions.

Every LLM-backed stage asks the provider for JSON and must survive
whatever comes back.  Instead of using exceptions for control flow the
decoders return either ``Parsed(value)`` or ``Fallback(default, reason)``
and the caller decides what the degraded value means for its stage.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

from .normalize import strip_code_fences

T = TypeVar("T")


@dataclass(frozen=True)
class Parsed(Generic[T]):
    value: T


@dataclass(frozen=True)
class Fallback(Generic[T]):
    value: T
    reason: str


DecodeResult = Union[Parsed[T], Fallback[T]]


def _load_json(text: str) -> Any:
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise ValueError("empty completion")
    return json.loads(cleaned)


def decode_json(
    text: str,
    expected: type,
    default: Callable[[], T],
    convert: Callable[[Any], T],
) -> DecodeResult[T]:
    """
    Decode ``text`` as JSON of the ``expected`` container type.

    ``convert`` turns the decoded container into the caller's value and
    may raise ``ValueError`` (pydantic's ``ValidationError`` is one) to
    reject it.  Any failure yields ``Fallback(default(), reason)``.
    """
    try:
        raw = _load_json(text)
    except ValueError as e:
        return Fallback(default(), f"invalid JSON: {e}")
    if not isinstance(raw, expected):
        return Fallback(default(), f"expected {expected.__name__}, got {type(raw).__name__}")
    try:
        return Parsed(convert(raw))
    except (ValueError, TypeError) as e:
        return Fallback(default(), f"schema mismatch: {e}")

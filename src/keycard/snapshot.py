# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""Snapshot codec and base64 helpers.

A *snapshot* is the UTF-8 JSON form of an object, used as the exact byte
input for hashing and signing. The serialization is compact (no whitespace)
and preserves the key order of the source mapping, so callers that need a
stable snapshot must build their mappings in a fixed order.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Mapping

from .types import ParseError


def take_snapshot(content: Mapping[str, Any]) -> bytes:
    """Serialize *content* to compact UTF-8 JSON, keeping key insertion order."""
    text = json.dumps(dict(content), separators=(",", ":"), ensure_ascii=False)
    return text.encode("utf-8")


def parse_snapshot(snapshot: bytes) -> Any:
    """Decode a snapshot produced by :func:`take_snapshot`.

    Raises
    ------
    ParseError
        If *snapshot* is not valid UTF-8 or not valid JSON.
    """
    try:
        text = snapshot.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ParseError(f"parse_snapshot: invalid UTF-8: {exc}") from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"parse_snapshot: invalid JSON: {exc}") from exc


def try_parse_extra_fields(snapshot: bytes | None) -> dict[str, Any]:
    """Best-effort parse of a signature's extra-fields snapshot.

    Unlike :func:`parse_snapshot` this never raises: a missing, malformed or
    non-object snapshot yields an empty dict.
    """
    if not snapshot:
        return {}
    try:
        parsed = parse_snapshot(snapshot)
    except ParseError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


# ------------------------------------------------------------------
# base64 / base64url
# ------------------------------------------------------------------


def encode_base64(data: bytes) -> str:
    """Standard base64 with padding."""
    return base64.b64encode(data).decode("ascii")


def decode_base64(encoded: str) -> bytes:
    """Decode standard base64, raising :class:`ParseError` on bad input."""
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise ParseError(f"decode_base64: invalid base64: {exc}") from exc


def encode_base64url(data: bytes) -> str:
    """Encode *data* as base64url without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def decode_base64url(encoded: str) -> bytes:
    """Decode a base64url string (with or without padding)."""
    # Restore padding.
    remainder = len(encoded) % 4
    if remainder == 2:
        encoded += "=="
    elif remainder == 3:
        encoded += "="
    return base64.urlsafe_b64decode(encoded)

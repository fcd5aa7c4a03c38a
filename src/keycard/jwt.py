# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""Access tokens: the compact JWT format, generation and verification.

A token is three base64url segments joined by ``.``::

    base64url(header JSON) . base64url(payload JSON) . base64url(signature)

The signature covers the first two segments exactly as they appear in the
token string. A parsed :class:`Jwt` keeps those original segments in
:attr:`Jwt.unsigned_data`; re-serializing the payload is never used for
verification because JSON key order is not canonical.

:class:`JwtGenerator` is meant for servers holding the API private key.
:class:`JwtVerifier` checks tokens against the matching API public key.
"""

from __future__ import annotations

import binascii
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from .crypto import AccessTokenSigner
from .snapshot import decode_base64url, encode_base64url
from .types import ExtraData, MalformedTokenError, ValidationError

SUBJECT_PREFIX = "identity-"
ISSUER_PREFIX = "virgil-"
VIRGIL_CONTENT_TYPE = "virgil-jwt;v=1"
JWT_CONTENT_TYPE = "JWT"

# 20 minutes.
DEFAULT_TOKEN_TTL_MS = 20 * 60 * 1000

# Lower bound for milliseconds_to_live; iat and exp are whole seconds.
MIN_TOKEN_TTL_MS = 1000


@dataclass(frozen=True)
class JwtHeader:
    alg: str
    kid: str
    typ: str = JWT_CONTENT_TYPE
    cty: str = VIRGIL_CONTENT_TYPE

    def to_json(self) -> dict[str, Any]:
        return {"alg": self.alg, "kid": self.kid, "typ": self.typ, "cty": self.cty}


@dataclass(frozen=True)
class JwtBody:
    """Token payload. ``iat`` and ``exp`` are Unix seconds."""

    iss: str
    sub: str
    iat: int
    exp: int
    ada: dict[str, Any] | None = None

    def to_json(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "iss": self.iss,
            "sub": self.sub,
            "iat": self.iat,
            "exp": self.exp,
        }
        if self.ada is not None:
            doc["ada"] = self.ada
        return doc


class Jwt:
    """A JWT used as a bearer access token for the card service.

    Build one from its parts, or parse a token string with
    :meth:`from_string`.
    """

    def __init__(
        self,
        header: JwtHeader,
        body: JwtBody,
        signature: bytes | None = None,
        *,
        _unsigned_data: str | None = None,
    ) -> None:
        self.header = header
        self.body = body
        self.signature = signature
        self.unsigned_data = _unsigned_data or (
            _encode_segment(header.to_json()) + "." + _encode_segment(body.to_json())
        )
        self._string = (
            self.unsigned_data
            if signature is None
            else self.unsigned_data + "." + encode_base64url(signature)
        )

    @classmethod
    def from_string(cls, token: str) -> Jwt:
        """Parse a ``header.payload.signature`` token string.

        Raises
        ------
        MalformedTokenError
            If the string does not have exactly three segments, or a segment
            does not decode to the expected JSON.
        """
        if not isinstance(token, str):
            raise MalformedTokenError(
                f"Jwt.from_string: expected str, got {type(token).__name__}"
            )
        parts = token.split(".")
        if len(parts) != 3:
            raise MalformedTokenError(
                f"Jwt.from_string: wrong JWT format, expected 3 segments, got {len(parts)}"
            )

        header_raw = _decode_segment(parts[0], "header")
        body_raw = _decode_segment(parts[1], "payload")
        try:
            signature = decode_base64url(parts[2])
        except (binascii.Error, ValueError) as exc:
            raise MalformedTokenError(
                f"Jwt.from_string: invalid signature segment: {exc}"
            ) from exc

        try:
            header = JwtHeader(
                alg=str(header_raw["alg"]),
                kid=str(header_raw["kid"]),
                typ=str(header_raw["typ"]),
                cty=str(header_raw["cty"]),
            )
            body = JwtBody(
                iss=str(body_raw["iss"]),
                sub=str(body_raw["sub"]),
                iat=int(body_raw["iat"]),
                exp=int(body_raw["exp"]),
                ada=body_raw.get("ada"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedTokenError(
                f"Jwt.from_string: wrong JWT format: missing or invalid field {exc}"
            ) from exc

        jwt = cls(header, body, signature, _unsigned_data=parts[0] + "." + parts[1])
        jwt._string = token
        return jwt

    def identity(self) -> str:
        """Return the subject identity with its fixed prefix removed."""
        if not self.body.sub.startswith(SUBJECT_PREFIX):
            raise MalformedTokenError(f"Jwt.identity: wrong sub format: {self.body.sub!r}")
        return self.body.sub[len(SUBJECT_PREFIX):]

    def app_id(self) -> str:
        """Return the application id with the issuer prefix removed."""
        if not self.body.iss.startswith(ISSUER_PREFIX):
            raise MalformedTokenError(f"Jwt.app_id: wrong iss format: {self.body.iss!r}")
        return self.body.iss[len(ISSUER_PREFIX):]

    @property
    def issued_at(self) -> datetime:
        return datetime.fromtimestamp(self.body.iat, tz=timezone.utc)

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.body.exp, tz=timezone.utc)

    def is_expired(self, at: datetime | None = None) -> bool:
        """Return ``True`` if the token is expired at *at* (default: now).

        No grace period is applied here; providers add their own margin.
        """
        moment = at or datetime.now(tz=timezone.utc)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.timestamp() >= self.body.exp

    def __str__(self) -> str:
        return self._string

    def __repr__(self) -> str:
        return f"Jwt(sub={self.body.sub!r}, kid={self.header.kid!r}, exp={self.body.exp})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Jwt):
            return NotImplemented
        return self._string == other._string

    def __hash__(self) -> int:
        return hash(self._string)


class JwtGenerator:
    """Generates signed access tokens.

    Parameters
    ----------
    api_key:
        API private key used to sign tokens.
    api_key_id:
        Id of the API key; written to the ``kid`` header.
    app_id:
        Application id; written to ``iss`` after :data:`ISSUER_PREFIX`.
    access_token_signer:
        Capability used to produce the signature.
    milliseconds_to_live:
        Token lifetime. Defaults to :data:`DEFAULT_TOKEN_TTL_MS`. Must be at
        least :data:`MIN_TOKEN_TTL_MS`, since ``iat`` and ``exp`` are whole
        seconds.
    """

    def __init__(
        self,
        *,
        api_key: Any,
        api_key_id: str,
        app_id: str,
        access_token_signer: AccessTokenSigner,
        milliseconds_to_live: int = DEFAULT_TOKEN_TTL_MS,
    ) -> None:
        _require(
            "JwtGenerator",
            api_key=api_key,
            api_key_id=api_key_id,
            app_id=app_id,
            access_token_signer=access_token_signer,
        )
        if milliseconds_to_live < MIN_TOKEN_TTL_MS:
            raise ValidationError(
                f"JwtGenerator: milliseconds_to_live must be at least {MIN_TOKEN_TTL_MS}"
            )
        self.api_key = api_key
        self.api_key_id = api_key_id
        self.app_id = app_id
        self.access_token_signer = access_token_signer
        self.milliseconds_to_live = int(milliseconds_to_live)

    def generate_token(self, identity: str, additional_data: ExtraData | None = None) -> Jwt:
        """Generate a token with *identity* as its subject."""
        if not identity:
            raise ValidationError("JwtGenerator.generate_token: identity is required")

        now = datetime.now(tz=timezone.utc)
        expires = now + timedelta(milliseconds=self.milliseconds_to_live)

        body = JwtBody(
            iss=ISSUER_PREFIX + self.app_id,
            sub=SUBJECT_PREFIX + identity,
            iat=int(now.timestamp()),
            exp=int(expires.timestamp()),
            ada=dict(additional_data) if additional_data is not None else None,
        )
        header = JwtHeader(alg=self.access_token_signer.get_algorithm(), kid=self.api_key_id)

        unsigned = Jwt(header, body)
        signature = self.access_token_signer.generate_token_signature(
            unsigned.unsigned_data.encode("utf-8"), self.api_key
        )
        return Jwt(header, body, signature)


class JwtVerifier:
    """Verifies access tokens produced by a :class:`JwtGenerator`."""

    def __init__(
        self,
        *,
        access_token_signer: AccessTokenSigner,
        api_public_key: Any,
        api_key_id: str,
    ) -> None:
        _require(
            "JwtVerifier",
            access_token_signer=access_token_signer,
            api_public_key=api_public_key,
            api_key_id=api_key_id,
        )
        self.access_token_signer = access_token_signer
        self.api_public_key = api_public_key
        self.api_key_id = api_key_id

    def verify_token(self, token: Jwt) -> bool:
        """Return ``True`` if *token* was signed by the configured API key.

        Header mismatches return ``False`` without touching the signature.
        Expiry is not checked here; see :meth:`Jwt.is_expired`.
        """
        if token is None:
            raise ValidationError("JwtVerifier.verify_token: token is required")

        header = token.header
        if (
            header.kid != self.api_key_id
            or header.alg != self.access_token_signer.get_algorithm()
            or header.typ != JWT_CONTENT_TYPE
            or header.cty != VIRGIL_CONTENT_TYPE
            or not token.signature
        ):
            return False

        return self.access_token_signer.verify_token_signature(
            token.unsigned_data.encode("utf-8"), token.signature, self.api_public_key
        )


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------


def _encode_segment(doc: dict[str, Any]) -> str:
    return encode_base64url(json.dumps(doc, separators=(",", ":")).encode("utf-8"))


def _decode_segment(segment: str, name: str) -> dict[str, Any]:
    try:
        parsed = json.loads(decode_base64url(segment).decode("utf-8"))
    except (binascii.Error, ValueError) as exc:
        raise MalformedTokenError(f"Jwt.from_string: invalid {name} segment: {exc}") from exc
    if not isinstance(parsed, dict):
        raise MalformedTokenError(f"Jwt.from_string: {name} must be a JSON object")
    return parsed


def _require(owner: str, **options: Any) -> None:
    for name, value in options.items():
        if value is None or value == "":
            raise ValidationError(f"Invalid {owner} options: {name!r} is required")

# SPDX-License-Identifier: BSL-1.1
# Copyright (c) 2026 MuVeraAI Corporation

"""Access token providers.

Every provider exposes one coroutine, ``get_token(context)``, returning a
:class:`~jwt.Jwt`. The card client asks the provider for a token before each
request, so the provider decides where tokens come from:

- :class:`ConstAccessTokenProvider`: one fixed token.
- :class:`CallbackJwtProvider`: calls user code on every request.
- :class:`CachingJwtProvider`: calls user code only when the cached token is
  about to expire, and never runs two renewals at once.
- :class:`GeneratorJwtProvider`: signs tokens locally (server side only).
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol, Union

import structlog

from .jwt import Jwt, JwtGenerator
from .types import ExtraData, TokenContext, ValidationError

logger = structlog.get_logger(__name__)

JwtLike = Union[Jwt, str]

# A callback may answer synchronously or with an awaitable.
GetJwtCallback = Callable[[TokenContext], Union[JwtLike, Awaitable[JwtLike]]]

# Cached tokens this close to expiry are renewed.
EXPIRATION_MARGIN = timedelta(seconds=5)


class AccessTokenProvider(Protocol):
    async def get_token(self, context: TokenContext) -> Jwt: ...


class ConstAccessTokenProvider:
    """Always returns the token it was created with."""

    def __init__(self, access_token: Jwt) -> None:
        if access_token is None:
            raise ValidationError("ConstAccessTokenProvider: access_token is required")
        self._access_token = access_token

    async def get_token(self, context: TokenContext) -> Jwt:
        return self._access_token


class CallbackJwtProvider:
    """Calls *get_jwt* for every token request.

    The callback may return a :class:`~jwt.Jwt` or a token string, either
    directly or from a coroutine. Strings are parsed with
    :meth:`Jwt.from_string`.
    """

    def __init__(self, get_jwt: GetJwtCallback) -> None:
        if not callable(get_jwt):
            raise ValidationError("CallbackJwtProvider: get_jwt must be a function")
        self._get_jwt = get_jwt

    async def get_token(self, context: TokenContext) -> Jwt:
        return await _call_for_jwt(self._get_jwt, context)


class CachingJwtProvider:
    """Caches the token from *renew_jwt* and renews it shortly before expiry.

    Concurrent callers that arrive while a renewal is in flight all await
    that same renewal, so the callback runs at most once at a time. A failed
    renewal is reported to every waiter and leaves any previously cached
    token in place.

    Parameters
    ----------
    renew_jwt:
        Called with the :class:`~types.TokenContext` whenever a new token is
        needed. Same return conventions as :class:`CallbackJwtProvider`.
    initial_token:
        Optional token (or token string) to serve until it nears expiry.
    """

    def __init__(self, renew_jwt: GetJwtCallback, initial_token: JwtLike | None = None) -> None:
        if not callable(renew_jwt):
            raise ValidationError("CachingJwtProvider: renew_jwt must be a function")
        self._renew_jwt = renew_jwt
        self._token = _coerce_initial_token(initial_token)
        # None while idle; the shared renewal task while renewing.
        self._renewal: asyncio.Task[Jwt] | None = None

    async def get_token(self, context: TokenContext) -> Jwt:
        token = self._token
        if token is not None and not context.force_reload and not token.is_expired(
            datetime.now(tz=timezone.utc) + EXPIRATION_MARGIN
        ):
            return token

        if self._renewal is None:
            self._renewal = asyncio.ensure_future(self._renew(context))
        # Shield the shared task so one cancelled caller does not cancel it for all.
        return await asyncio.shield(self._renewal)

    async def _renew(self, context: TokenContext) -> Jwt:
        logger.debug("token_renewal_started", operation=context.operation)
        try:
            token = await _call_for_jwt(self._renew_jwt, context)
        except Exception as exc:
            logger.warning(
                "token_renewal_failed",
                operation=context.operation,
                error=type(exc).__name__,
            )
            raise
        else:
            self._token = token
            logger.debug(
                "token_renewed", operation=context.operation, expires_at=token.body.exp
            )
            return token
        finally:
            self._renewal = None


class GeneratorJwtProvider:
    """Generates a fresh token per request with a :class:`~jwt.JwtGenerator`.

    Only for use on servers that hold the API private key. The token subject
    is the context identity, else *default_identity*, else ``""``.
    """

    def __init__(
        self,
        jwt_generator: JwtGenerator,
        additional_data: ExtraData | None = None,
        default_identity: str | None = None,
    ) -> None:
        if jwt_generator is None:
            raise ValidationError("GeneratorJwtProvider: jwt_generator is required")
        self._jwt_generator = jwt_generator
        self._additional_data = additional_data
        self._default_identity = default_identity

    async def get_token(self, context: TokenContext) -> Jwt:
        identity = context.identity or self._default_identity or ""
        return self._jwt_generator.generate_token(identity, self._additional_data)


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------


async def _call_for_jwt(callback: GetJwtCallback, context: TokenContext) -> Jwt:
    result = callback(context)
    if inspect.isawaitable(result):
        result = await result
    if isinstance(result, str):
        return Jwt.from_string(result)
    if not isinstance(result, Jwt):
        raise ValidationError(
            f"token callback must return a Jwt or str, got {type(result).__name__}"
        )
    return result


def _coerce_initial_token(initial_token: JwtLike | None) -> Jwt | None:
    if initial_token is None or isinstance(initial_token, Jwt):
        return initial_token
    if isinstance(initial_token, str):
        return Jwt.from_string(initial_token)
    raise ValidationError(
        "CachingJwtProvider: expected initial_token to be a str or Jwt, "
        f"got {type(initial_token).__name__}"
    )

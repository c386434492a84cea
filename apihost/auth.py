"""
apihost — Authorization Strategies
==================================

What:  Builds request authorization predicates from simpler credential checks.
How:   An ApiAuthorizer receives the Starlette Request and returns a bool
       (or an awaitable bool). Adapters wrap token and Basic-Auth checks
       into that shape so a host only ever stores a single predicate.

Adapters:
    prefixed_authorizer(check, prefix="bearer")
        "Authorization: <prefix> <token>" → check(token)
        Wrong or missing scheme → False, check is not called.
        Errors raised by check propagate.

    basic_authorizer(check)
        "Authorization: Basic base64(user:password)" → check(user, password)
        Decode failures and errors raised by check are absorbed: they yield
        CredentialCheck.ERROR internally and False at the adapter boundary.
"""

import base64
import binascii
import logging
from enum import Enum
from typing import Awaitable, Callable, Tuple, Union

from starlette.requests import Request

from apihost.utils import maybe_await, normalize_string

logger = logging.getLogger(__name__)

ApiAuthorizer = Callable[[Request], Union[bool, Awaitable[bool]]]
TokenAuthorizer = Callable[[str], Union[bool, Awaitable[bool]]]
BasicAuthAuthorizer = Callable[[str, str], Union[bool, Awaitable[bool]]]

DEFAULT_PREFIX = "bearer"
BASIC_PREFIX = "basic"


class CredentialCheck(str, Enum):
    """Outcome of a credential check before it is collapsed to a bool."""

    GRANTED = "granted"
    DENIED = "denied"
    ERROR = "error"


def prefixed_authorizer(check: TokenAuthorizer, prefix: str = DEFAULT_PREFIX) -> ApiAuthorizer:
    """
    Wrap a token check into a request predicate for "<prefix> <token>" headers.

    The scheme match is case-insensitive; the token is everything after the
    scheme and its single separating space.
    """
    scheme = normalize_string(prefix)
    marker = scheme + " "

    async def authorize(request: Request) -> bool:
        header = (request.headers.get("authorization") or "").strip()
        if not header.lower().startswith(marker):
            return False
        return bool(await maybe_await(check(header[len(marker):])))

    return authorize


def decode_basic_credentials(token: str) -> Tuple[str, str]:
    """
    Decode a Basic-Auth token into (username, password).

    The username is normalized (trimmed, lower-cased). A payload without a
    colon is a username with an empty password.

    Raises:
        binascii.Error:      token is not valid base64
        UnicodeDecodeError:  payload is not UTF-8
    """
    token = (token or "").strip()
    if not token:
        return "", ""

    # tolerate missing padding
    padded = token + "=" * (-len(token) % 4)
    payload = base64.b64decode(padded, validate=True).decode("utf-8")

    username, sep, password = payload.partition(":")
    if not sep:
        password = ""
    return normalize_string(username), password


async def check_basic_credentials(token: str, check: BasicAuthAuthorizer) -> CredentialCheck:
    """Run a Basic-Auth check and report a tagged outcome."""
    try:
        username, password = decode_basic_credentials(token)
    except (binascii.Error, ValueError) as e:
        logger.warning("Malformed Basic-Auth credentials: %s", str(e))
        return CredentialCheck.ERROR

    try:
        is_valid = await maybe_await(check(username, password))
    except Exception as e:
        logger.warning("Basic-Auth check failed for user '%s': %s", username, str(e), exc_info=True)
        return CredentialCheck.ERROR

    return CredentialCheck.GRANTED if is_valid else CredentialCheck.DENIED


def basic_authorizer(check: BasicAuthAuthorizer) -> ApiAuthorizer:
    """Wrap a username/password check into a request predicate for Basic-Auth."""

    async def check_token(token: str) -> bool:
        outcome = await check_basic_credentials(token, check)
        return outcome is CredentialCheck.GRANTED

    return prefixed_authorizer(check_token, BASIC_PREFIX)

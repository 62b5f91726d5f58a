"""Decoding of `WWW-Authenticate: Bearer ...` challenges sent by registries."""

import re

import httpx

from registry_cleanup.exceptions import AuthenticationError
from registry_cleanup.models import AuthChallenge

AUTH_HEADER = "WWW-Authenticate"
REQUIRED_SCOPE = "pull,push,delete"

_PARAM = r'(?:realm|service|scope|error)="[^"]*"'
VALID_AUTH_HEADER = re.compile(
    rf"^[Bb]earer +{_PARAM}(?: *, *{_PARAM}){{1,3}} *,? *$"
)
AUTH_PARAM = re.compile(r'(realm|service|scope|error)="([^"]*)"')


def decode_challenge(value: str) -> AuthChallenge:
    """Decode a Bearer challenge into realm, service and scope.

    The header must hold two to four `key="value"` pairs; a missing scope
    defaults to the scope needed to delete tags.
    """
    value = value.strip()
    if not VALID_AUTH_HEADER.match(value):
        raise AuthenticationError(f"invalid auth header: {value!r}")

    params = dict(AUTH_PARAM.findall(value))
    if not params.get("realm"):
        raise AuthenticationError(f"invalid auth header, no realm: {value!r}")
    return AuthChallenge(
        realm=params["realm"],
        service=params.get("service", ""),
        scope=params.get("scope") or REQUIRED_SCOPE,
    )


def challenge_from_headers(headers: httpx.Headers) -> AuthChallenge | None:
    challenges = headers.get_list(AUTH_HEADER)
    if not challenges:
        return None
    if len(challenges) > 1:
        raise AuthenticationError(
            f"ambiguous auth challenge: {len(challenges)} {AUTH_HEADER} headers"
        )
    return decode_challenge(challenges[0])

"""Parsing of ``WWW-Authenticate: UMA ...`` challenges.

Resource servers answer an unauthorized request with a header such as::

    WWW-Authenticate: UMA realm="solid", as_uri="https://as.example", ticket="016f84e8"

The parser is deliberately lenient: it looks for the ``uma`` scheme token
anywhere in the header, scans ``key=value`` and ``key="quoted value"`` pairs
after it, and ignores keys it does not know. It never raises; a header it
cannot use yields None.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Final

from .models import AuthorizationChallenge

WWW_AUTHENTICATE: Final[str] = "WWW-Authenticate"

_SCHEME = re.compile(r"uma\s+(.+)", re.IGNORECASE | re.DOTALL)
_PARAM = re.compile(r'(\w+)=("[^"]*"|[^\s,]+)')


def get_header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup for httpx.Headers and plain mappings."""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def is_uma_challenge(header: str | None) -> bool:
    """Whether a ``WWW-Authenticate`` value starts with the UMA scheme."""
    return bool(header) and header.strip().lower().startswith("uma")


def parse_challenge_params(header: str) -> dict[str, str]:
    """Extract the auth-params following the ``uma`` scheme token.

    Quoted values are unquoted. Later duplicates overwrite earlier ones.
    """
    start = header.lower().find("uma")
    if start == -1:
        return {}

    scheme_match = _SCHEME.match(header[start:])
    params_part = scheme_match.group(1) if scheme_match else ""

    params: dict[str, str] = {}
    for key, raw_value in _PARAM.findall(params_part):
        params[key] = raw_value[1:-1] if raw_value.startswith('"') else raw_value
    return params


def parse_uma_authenticate_header(headers: Mapping[str, str]) -> AuthorizationChallenge | None:
    """Parse the UMA challenge out of response headers.

    Args:
        headers: Response headers (``httpx.Headers`` or any str mapping).

    Returns:
        The challenge with ``as_uri`` and ``ticket`` read verbatim (either
        may be None), or None if the header is absent or has no ``uma``
        token.
    """
    header = get_header(headers, WWW_AUTHENTICATE)
    if not header or "uma" not in header.lower():
        return None

    params = parse_challenge_params(header)
    return AuthorizationChallenge(as_uri=params.get("as_uri"), ticket=params.get("ticket"))

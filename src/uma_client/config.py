"""Environment-based configuration for the identity session.

Settings are read from the process environment after ``load_dotenv()``, so a
``.env`` file next to the application works the same as exported variables.

Variables:
    UMA_OIDC_ISSUER: OIDC issuer URL used for token refresh discovery.
    UMA_CLIENT_ID: OAuth client identifier.
    UMA_REFRESH_LEEWAY_SECONDS: Refresh tokens this close to expiry (default 60).
    UMA_HTTP_TIMEOUT_SECONDS: Timeout for every HTTP call (default 10).
    UMA_TOKEN_DEFAULT_TTL_SECONDS: Lifetime for cached UMA tokens issued
        without ``expires_in``. Unset keeps them indefinitely.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Final

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_DEFAULT_REFRESH_LEEWAY: Final[int] = 60
"""Default seconds before expiry at which the OIDC token is refreshed."""

_DEFAULT_HTTP_TIMEOUT: Final[float] = 10.0
"""Default HTTP timeout in seconds."""


def _float_or_none(raw: str | None, name: str) -> float | None:
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True, slots=True)
class SessionSettings:
    """Configuration for an ``OIDCSession``.

    Attributes:
        issuer: OIDC issuer URL. Needed only for token refresh.
        client_id: OAuth client identifier. Needed only for token refresh.
        refresh_leeway_seconds: Refresh when the token expires within this
            many seconds.
        http_timeout_seconds: Timeout applied to the session's HTTP client.
        uma_token_default_ttl_seconds: Lifetime for cached UMA tokens issued
            without ``expires_in``. None keeps them indefinitely.
    """

    issuer: str | None = None
    client_id: str | None = None
    refresh_leeway_seconds: int = _DEFAULT_REFRESH_LEEWAY
    http_timeout_seconds: float = _DEFAULT_HTTP_TIMEOUT
    uma_token_default_ttl_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.refresh_leeway_seconds < 0:
            raise ValueError(
                f"refresh_leeway_seconds must be non-negative, got {self.refresh_leeway_seconds}"
            )
        if self.http_timeout_seconds <= 0:
            raise ValueError(
                f"http_timeout_seconds must be positive, got {self.http_timeout_seconds}"
            )
        ttl = self.uma_token_default_ttl_seconds
        if ttl is not None and ttl <= 0:
            raise ValueError(f"uma_token_default_ttl_seconds must be positive, got {ttl}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SessionSettings:
        """Build settings from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``. When omitted,
                a ``.env`` file is loaded first.

        Raises:
            ValueError: If a numeric variable is malformed or out of range.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        leeway = _float_or_none(environ.get("UMA_REFRESH_LEEWAY_SECONDS"), "UMA_REFRESH_LEEWAY_SECONDS")
        timeout = _float_or_none(environ.get("UMA_HTTP_TIMEOUT_SECONDS"), "UMA_HTTP_TIMEOUT_SECONDS")

        settings = cls(
            issuer=environ.get("UMA_OIDC_ISSUER") or None,
            client_id=environ.get("UMA_CLIENT_ID") or None,
            refresh_leeway_seconds=int(leeway) if leeway is not None else _DEFAULT_REFRESH_LEEWAY,
            http_timeout_seconds=timeout if timeout is not None else _DEFAULT_HTTP_TIMEOUT,
            uma_token_default_ttl_seconds=_float_or_none(
                environ.get("UMA_TOKEN_DEFAULT_TTL_SECONDS"), "UMA_TOKEN_DEFAULT_TTL_SECONDS"
            ),
        )
        logger.debug("Loaded session settings for issuer %s", settings.issuer)
        return settings

"""Process-wide default session.

Most code should create and pass an ``OIDCSession`` explicitly. For
applications that want a single shared session, this module provides a
guarded lazy-init cell: options may be configured until the session is first
requested, after which reconfiguration fails.
"""

from __future__ import annotations

import threading
from typing import Any

from .config import SessionSettings
from .errors import SessionAlreadyCreated
from .session import OIDCSession

_lock = threading.Lock()
_session: OIDCSession | None = None
_options: dict[str, Any] = {}


def configure_default_session(**options: Any) -> None:
    """Set the keyword arguments used to build the default session.

    Args:
        **options: Passed to ``OIDCSession``. Without ``settings``, settings
            are read from the environment.

    Raises:
        SessionAlreadyCreated: If ``get_default_session`` was already called.
    """
    global _options
    with _lock:
        if _session is not None:
            raise SessionAlreadyCreated("Default session has already been created.")
        _options = dict(options)


def get_default_session() -> OIDCSession:
    """Return the default session, creating it on first call."""
    global _session
    with _lock:
        if _session is None:
            options = dict(_options)
            if options.get("settings") is None:
                options["settings"] = SessionSettings.from_env()
            _session = OIDCSession(**options)
        return _session


def reset_default_session() -> None:
    """Forget the default session and its options. Intended for tests."""
    global _session, _options
    with _lock:
        _session = None
        _options = {}

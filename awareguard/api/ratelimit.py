"""Shared rate limiter keyed on client address.

``AG_RATE_LIMIT`` sets the default limit for every route; ``none``
disables limiting entirely.
"""

from __future__ import annotations

import warnings

# Suppress slowapi's use of deprecated asyncio.iscoroutinefunction
warnings.filterwarnings(
    "ignore",
    message=r".*asyncio\.iscoroutinefunction.*",
    category=DeprecationWarning,
    module=r"slowapi\..*",
)
from slowapi import Limiter  # noqa: E402
from slowapi.util import get_remote_address  # noqa: E402

from awareguard.config import settings  # noqa: E402

#: Tighter limit for endpoints that reveal whether a token is valid.
TOKEN_CHECK_LIMIT = "30/minute"

_rate_limit_enabled = settings.rate_limit.lower() != "none"
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit] if _rate_limit_enabled else [],
    enabled=_rate_limit_enabled,
)

"""Per-client rate limiting for the API."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import Settings, get_settings


def build_limiter(settings: Settings) -> Limiter:
    """
    Create the limiter applied to every route by ``SlowAPIMiddleware``.

    Counters live in process memory, so each worker enforces its own window.
    """
    window = f"{settings.rate_limit_max_requests}/{settings.rate_limit_window_seconds} seconds"
    return Limiter(
        key_func=get_remote_address,
        storage_uri="memory://",
        default_limits=[window],
        enabled=settings.rate_limit_enabled,
    )


limiter = build_limiter(get_settings())

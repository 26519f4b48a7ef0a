"""Input validation shared by the request schemas and the service layer.

The service validates again even when the HTTP schema already did, so that
callers using ``ResolutionService`` directly get the same guarantees before
any cache or store access happens.
"""

from urllib.parse import urlsplit

import validators

from urlshortener.config import Settings, get_settings
from urlshortener.exceptions import ValidationError

__all__ = ["check_target_url", "check_expires_in"]

_ALLOWED_SCHEMES = ("http", "https")


def check_target_url(url: str, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("url", "URL is required")
    url = url.strip()
    if len(url) > settings.MAX_URL_LENGTH:
        raise ValidationError("url", f"URL is too long (max {settings.MAX_URL_LENGTH} characters)")
    if urlsplit(url).scheme.lower() not in _ALLOWED_SCHEMES:
        raise ValidationError("url", "URL must use http or https")
    if not validators.url(url):
        raise ValidationError("url", "Invalid URL format")
    return url


def check_expires_in(expires_in: int | None, settings: Settings | None = None) -> int | None:
    if expires_in is None:
        return None
    settings = settings or get_settings()
    if isinstance(expires_in, bool) or not isinstance(expires_in, int):
        raise ValidationError("expires_in", "Expiration must be an integer number of seconds")
    if not settings.MIN_EXPIRES_IN_SECONDS <= expires_in <= settings.MAX_EXPIRES_IN_SECONDS:
        raise ValidationError(
            "expires_in",
            f"Expiration must be between {settings.MIN_EXPIRES_IN_SECONDS} seconds "
            f"and {settings.MAX_EXPIRES_IN_SECONDS} seconds",
        )
    return expires_in

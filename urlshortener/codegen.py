"""Collision-checked short-code generation.

Codes are drawn uniformly from a 57-symbol alphabet that leaves out the
visually ambiguous ``I``, ``O``, ``i``, ``l`` and ``o``. Random codes do not
leak creation order or traffic volume the way sequential ids would.

Generation Flow
===============
::
    ┌──────────────┐
    │ attempt < N? │──NO──► random code of fallback length (10),
    └──────┬───────┘        returned without a store check
           │ YES
           ▼
    ┌──────────────┐
    │ random code  │
    │ (length 7)   │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ code_exists? │──YES──► next attempt
    └──────┬───────┘
           │ NO
           ▼
        return

Uniqueness is checked against every code ever issued, soft-deleted ones
included, so an old external link never starts resolving to a new target.
"""

import logging

from nanoid import generate
from prometheus_client import Counter

from urlshortener.config import Settings, get_settings
from urlshortener.store import URLStore

__all__ = ["ALPHABET", "ShortCodeGenerator", "random_code"]

ALPHABET = "0123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghjkmnpqrstuvwxyz"

CODE_COLLISIONS_TOTAL = Counter(
    "url_shortener_code_collisions_total",
    "Generated short codes that were already taken",
)
CODE_FALLBACKS_TOTAL = Counter(
    "url_shortener_code_fallbacks_total",
    "Short codes issued at the fallback length after exhausting attempts",
)


def random_code(length: int) -> str:
    if not isinstance(length, int) or length <= 0:
        raise ValueError(f"length must be a positive integer, got {length!r}")
    return generate(ALPHABET, length)


class ShortCodeGenerator:
    def __init__(self, store: URLStore, settings: Settings | None = None, logger: logging.Logger | None = None):
        self._store = store
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger("urlshortener")

    async def generate(self, max_attempts: int | None = None) -> str:
        """Return a code not present in the store.

        After ``max_attempts`` collisions a single longer code is returned
        unchecked; at 57^10 the residual collision odds are negligible.
        Store failures propagate as ``StoreUnavailableError``.
        """
        attempts = self._settings.CODE_GENERATION_ATTEMPTS if max_attempts is None else max_attempts
        for attempt in range(1, attempts + 1):
            candidate = random_code(self._settings.SHORT_CODE_LENGTH)
            if not await self._store.code_exists(candidate):
                return candidate
            CODE_COLLISIONS_TOTAL.inc()
            self._logger.warning(f"Short code collision on attempt {attempt}/{attempts}: {candidate}")

        CODE_FALLBACKS_TOTAL.inc()
        self._logger.warning(
            f"Exhausted {attempts} attempts, issuing {self._settings.SHORT_CODE_FALLBACK_LENGTH}-char code"
        )
        return random_code(self._settings.SHORT_CODE_FALLBACK_LENGTH)

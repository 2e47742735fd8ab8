"""
Organization slug normalization and collision resolution.

Candidates are probed deterministically (``base``, ``base-2``, ``base-3``...)
so a retried registration resolves to the same slug.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog

log = structlog.get_logger()

SLUG_MIN_LENGTH = 3
SLUG_MAX_LENGTH = 48
DEFAULT_MAX_ATTEMPTS = 10

_SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")
_NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")

RESERVED_SLUGS = frozenset({
    "about", "accept-invite", "account", "admin", "api", "app", "assets",
    "auth", "billing", "blog", "dashboard", "docs", "help", "invite",
    "invites", "login", "logout", "mail", "null", "org", "orgs", "register",
    "root", "settings", "signup", "static", "status", "support", "system",
    "undefined", "verify-email", "www",
})


class SlugError(ValueError):
    pass


class InvalidSlugError(SlugError):
    def __init__(self, slug: str, reason: str):
        self.slug = slug
        self.reason = reason
        super().__init__(f"Invalid slug {slug!r}: {reason}")


class SlugExhaustedError(SlugError):
    def __init__(self, base: str, attempts: int):
        self.base = base
        self.attempts = attempts
        super().__init__(f"No available slug for {base!r} after {attempts} attempts")


@dataclass(frozen=True)
class SlugValidation:
    valid: bool
    reason: Optional[str] = None


def validate_slug(slug: object) -> SlugValidation:
    if not isinstance(slug, str) or not slug:
        return SlugValidation(False, "Slug is required")
    if len(slug) < SLUG_MIN_LENGTH:
        return SlugValidation(False, f"Slug must be at least {SLUG_MIN_LENGTH} characters")
    if len(slug) > SLUG_MAX_LENGTH:
        return SlugValidation(False, f"Slug must be at most {SLUG_MAX_LENGTH} characters")
    if not _SLUG_PATTERN.match(slug):
        return SlugValidation(
            False, "Slug may only contain lowercase letters, digits and hyphens"
        )
    if slug.startswith("-") or slug.endswith("-"):
        return SlugValidation(False, "Slug cannot start or end with a hyphen")
    if slug in RESERVED_SLUGS:
        return SlugValidation(False, "Slug is reserved")
    return SlugValidation(True)


def slugify(name: object) -> str:
    """Lowercase, collapse non-alphanumeric runs to ``-`` and trim to 48 chars."""
    if not isinstance(name, str):
        return ""
    slug = _NON_ALNUM_RUN.sub("-", name.lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH].rstrip("-")


def _candidate(base: str, attempt: int) -> str:
    if attempt == 1:
        return base
    suffix = f"-{attempt}"
    return base[: SLUG_MAX_LENGTH - len(suffix)].rstrip("-") + suffix


async def assign_available_slug(
    base: str,
    exists: Callable[[str], Awaitable[bool]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> str:
    """Return the first candidate for which ``exists`` is False.

    ``base`` counts as the first attempt. Raises SlugExhaustedError after
    ``max_attempts`` probes.
    """
    validation = validate_slug(base)
    if not validation.valid:
        raise InvalidSlugError(base, validation.reason or "invalid")

    for attempt in range(1, max_attempts + 1):
        candidate = _candidate(base, attempt)
        if not await exists(candidate):
            if attempt > 1:
                log.info("slug.collision_resolved", base=base, slug=candidate, attempts=attempt)
            return candidate

    log.warning("slug.exhausted", base=base, attempts=max_attempts)
    raise SlugExhaustedError(base, max_attempts)

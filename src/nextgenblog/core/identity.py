"""Slug and filename derivation for posts."""

import re
from datetime import date

from nextgenblog.core.errors import ValidationError

DISALLOWED_PATTERN = re.compile(r"[^a-z0-9\s]")
WHITESPACE_PATTERN = re.compile(r"\s+")
FILENAME_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2})-(.+)\.md$")


def slugify(title: str) -> str:
    """Convert a title into a URL-safe slug.

    Lowercases, drops everything outside ``[a-z0-9]`` and whitespace, then
    turns each whitespace run into a single hyphen.
    """
    cleaned = DISALLOWED_PATTERN.sub("", title.lower()).strip()
    return WHITESPACE_PATTERN.sub("-", cleaned)


def derive_filename(day: date, slug: str) -> str:
    """Canonical filename, also the public identifier of a post."""
    return f"{day.isoformat()}-{slug}.md"


def derive_identity(title: str, day: date) -> tuple[str, str]:
    """Return ``(slug, filename)`` for a title and date.

    Raises:
        ValidationError: If the title has no letters or digits to build a
            slug from.
    """
    slug = slugify(title)
    if not slug:
        raise ValidationError("Title must contain at least one letter or digit")
    return slug, derive_filename(day, slug)


def slug_from_filename(filename: str) -> str:
    """Recover the slug part of a ``{date}-{slug}.md`` filename."""
    match = FILENAME_PATTERN.match(filename)
    if match:
        return match.group(2)
    return filename.removesuffix(".md")

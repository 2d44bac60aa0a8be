"""Markdown documents with a frontmatter header.

Post files look like::

    ---
    title: "Hello World"
    date: 2024-01-01
    description: "First post"
    ---

    Body text in markdown.

The header is not YAML: each line is ``key: value``, split on the first
colon, with one pair of surrounding quotes removed. A header line that is
exactly ``---`` cannot be represented, there is no escaping.
"""

import re
from dataclasses import dataclass, field
from datetime import date

from nextgenblog.core.models import PostFields

FRONTMATTER_PATTERN = re.compile(
    r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)(.*)\Z",
    re.DOTALL,
)

FIELDS = ("title", "date", "description")
QUOTES = ('"', "'")


@dataclass
class Frontmatter:
    """Header fields. Absent keys are empty strings."""

    title: str = ""
    date: str = ""
    description: str = ""


@dataclass
class Decoded:
    """Successful decode."""

    frontmatter: Frontmatter
    body: str
    ok: bool = field(default=True, init=False)

    def to_fields(self) -> PostFields:
        """Validate the header into post fields.

        Raises:
            pydantic.ValidationError: If the title is empty or the date is
                not an ISO calendar date.
        """
        return PostFields(
            title=self.frontmatter.title,
            date=self.frontmatter.date,
            description=self.frontmatter.description,
            body=self.body,
        )


@dataclass
class DecodeFailure:
    """Document could not be decoded."""

    reason: str
    ok: bool = field(default=False, init=False)


DecodeResult = Decoded | DecodeFailure


def _quote(value: str) -> str:
    return f'"{value}"'


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in QUOTES:
        return value[1:-1]
    return value


def encode(post: PostFields) -> str:
    """Serialize post fields into a frontmatter document."""
    day = post.date.isoformat() if isinstance(post.date, date) else str(post.date)
    header = "\n".join(
        [
            f"title: {_quote(post.title)}",
            f"date: {day}",
            f"description: {_quote(post.description)}",
        ]
    )
    return f"---\n{header}\n---\n\n{post.body}\n"


def parse_header(header: str) -> Frontmatter | DecodeFailure:
    """Parse ``key: value`` lines into a Frontmatter."""
    values: dict[str, str] = {}
    for number, line in enumerate(header.splitlines(), start=1):
        if not line.strip():
            continue
        if ":" not in line:
            return DecodeFailure(f"Header line {number} has no ':'")
        key, value = line.split(":", 1)
        key = key.strip()
        if key not in FIELDS:
            return DecodeFailure(f"Unexpected header field '{key}'")
        values[key] = _unquote(value.strip())
    return Frontmatter(**values)


def decode(document: str) -> DecodeResult:
    """Split a document into frontmatter and body."""
    match = FRONTMATTER_PATTERN.match(document)
    if not match:
        return DecodeFailure("Document does not start with a frontmatter block")

    header = parse_header(match.group(1))
    if isinstance(header, DecodeFailure):
        return header

    body = match.group(2)
    # encode() writes a blank separator line and one trailing newline
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]
    if body.endswith("\n"):
        body = body[:-1]
    return Decoded(frontmatter=header, body=body)

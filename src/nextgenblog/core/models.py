"""Data models for NextGenBlog."""

import re
from datetime import date, datetime

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    computed_field,
    field_validator,
)
from pydantic.alias_generators import to_camel

_LINE_BREAKS = re.compile(r"\s*[\r\n]+\s*")


def _single_line(value: str) -> str:
    return _LINE_BREAKS.sub(" ", value).strip()


class PostFields(BaseModel):
    """Admin-submitted post fields. Slug and filename are derived from these."""

    title: str = Field(min_length=1)
    date: date
    description: str = ""
    body: str = Field(default="", validation_alias=AliasChoices("body", "content"))

    @field_validator("title", "description")
    @classmethod
    def keep_on_one_line(cls, value: str) -> str:
        """Frontmatter values are line-oriented."""
        return _single_line(value)


class PostSummary(BaseModel):
    """Listing entry for a post."""

    title: str
    date: date
    description: str = ""
    slug: str
    filename: str


class Post(PostSummary):
    """A full post including its markdown body."""

    body: str = ""

    def summary(self) -> PostSummary:
        return PostSummary(**self.model_dump(exclude={"body"}))


class IndexReport(BaseModel):
    """Drift between individual post documents and the denormalised index.

    ``malformed_posts`` lists documents that cannot be decoded. A rebuild
    cannot index them, so they do not count against ``consistent``.
    """

    missing_from_index: list[str] = Field(default_factory=list)
    stale_entries: list[str] = Field(default_factory=list)
    outdated_entries: list[str] = Field(default_factory=list)
    index_corrupt: bool = False
    malformed_posts: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def consistent(self) -> bool:
        return not (
            self.index_corrupt
            or self.missing_from_index
            or self.stale_entries
            or self.outdated_entries
        )


class MessageCreate(BaseModel):
    """Contact form submission."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    subject: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1)


class Message(BaseModel):
    """A stored contact message, serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    id: int
    name: str
    email: str
    subject: str
    message: str
    is_read: bool = False
    is_archived: bool = False
    created_at: datetime | None = None


class GitHubIdentity(BaseModel):
    """Public identity of a GitHub account."""

    id: int
    login: str


class AdminIdentity(BaseModel):
    """Identity carried by a valid admin credential."""

    user_id: int
    username: str

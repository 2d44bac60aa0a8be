"""Storage abstraction for blog posts."""

import logging
from abc import ABC, abstractmethod

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from nextgenblog.core.database import PostAliasRow, PostRow
from nextgenblog.core.errors import Conflict, NotFound
from nextgenblog.core.identity import derive_identity
from nextgenblog.core.models import IndexReport, Post, PostFields, PostSummary

logger = logging.getLogger(__name__)


class PostStore(ABC):
    """Abstract base class for post storage.

    Posts are addressed by their canonical filename, ``{date}-{slug}.md``.
    """

    @abstractmethod
    async def list_posts(self) -> list[PostSummary]:
        """List post summaries, newest date first, then newest created first."""
        ...

    @abstractmethod
    async def get_post(self, identifier: str) -> Post | None:
        """Get a post by filename. Returns None if not found."""
        ...

    @abstractmethod
    async def create_post(self, fields: PostFields) -> Post:
        """Create a post. Raises Conflict if its filename or slug is taken."""
        ...

    @abstractmethod
    async def update_post(self, identifier: str, fields: PostFields) -> Post:
        """Replace a post's fields, re-deriving slug and filename.

        Raises NotFound if the post does not exist and Conflict if the new
        identity belongs to a different post.
        """
        ...

    @abstractmethod
    async def delete_post(self, identifier: str) -> bool:
        """Delete a post. Returns True if deleted, False if not found."""
        ...

    @abstractmethod
    async def check_index(self) -> IndexReport:
        """Report drift between post documents and the post index."""
        ...

    @abstractmethod
    async def rebuild_index(self) -> IndexReport:
        """Regenerate the post index from the post documents."""
        ...


def _row_to_post(row: PostRow) -> Post:
    return Post(
        title=row.title,
        date=row.date,
        description=row.description,
        body=row.content,
        slug=row.slug,
        filename=row.filename,
    )


class DatabasePostStore(PostStore):
    """Relational storage implementation.

    One row per post with unique ``slug`` and ``filename`` columns. When an
    edit renames a post its previous filename is kept in ``post_aliases``
    so old links still resolve.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _find(self, session: Session, identifier: str) -> PostRow | None:
        """Look up a post by current filename, then by previous filename."""
        row = session.scalars(select(PostRow).where(PostRow.filename == identifier)).first()
        if row is None:
            alias = session.get(PostAliasRow, identifier)
            if alias is not None:
                row = session.get(PostRow, alias.post_id)
        return row

    def _ensure_unique(
        self, session: Session, slug: str, filename: str, exclude_id: int | None = None
    ) -> None:
        query = select(PostRow).where(or_(PostRow.slug == slug, PostRow.filename == filename))
        if exclude_id is not None:
            query = query.where(PostRow.id != exclude_id)
        existing = session.scalars(query).first()
        if existing is None:
            return
        if existing.filename == filename:
            raise Conflict(f"A post with filename '{filename}' already exists")
        raise Conflict(f"A post with slug '{slug}' already exists")

    def _commit(self, session: Session, filename: str) -> None:
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise Conflict(f"A post with filename '{filename}' already exists") from e

    async def list_posts(self) -> list[PostSummary]:
        """List all posts."""
        with self.session_factory() as session:
            rows = session.scalars(
                select(PostRow).order_by(PostRow.date.desc(), PostRow.id.desc())
            ).all()
            return [_row_to_post(row).summary() for row in rows]

    async def get_post(self, identifier: str) -> Post | None:
        """Get a post by filename or previous filename."""
        with self.session_factory() as session:
            row = self._find(session, identifier)
            return _row_to_post(row) if row is not None else None

    async def create_post(self, fields: PostFields) -> Post:
        """Create a post."""
        slug, filename = derive_identity(fields.title, fields.date)
        with self.session_factory() as session:
            self._ensure_unique(session, slug, filename)
            # A new post takes precedence over a stale alias of the same name
            session.execute(delete(PostAliasRow).where(PostAliasRow.filename == filename))
            row = PostRow(
                title=fields.title,
                date=fields.date,
                description=fields.description,
                content=fields.body,
                slug=slug,
                filename=filename,
            )
            session.add(row)
            self._commit(session, filename)
            logger.info("Created post %s", filename)
            return _row_to_post(row)

    async def update_post(self, identifier: str, fields: PostFields) -> Post:
        """Update a post, renaming it if title or date changed."""
        slug, filename = derive_identity(fields.title, fields.date)
        with self.session_factory() as session:
            row = self._find(session, identifier)
            if row is None:
                raise NotFound(f"Post '{identifier}' not found")
            self._ensure_unique(session, slug, filename, exclude_id=row.id)

            previous = row.filename
            if filename != previous:
                session.merge(PostAliasRow(filename=previous, post_id=row.id))
                session.execute(delete(PostAliasRow).where(PostAliasRow.filename == filename))

            row.title = fields.title
            row.date = fields.date
            row.description = fields.description
            row.content = fields.body
            row.slug = slug
            row.filename = filename
            self._commit(session, filename)

            if filename != previous:
                logger.info("Renamed post %s -> %s", previous, filename)
            else:
                logger.info("Updated post %s", filename)
            return _row_to_post(row)

    async def delete_post(self, identifier: str) -> bool:
        """Delete a post and its aliases."""
        with self.session_factory() as session:
            row = self._find(session, identifier)
            if row is None:
                return False
            filename = row.filename
            session.execute(delete(PostAliasRow).where(PostAliasRow.post_id == row.id))
            session.delete(row)
            session.commit()
        logger.info("Deleted post %s", filename)
        return True

    async def check_index(self) -> IndexReport:
        """The table is its own index."""
        return IndexReport()

    async def rebuild_index(self) -> IndexReport:
        """Nothing to rebuild."""
        return IndexReport()

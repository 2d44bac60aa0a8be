"""Contact message inbox.

Messages start unread and active. Reading is one-way; archiving can be
undone. Archived messages never count toward the unread badge.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from nextgenblog.core.database import MessageRow
from nextgenblog.core.errors import NotFound
from nextgenblog.core.models import Message, MessageCreate

logger = logging.getLogger(__name__)


class MessageInbox:
    """CRUD and state transitions over stored contact messages."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _require(self, session: Session, message_id: int) -> MessageRow:
        row = session.get(MessageRow, message_id)
        if row is None:
            raise NotFound("Message not found")
        return row

    async def list_messages(self, include_archived: bool = False) -> list[Message]:
        """List messages, newest first."""
        query = select(MessageRow).order_by(MessageRow.created_at.desc(), MessageRow.id.desc())
        if not include_archived:
            query = query.where(MessageRow.is_archived.is_(False))
        with self.session_factory() as session:
            return [Message.model_validate(row) for row in session.scalars(query)]

    async def get_message(self, message_id: int) -> Message | None:
        with self.session_factory() as session:
            row = session.get(MessageRow, message_id)
            return Message.model_validate(row) if row is not None else None

    async def create_message(self, fields: MessageCreate) -> Message:
        with self.session_factory() as session:
            row = MessageRow(
                name=fields.name,
                email=str(fields.email),
                subject=fields.subject,
                message=fields.message,
                is_read=False,
                is_archived=False,
            )
            session.add(row)
            session.commit()
            logger.info("Contact message %d received from %s: %s", row.id, row.email, row.subject)
            return Message.model_validate(row)

    async def _set(self, message_id: int, **changes: bool) -> Message:
        with self.session_factory() as session:
            row = self._require(session, message_id)
            dirty = False
            for name, value in changes.items():
                if getattr(row, name) != value:
                    setattr(row, name, value)
                    dirty = True
            if dirty:
                session.commit()
            return Message.model_validate(row)

    async def mark_read(self, message_id: int) -> Message:
        """Mark a message read. Marking it again is a no-op."""
        return await self._set(message_id, is_read=True)

    async def archive(self, message_id: int) -> Message:
        return await self._set(message_id, is_archived=True)

    async def unarchive(self, message_id: int) -> Message:
        return await self._set(message_id, is_archived=False)

    async def delete_message(self, message_id: int) -> bool:
        """Delete a message. Returns True if deleted, False if not found."""
        with self.session_factory() as session:
            row = session.get(MessageRow, message_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
        logger.info("Deleted contact message %d", message_id)
        return True

    async def count_unread(self) -> int:
        """Unread messages that are not archived."""
        query = (
            select(func.count())
            .select_from(MessageRow)
            .where(MessageRow.is_read.is_(False), MessageRow.is_archived.is_(False))
        )
        with self.session_factory() as session:
            return session.scalar(query) or 0

"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text

from guestbook.storage import Base

TITLE_MAX_LENGTH = 120
CONTENT_MAX_LENGTH = 2000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(Base):
    """
    A single guestbook note.

    Table: guestbook_messages
    Arrangement lives in order_index (list boards) or pos_x/pos_y (canvas
    boards); content edits and arrangement updates never touch each other's
    columns.
    """
    __tablename__ = "guestbook_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(TITLE_MAX_LENGTH), nullable=False)
    content = Column(Text, nullable=False)
    order_index = Column(Integer, nullable=False, default=0, index=True)
    pos_x = Column(Integer, nullable=False, default=0)
    pos_y = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Message id={self.id} order_index={self.order_index} pos=({self.pos_x}, {self.pos_y})>"

"""
Message service: input rules and orchestration on top of the record store.

- create/edit trim their inputs, replace a blank title with the placeholder
  and truncate over-long fields instead of rejecting them
- rearrange validates the whole batch before any write reaches the store
"""

import logging
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from guestbook.arrangement import ArrangementEngine, ArrangementMode
from guestbook.errors import ContentRequired, InvalidBatchShape
from guestbook.models import CONTENT_MAX_LENGTH, TITLE_MAX_LENGTH
from guestbook.storage import (
    insert_message,
    list_messages,
    update_message_content,
)

logger = logging.getLogger(__name__)

DEFAULT_TITLE_PLACEHOLDER = "untitled"


def clean_text(value: Optional[str], limit: int) -> Optional[str]:
    """Trim surrounding whitespace and cut to `limit` characters; None passes through."""
    if value is None:
        return None
    return value.strip()[:limit]


class MessageService:
    """Create, edit, list and rearrange guestbook messages."""

    def __init__(
        self,
        db: Session,
        engine: ArrangementEngine,
        title_placeholder: str = DEFAULT_TITLE_PLACEHOLDER,
        strict_reorder: bool = False,
    ) -> None:
        self.db = db
        self.engine = engine
        self.title_placeholder = title_placeholder
        self.strict_reorder = strict_reorder

    def _title_or_placeholder(self, title: Optional[str]) -> str:
        cleaned = clean_text(title, TITLE_MAX_LENGTH)
        return cleaned or self.title_placeholder[:TITLE_MAX_LENGTH]

    def list_messages(self) -> list:
        return list_messages(self.db)

    def create(self, title: Optional[str], content: Optional[str]):
        content = clean_text(content, CONTENT_MAX_LENGTH)
        if not content:
            logger.info("Rejected create with empty content")
            raise ContentRequired()

        placement = self.engine.initial_placement(self.db)
        return insert_message(
            self.db,
            title=self._title_or_placeholder(title),
            content=content,
            order_index=placement.order_index,
            pos_x=placement.pos_x,
            pos_y=placement.pos_y,
        )

    def edit(self, message_id: int, title: Optional[str] = None, content: Optional[str] = None):
        """Update title and/or content of one message; arrangement is never touched."""
        if title is not None:
            title = self._title_or_placeholder(title)
        content = clean_text(content, CONTENT_MAX_LENGTH)
        return update_message_content(self.db, message_id, title=title, content=content)

    def validate_batch(self, batch: Any) -> list:
        """
        Check the structure of a rearrangement batch for the engine's mode.

        Every item must be an object with an integer `id` plus integer
        `order_index` (list mode) or `pos_x`/`pos_y` (spatial mode). One bad
        item rejects the whole batch.

        Raises:
            InvalidBatchShape: the payload is not a well-formed batch
        """
        if not isinstance(batch, list):
            raise InvalidBatchShape("Rearrangement batch must be a list")

        adapter = TypeAdapter(list[self.engine.item_type])
        try:
            items = adapter.validate_python(batch)
        except ValidationError as e:
            logger.info(f"Rejected malformed rearrangement batch: {e.error_count()} error(s)")
            raise InvalidBatchShape(
                f"Rearrangement batch is malformed: {e.errors()[0]['msg']}"
            ) from e

        if self.strict_reorder:
            self._check_permutation(items)
        return items

    def _check_permutation(self, items: list) -> None:
        ids = [item.id for item in items]
        if len(set(ids)) != len(ids):
            raise InvalidBatchShape("Rearrangement batch contains duplicate ids")
        if self.engine.mode is ArrangementMode.LIST:
            indices = [item.order_index for item in items]
            if len(set(indices)) != len(indices):
                raise InvalidBatchShape("Rearrangement batch contains duplicate order_index values")

    def rearrange(self, batch: Any) -> int:
        """Validate a rearrangement batch, then apply it. Returns the number of rows written."""
        items = self.validate_batch(batch)
        return self.engine.apply(self.db, items)

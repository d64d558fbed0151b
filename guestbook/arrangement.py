"""
Arrangement engine: where new notes land and how rearrangement batches are applied.

Two board layouts are supported:

- ``list``: notes are ordered by ``order_index``. New notes append after the
  current maximum so existing indices never shift.
- ``spatial``: notes sit on a canvas at ``(pos_x, pos_y)``. New notes are laid
  out on a three-column grid by creation count so they never overlap, without
  coordinating with other clients.

Both layouts are last-write-wins per row. A batch is applied inside a single
transaction, so either every item in it commits or none does.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Union

from sqlalchemy.orm import Session

from guestbook.schemas import OrderItem, PositionItem
from guestbook.storage import (
    count_messages,
    get_max_order_index,
    update_message_arrangement,
)

logger = logging.getLogger(__name__)

GRID_COLUMNS = 3
GRID_ORIGIN = 32
GRID_CELL_WIDTH = 260
GRID_CELL_HEIGHT = 180


class ArrangementMode(str, Enum):
    LIST = "list"
    SPATIAL = "spatial"


@dataclass(frozen=True)
class Placement:
    """Arrangement fields assigned to a note at creation."""
    order_index: int
    pos_x: int = 0
    pos_y: int = 0


def grid_position(count: int) -> tuple[int, int]:
    """Pixel position of the count-th note (0-indexed) on the initial grid."""
    row, col = divmod(count, GRID_COLUMNS)
    return GRID_ORIGIN + col * GRID_CELL_WIDTH, GRID_ORIGIN + row * GRID_CELL_HEIGHT


ArrangementItem = Union[OrderItem, PositionItem]


class ArrangementEngine:
    """Computes initial placement and applies rearrangement batches for one board mode."""

    def __init__(self, mode: Union[ArrangementMode, str] = ArrangementMode.LIST) -> None:
        self.mode = ArrangementMode(mode)

    @property
    def item_type(self) -> type:
        """Schema a rearrangement item must match in this mode."""
        return OrderItem if self.mode is ArrangementMode.LIST else PositionItem

    def initial_placement(self, db: Session) -> Placement:
        max_index = get_max_order_index(db)
        order_index = 0 if max_index is None else max_index + 1

        if self.mode is ArrangementMode.LIST:
            return Placement(order_index=order_index)

        pos_x, pos_y = grid_position(count_messages(db))
        return Placement(order_index=order_index, pos_x=pos_x, pos_y=pos_y)

    def apply(self, db: Session, items: Sequence[ArrangementItem]) -> int:
        """
        Persist a validated batch in one transaction.

        Indices and coordinates are written exactly as given. Any failure
        (unknown id, store error) rolls back the whole batch and re-raises.

        Returns:
            Number of messages updated
        """
        if not items:
            return 0

        logger.info(f"Applying {self.mode.value} rearrangement of {len(items)} item(s)")
        try:
            for item in items:
                if self.mode is ArrangementMode.LIST:
                    update_message_arrangement(
                        db, item.id, order_index=item.order_index, commit=False
                    )
                else:
                    update_message_arrangement(
                        db, item.id, pos_x=item.pos_x, pos_y=item.pos_y, commit=False
                    )
            db.commit()
        except Exception:
            db.rollback()
            logger.warning("Rearrangement rolled back")
            raise

        logger.info(f"Rearrangement committed: {len(items)} item(s)")
        return len(items)

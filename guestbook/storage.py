import logging
import threading
from concurrent.futures import Future
from contextlib import contextmanager
from functools import lru_cache
from typing import Callable, Generator, Iterator, Optional

from sqlalchemy import create_engine, func, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from guestbook.config import get_settings
from guestbook.errors import ContentRequired, NotFound, NothingToUpdate, StoreUnavailable

logger = logging.getLogger(__name__)

# Sessions are bound per call so the engine can be created lazily
SessionLocal = sessionmaker(autoflush=False)

# Base class for SQLAlchemy models
Base = declarative_base()


@lru_cache()
def get_engine() -> Engine:
    """
    Create the SQLAlchemy engine on first use.

    Raises StoreUnavailable when DATABASE_URL is not configured. Failures are
    not cached, so fixing the environment and clearing the settings cache is
    enough to recover.
    """
    database_url = get_settings().DATABASE_URL
    if not database_url:
        logger.error("DATABASE_URL is not configured")
        raise StoreUnavailable("DATABASE_URL is not configured")

    connect_args = {}
    if database_url.startswith("sqlite"):
        # check_same_thread=False is required for SQLite to work with FastAPI's threadpool
        connect_args["check_same_thread"] = False

    logger.debug(f"Creating database engine for {database_url.split('://')[0]}")
    return create_engine(database_url, connect_args=connect_args, echo=False)


def dispose_engine() -> None:
    """Close pooled connections if an engine was ever created."""
    if get_engine.cache_info().currsize:
        get_engine().dispose()
        get_engine.cache_clear()
        logger.info("Database engine disposed")


# =============================================================================
# Schema Initialization
# =============================================================================

class SchemaGate:
    """
    Runs a schema initializer at most once per process, shared by concurrent callers.

    The first caller installs a Future and runs the initializer; callers that
    arrive while it is running block on that same Future instead of issuing
    their own CREATE statements. A failed attempt is cleared so a later call
    can retry, while the callers that were already waiting see the failure.
    """

    def __init__(self, initializer: Callable[[], None]) -> None:
        self._initializer = initializer
        self._lock = threading.Lock()
        self._future: Optional[Future] = None

    @property
    def ready(self) -> bool:
        future = self._future
        return future is not None and future.done() and future.exception() is None

    def ensure(self) -> None:
        with self._lock:
            future = self._future
            owner = future is None
            if owner:
                future = self._future = Future()

        if not owner:
            # Re-raises the owner's exception if initialization failed
            future.result()
            return

        try:
            self._initializer()
        except BaseException as e:
            with self._lock:
                self._future = None
            future.set_exception(e)
            raise
        future.set_result(None)

    def reset(self) -> None:
        """Forget a completed initialization (used after dropping tables)."""
        with self._lock:
            self._future = None


def _create_schema() -> None:
    # Import models to register them with Base.metadata
    from guestbook.models import Message  # noqa: F401

    engine = get_engine()
    logger.debug("Creating database tables if missing...")
    try:
        Base.metadata.create_all(bind=engine)
    except OperationalError as e:
        logger.error(f"Failed to initialize database: {e}")
        raise StoreUnavailable("Could not initialize the message table") from e
    logger.info("Database initialized successfully")


schema_gate = SchemaGate(_create_schema)


def ensure_schema() -> None:
    """Create the messages table on first use; safe to call from every request."""
    schema_gate.ensure()


@contextmanager
def store_errors(db: Session, action: str) -> Iterator[None]:
    """Roll back and re-raise connectivity failures as StoreUnavailable."""
    try:
        yield
    except OperationalError as e:
        db.rollback()
        logger.error(f"Database error while trying to {action}: {e}")
        raise StoreUnavailable(f"Database unavailable while trying to {action}") from e


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal(bind=get_engine())
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and the messages table exists.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    from guestbook.models import Message

    logger.debug("Checking database health...")
    try:
        ensure_schema()
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        if not inspect(engine).has_table(Message.__tablename__):
            logger.error(f"Database schema not applied: '{Message.__tablename__}' table not found")
            return False
    except (StoreUnavailable, SQLAlchemyError) as e:
        logger.error(f"Database health check failed: {e}")
        return False
    logger.debug("Database health check passed")
    return True


# =============================================================================
# Message Repository Functions
# =============================================================================

def list_messages(db: Session) -> list:
    """
    Retrieve every message in board order.

    Ordering: order_index ASC, created_at DESC, id DESC. The id tiebreaker
    keeps the order total when two rows share a timestamp.
    """
    from guestbook.models import Message

    ensure_schema()
    with store_errors(db, "list messages"):
        messages = (
            db.query(Message)
            .order_by(Message.order_index.asc(), Message.created_at.desc(), Message.id.desc())
            .all()
        )
    logger.debug(f"Retrieved {len(messages)} messages")
    return messages


def get_max_order_index(db: Session) -> Optional[int]:
    """Highest order_index on the board, or None when the board is empty."""
    from guestbook.models import Message

    ensure_schema()
    with store_errors(db, "read the highest order index"):
        return db.query(func.max(Message.order_index)).scalar()


def count_messages(db: Session) -> int:
    from guestbook.models import Message

    ensure_schema()
    with store_errors(db, "count messages"):
        return db.query(func.count(Message.id)).scalar() or 0


def insert_message(
    db: Session,
    title: str,
    content: str,
    order_index: int = 0,
    pos_x: int = 0,
    pos_y: int = 0,
):
    """
    Insert a new message with the given placement.

    Raises:
        ContentRequired: content is empty after trimming
        StoreUnavailable: the database could not be reached
    """
    from guestbook.models import Message, utcnow

    if not content or not content.strip():
        raise ContentRequired()

    ensure_schema()
    logger.info(f"Inserting message: order_index={order_index}, pos=({pos_x}, {pos_y})")

    now = utcnow()
    message = Message(
        title=title,
        content=content,
        order_index=order_index,
        pos_x=pos_x,
        pos_y=pos_y,
        created_at=now,
        updated_at=now,
    )
    with store_errors(db, "insert a message"):
        db.add(message)
        db.commit()
        db.refresh(message)
    logger.info(f"Message created successfully: {message.id}")
    return message


def update_message_content(
    db: Session,
    message_id: int,
    title: Optional[str] = None,
    content: Optional[str] = None,
):
    """
    Partially update title and/or content. Omitted fields are left unchanged.

    Raises:
        ContentRequired: content was supplied but is empty after trimming
        NothingToUpdate: neither title nor content was supplied
        NotFound: no message has this id
    """
    from guestbook.models import Message, utcnow

    if content is not None and not content.strip():
        raise ContentRequired()
    if title is None and content is None:
        raise NothingToUpdate()

    ensure_schema()
    with store_errors(db, "update a message"):
        message = db.get(Message, message_id, with_for_update=True)
        if message is None:
            db.rollback()
            logger.info(f"Content update for unknown message: {message_id}")
            raise NotFound(message_id)

        if title is not None:
            message.title = title
        if content is not None:
            message.content = content
        message.updated_at = utcnow()
        db.commit()
        db.refresh(message)

    logger.info(f"Message content updated: {message_id}")
    return message


def update_message_arrangement(
    db: Session,
    message_id: int,
    order_index: Optional[int] = None,
    pos_x: Optional[int] = None,
    pos_y: Optional[int] = None,
    commit: bool = True,
):
    """
    Overwrite the arrangement fields of one message; title and content are untouched.

    With commit=False the change is only flushed so a caller can apply a whole
    batch inside one transaction.

    Raises:
        NotFound: no message has this id
    """
    from guestbook.models import Message, utcnow

    if order_index is None and pos_x is None and pos_y is None:
        raise NothingToUpdate("No arrangement fields supplied")

    ensure_schema()
    with store_errors(db, "update message arrangement"):
        message = db.get(Message, message_id, with_for_update=True)
        if message is None:
            raise NotFound(message_id)

        if order_index is not None:
            message.order_index = order_index
        if pos_x is not None:
            message.pos_x = pos_x
        if pos_y is not None:
            message.pos_y = pos_y
        message.updated_at = utcnow()

        if commit:
            db.commit()
            db.refresh(message)
        else:
            db.flush()

    logger.debug(f"Arrangement updated for message {message_id}")
    return message

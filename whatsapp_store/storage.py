import logging
import os
import threading
import weakref
from typing import List, Optional

from sqlalchemy import create_engine, func, inspect, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from whatsapp_store.errors import StorageError, ValidationError
from whatsapp_store.utils import utc_timestamp

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

# Dialects with an atomic INSERT ... ON CONFLICT DO UPDATE
NATIVE_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}

# Driver bind errors (e.g. lone surrogates, oversized integers) are raised
# as plain Python exceptions rather than wrapped by SQLAlchemy
DATABASE_ERRORS = (SQLAlchemyError, ValueError, OverflowError)

# Signed 64-bit integer primary keys
MIN_ROW_ID = -(2 ** 63)
MAX_ROW_ID = 2 ** 63 - 1


class Storage:
    """
    Process-wide database handle.

    Opened once at startup, shared by every request, closed on shutdown.
    Owns the engine and session factory; each operation runs in its own
    short-lived session.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url

        url = make_url(database_url)
        connect_args = {}
        if url.get_backend_name() == "sqlite":
            # check_same_thread=False is required for SQLite to work with FastAPI's threadpool
            connect_args["check_same_thread"] = False
            if url.database and url.database != ":memory:":
                os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)

        self.engine = create_engine(database_url, connect_args=connect_args, echo=False)
        self.SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False, bind=self.engine)

        # Entries vanish once no upsert holds the lock
        self._user_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._user_locks_guard = threading.Lock()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create_schema(self) -> None:
        """
        Create both tables if they do not exist yet.
        Safe to call on every startup; raises StorageError if the store
        cannot be opened so the caller can refuse to serve.
        """
        logger.debug(f"Initializing database with URL: {self.engine.url.render_as_string(hide_password=True)}")
        try:
            # Import models to register them with Base.metadata
            from whatsapp_store.models import Message, User  # noqa: F401

            Base.metadata.create_all(bind=self.engine)
            logger.info("Database initialized successfully")
        except DATABASE_ERRORS as e:
            logger.error(f"Failed to initialize database: {e}", exc_info=True)
            raise StorageError("Failed to initialize database") from e

    def check_health(self) -> bool:
        """
        Check if the database is reachable and schema is applied.

        Returns:
            True if DB is healthy and both tables exist, False otherwise.
        """
        try:
            with self.SessionLocal() as db:
                db.execute(text("SELECT 1"))
            inspector = inspect(self.engine)
            for table in ("messages", "users"):
                if not inspector.has_table(table):
                    logger.error(f"Database schema not applied: '{table}' table not found")
                    return False
            return True
        except DATABASE_ERRORS as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        """Release every pooled connection."""
        self.engine.dispose()
        logger.info("Database connection closed")

    # =========================================================================
    # Messages
    # =========================================================================

    def insert_message(self, phone_number: str, message_text: str, message_type: str = "received") -> int:
        """
        Store a new message with status "pending".

        Returns:
            The surrogate id assigned by the database.

        Raises:
            ValidationError: phone_number or message_text is empty
            StorageError: the insert failed
        """
        from whatsapp_store.models import Message

        if not phone_number or not message_text:
            raise ValidationError("Phone number and message text are required")

        logger.debug(f"Inserting message: phone_number={phone_number}, type={message_type}")
        with self.SessionLocal() as db:
            try:
                message = Message(
                    phone_number=phone_number,
                    message_text=message_text,
                    message_type=message_type,
                    timestamp=utc_timestamp(),
                    status="pending",
                )
                db.add(message)
                db.commit()
            except DATABASE_ERRORS as e:
                db.rollback()
                logger.error(f"Error inserting message: {e}", exc_info=True)
                raise StorageError("Failed to store message") from e

        logger.info(f"Message stored: id={message.id}")
        return message.id

    def list_messages(self, phone_number: Optional[str] = None, limit: int = 50) -> list:
        """
        Most recent messages first, optionally for a single phone number.

        Args:
            phone_number: Exact-match filter; None returns every phone number
            limit: Maximum number of rows returned
        """
        from whatsapp_store.models import Message

        try:
            with self.SessionLocal() as db:
                query = db.query(Message)
                if phone_number:
                    query = query.filter(Message.phone_number == phone_number)
                # id breaks ties between rows sharing a timestamp
                query = query.order_by(Message.timestamp.desc(), Message.id.desc())
                messages = query.limit(limit).all()
        except DATABASE_ERRORS as e:
            logger.error(f"Error fetching messages: {e}", exc_info=True)
            raise StorageError("Failed to fetch messages") from e

        logger.debug(f"Retrieved {len(messages)} messages (phone_number={phone_number}, limit={limit})")
        return messages

    def get_message_by_id(self, message_id: int):
        """
        Returns:
            Message object if found, None otherwise
        """
        from whatsapp_store.models import Message

        if not MIN_ROW_ID <= message_id <= MAX_ROW_ID:
            return None

        try:
            with self.SessionLocal() as db:
                return db.query(Message).filter(Message.id == message_id).first()
        except DATABASE_ERRORS as e:
            logger.error(f"Error fetching message {message_id}: {e}", exc_info=True)
            raise StorageError("Failed to fetch message") from e

    def update_message_status(self, message_id: int, status: str) -> bool:
        """
        Set the status of one message.

        Returns:
            True if a row changed, False if no message has that id.
        """
        from whatsapp_store.models import Message

        if not status:
            raise ValidationError("Status is required")
        if not MIN_ROW_ID <= message_id <= MAX_ROW_ID:
            return False

        with self.SessionLocal() as db:
            try:
                changed = (
                    db.query(Message)
                    .filter(Message.id == message_id)
                    .update({Message.status: status}, synchronize_session=False)
                )
                db.commit()
            except DATABASE_ERRORS as e:
                db.rollback()
                logger.error(f"Error updating message status: {e}", exc_info=True)
                raise StorageError("Failed to update message status") from e

        logger.info(f"Message status update: id={message_id}, status={status}, changed={changed}")
        return changed > 0

    # =========================================================================
    # Users
    # =========================================================================

    def upsert_user(self, phone_number: str, name: Optional[str] = None, email: Optional[str] = None) -> int:
        """
        Insert a user or update the existing row with the same phone number.

        Existing name/email are only replaced by non-null values, and
        last_message_at is refreshed on every update. Atomic per phone
        number: uses the engine's ON CONFLICT support where available,
        otherwise a locked read-then-write.

        Returns:
            The id of the inserted or updated row.
        """
        if not phone_number:
            raise ValidationError("Phone number is required")

        dialect = self.engine.dialect.name
        try:
            if dialect in NATIVE_UPSERT_DIALECTS:
                user_id = self._upsert_user_native(dialect, phone_number, name, email)
            else:
                user_id = self._upsert_user_locked(phone_number, name, email)
        except DATABASE_ERRORS as e:
            logger.error(f"Error storing user: {e}", exc_info=True)
            raise StorageError("Failed to store user") from e

        logger.info(f"User stored: id={user_id}")
        return user_id

    def _upsert_user_native(self, dialect: str, phone_number: str, name: Optional[str], email: Optional[str]) -> int:
        from whatsapp_store.models import User

        now = utc_timestamp()
        insert = NATIVE_UPSERT_DIALECTS[dialect]
        stmt = insert(User).values(
            phone_number=phone_number,
            name=name,
            email=email,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[User.phone_number],
            set_={
                "name": func.coalesce(stmt.excluded.name, User.name),
                "email": func.coalesce(stmt.excluded.email, User.email),
                "last_message_at": now,
            },
        ).returning(User.id)

        with self.SessionLocal() as db:
            try:
                user_id = db.execute(stmt).scalar_one()
                db.commit()
            except DATABASE_ERRORS:
                db.rollback()
                raise
        return user_id

    def _upsert_user_locked(self, phone_number: str, name: Optional[str], email: Optional[str]) -> int:
        from whatsapp_store.models import User

        with self._lock_for(phone_number), self.SessionLocal() as db:
            try:
                now = utc_timestamp()
                user = db.query(User).filter(User.phone_number == phone_number).first()
                if user is None:
                    user = User(phone_number=phone_number, name=name, email=email, created_at=now)
                    db.add(user)
                else:
                    if name is not None:
                        user.name = name
                    if email is not None:
                        user.email = email
                    user.last_message_at = now
                db.commit()
            except DATABASE_ERRORS:
                db.rollback()
                raise
        return user.id

    def _lock_for(self, phone_number: str) -> threading.Lock:
        with self._user_locks_guard:
            return self._user_locks.setdefault(phone_number, threading.Lock())

    def get_user_by_phone(self, phone_number: str):
        """
        Returns:
            User object if found, None otherwise
        """
        from whatsapp_store.models import User

        try:
            with self.SessionLocal() as db:
                return db.query(User).filter(User.phone_number == phone_number).first()
        except DATABASE_ERRORS as e:
            logger.error(f"Error fetching user: {e}", exc_info=True)
            raise StorageError("Failed to fetch user") from e

    def list_users(self) -> List:
        """Every user, newest first."""
        from whatsapp_store.models import User

        try:
            with self.SessionLocal() as db:
                return db.query(User).order_by(User.created_at.desc(), User.id.desc()).all()
        except DATABASE_ERRORS as e:
            logger.error(f"Error fetching users: {e}", exc_info=True)
            raise StorageError("Failed to fetch users") from e

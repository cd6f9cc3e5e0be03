import logging
import secrets
import time
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional

from sqlalchemy import create_engine, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from .config import get_settings
from .errors import PersistenceError
from .logging_utils import iso_now
from .models import DATA_TYPES, Base, DataEntry, Message, User

logger = logging.getLogger("databot.storage")


def _engine_connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


_url = get_settings().DATABASE_URL
engine = create_engine(_url, connect_args=_engine_connect_args(_url))

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)


def get_db() -> Iterable[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def _guard(db: Session, action: str) -> Iterator[None]:
    """Roll back and re-raise store failures as PersistenceError."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"{action} failed: {exc}") from exc


# ---------- User directory ----------


def _find_user_id(db: Session, telegram_id: int) -> Optional[int]:
    return db.query(User.id).filter(User.telegram_id == telegram_id).scalar()


def ensure_user(
    db: Session,
    *,
    telegram_id: int,
    username: Optional[str],
    first_name: Optional[str],
    last_name: Optional[str],
    is_bot: bool,
    language_code: Optional[str],
) -> int:
    """
    Returns the internal id for ``telegram_id``, creating the user on first
    contact. Fields of an existing user are left as they are.
    """
    with _guard(db, f"ensure_user({telegram_id})"):
        existing = _find_user_id(db, telegram_id)
        if existing is not None:
            return existing

        now = iso_now()
        user = User(
            telegram_id=telegram_id,
            username=username,
            first_name=first_name,
            last_name=last_name,
            is_bot=is_bot,
            language_code=language_code or "en",
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # another request created the same user first
            db.rollback()
            existing = _find_user_id(db, telegram_id)
            if existing is None:
                raise
            return existing

        logger.info("created user %s for telegram_id=%s", user.id, telegram_id)
        return user.id


# ---------- Message log ----------


def record_message(
    db: Session,
    *,
    user_id: int,
    text: Optional[str],
    message_type: str,
    telegram_message_id: int,
) -> bool:
    """Best effort: returns False instead of raising when the write fails."""
    db.add(
        Message(
            user_id=user_id,
            message_text=text,
            message_type=message_type,
            telegram_message_id=telegram_message_id,
            created_at=iso_now(),
        )
    )
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "failed to store message %s for user %s: %s",
            telegram_message_id,
            user_id,
            exc,
        )
        return False
    return True


# ---------- Key/value store ----------


def _insert_entry(
    db: Session,
    *,
    user_id: int,
    key: str,
    value: str,
    data_type: str,
    now: str,
) -> bool:
    """Insert one entry; False when (user_id, key) is already taken."""
    db.add(
        DataEntry(
            user_id=user_id,
            data_key=key,
            data_value=value,
            data_type=data_type,
            created_at=now,
            updated_at=now,
        )
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    return True


def save_entry(
    db: Session,
    *,
    user_id: int,
    key: str,
    value: str,
    data_type: str = "custom",
) -> bool:
    """
    Upsert keyed on (user_id, lower-cased key).

    Returns True if the entry was created, False if an existing one was
    updated in place. The unique constraint on (user_id, data_key) decides
    the outcome, so concurrent saves of one key never produce duplicates.
    """
    if data_type not in DATA_TYPES:
        raise ValueError(f"unknown data_type {data_type!r}")

    key = key.lower()
    now = iso_now()

    with _guard(db, f"save_entry({user_id}, {key!r})"):
        if _insert_entry(
            db, user_id=user_id, key=key, value=value, data_type=data_type, now=now
        ):
            return True

        updated = (
            db.query(DataEntry)
            .filter(DataEntry.user_id == user_id, DataEntry.data_key == key)
            .update(
                {DataEntry.data_value: value, DataEntry.updated_at: now},
                synchronize_session=False,
            )
        )
        db.commit()

    if not updated:
        # insert conflicted but the row is gone (deleted concurrently or bad user id)
        raise PersistenceError(f"save_entry({user_id}, {key!r}) matched no row")
    return False


NOTE_KEY_ATTEMPTS = 3


def new_note_key() -> str:
    return f"note_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def add_note(db: Session, *, user_id: int, text: str) -> str:
    """Store free text under a fresh generated key. Never touches existing entries."""
    with _guard(db, f"add_note({user_id})"):
        for _ in range(NOTE_KEY_ATTEMPTS):
            key = new_note_key()
            if _insert_entry(
                db, user_id=user_id, key=key, value=text, data_type="note", now=iso_now()
            ):
                return key
            logger.warning("note key %s already taken for user %s", key, user_id)
    raise PersistenceError(f"add_note({user_id}): no free note key")


def list_entries(db: Session, *, user_id: int) -> List[DataEntry]:
    with _guard(db, f"list_entries({user_id})"):
        return (
            db.query(DataEntry)
            .filter(DataEntry.user_id == user_id)
            .order_by(DataEntry.created_at.desc(), DataEntry.id.desc())
            .all()
        )


def delete_entry(db: Session, *, user_id: int, key: str) -> int:
    key = key.lower()
    with _guard(db, f"delete_entry({user_id}, {key!r})"):
        deleted = (
            db.query(DataEntry)
            .filter(DataEntry.user_id == user_id, DataEntry.data_key == key)
            .delete(synchronize_session=False)
        )
        db.commit()
    return int(deleted)


# ---------- Admin reads ----------


def list_users(db: Session) -> List[User]:
    return (
        db.query(User)
        .options(selectinload(User.entries), selectinload(User.messages))
        .order_by(User.created_at.desc(), User.id.desc())
        .all()
    )


def get_stats(db: Session) -> dict:
    total_users = db.query(func.count(User.id)).scalar() or 0
    total_messages = db.query(func.count(Message.id)).scalar() or 0

    rows = (
        db.query(DataEntry.data_type, func.count(DataEntry.id))
        .group_by(DataEntry.data_type)
        .all()
    )
    entries_by_type = {data_type: 0 for data_type in DATA_TYPES}
    for data_type, count in rows:
        entries_by_type[data_type] = int(count)

    first_user_at = db.query(func.min(User.created_at)).scalar()
    last_message_at = db.query(func.max(Message.created_at)).scalar()

    return {
        "total_users": int(total_users),
        "total_entries": sum(entries_by_type.values()),
        "entries_by_type": entries_by_type,
        "total_messages": int(total_messages),
        "first_user_at": first_user_at,
        "last_message_at": last_message_at,
    }

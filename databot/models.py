from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

DATA_TYPES = ("custom", "note")
MESSAGE_TYPES = ("text", "photo", "document", "voice", "video", "other")


class User(Base):
    __tablename__ = "telegram_users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    telegram_id = Column(BigInteger, unique=True, nullable=False, index=True)
    username = Column(String(255), nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    is_bot = Column(Boolean, nullable=False, default=False)
    language_code = Column(String(16), nullable=False, default="en")
    created_at = Column(String, nullable=False)  # ISO-8601 UTC
    updated_at = Column(String, nullable=False)

    entries = relationship(
        "DataEntry",
        back_populates="user",
        order_by=lambda: [DataEntry.created_at.desc(), DataEntry.id.desc()],
    )
    messages = relationship(
        "Message",
        back_populates="user",
        order_by=lambda: [Message.created_at.desc(), Message.id.desc()],
    )


class Message(Base):
    __tablename__ = "user_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("telegram_users.id"), nullable=False, index=True)
    message_text = Column(Text, nullable=True)  # text or caption
    message_type = Column(String(16), nullable=False, default="text")
    telegram_message_id = Column(BigInteger, nullable=False)
    created_at = Column(String, nullable=False)

    user = relationship("User", back_populates="messages")


class DataEntry(Base):
    __tablename__ = "user_data"
    __table_args__ = (UniqueConstraint("user_id", "data_key", name="uq_user_data_key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("telegram_users.id"), nullable=False, index=True)
    data_key = Column(String(255), nullable=False)  # always lower-case
    data_value = Column(Text, nullable=False)
    data_type = Column(String(16), nullable=False, default="custom")
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)

    user = relationship("User", back_populates="entries")

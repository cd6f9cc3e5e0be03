import os

# must be set before databot modules build the engine and logger
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN")
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from databot.config import Settings, get_settings
from databot.errors import UpstreamTransportError
from databot.main import app, get_telegram_client
from databot.models import Base
from databot.storage import get_db


class FakeTelegramClient:
    """Records outbound calls instead of talking to the Bot API."""

    def __init__(self):
        self.sent = []
        self.webhook = None
        self.fail_send = False
        self.fail_get_me = False

    async def send_message(self, chat_id, text, parse_mode=None, reply_markup=None):
        if self.fail_send:
            raise UpstreamTransportError("sendMessage failed")
        self.sent.append({"chat_id": chat_id, "text": text, "parse_mode": parse_mode})
        return {"message_id": len(self.sent), "chat": {"id": chat_id}, "text": text}

    async def set_webhook(self, url, secret_token=None):
        self.webhook = {"url": url, "secret_token": secret_token}
        return True

    async def delete_webhook(self):
        self.webhook = None
        return True

    async def get_me(self):
        if self.fail_get_me:
            raise UpstreamTransportError("getMe failed")
        return {"id": 1, "is_bot": True, "first_name": "DataBot", "username": "databot_test"}

    async def get_webhook_info(self):
        return {"url": self.webhook["url"] if self.webhook else "", "pending_update_count": 0}

    @property
    def last_text(self):
        return self.sent[-1]["text"] if self.sent else None


def make_message(text="hello", user_id=42, first_name="Ada", message_id=1, chat_id=None, **extra):
    message = {
        "message_id": message_id,
        "from": {
            "id": user_id,
            "is_bot": False,
            "first_name": first_name,
            "username": "ada",
            "language_code": "en",
        },
        "chat": {"id": chat_id if chat_id is not None else user_id, "type": "private"},
        "date": 1700000000,
    }
    if text is not None:
        message["text"] = text
    message.update(extra)
    return message


def make_update(text="hello", update_id=1, **kwargs):
    return {"update_id": update_id, "message": make_message(text, **kwargs)}


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    yield session
    session.close()


@pytest.fixture
def telegram():
    return FakeTelegramClient()


@pytest.fixture
def settings(monkeypatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    for name in ("TELEGRAM_WEBHOOK_SECRET", "TELEGRAM_WEBHOOK_URL", "ADMIN_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    return Settings()


@pytest.fixture
def api(db, telegram, settings):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_telegram_client] = lambda: telegram
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()

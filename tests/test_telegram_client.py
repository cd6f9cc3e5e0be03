import asyncio
import typing
from types import SimpleNamespace

import pytest
from telegram import Bot, InlineKeyboardMarkup
from telegram.error import BadRequest, NetworkError

from databot.errors import UpstreamTransportError
from databot.telegram_client import TelegramClient


class StubBot:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def _call(self, name, result, **kwargs):
        self.calls.append((name, kwargs))
        if self.error is not None:
            raise self.error
        return result

    async def send_message(self, **kwargs):
        return await self._call(
            "send_message",
            SimpleNamespace(to_dict=lambda: {"message_id": 1, "text": kwargs["text"]}),
            **kwargs,
        )

    async def set_webhook(self, **kwargs):
        return await self._call("set_webhook", True, **kwargs)

    async def delete_webhook(self):
        return await self._call("delete_webhook", True)

    async def get_me(self):
        return await self._call("get_me", SimpleNamespace(to_dict=lambda: {"id": 1, "is_bot": True}))


def test_send_message_passes_parse_mode():
    bot = StubBot()
    client = TelegramClient("token", bot=bot)

    result = asyncio.run(client.send_message(5, "hi", parse_mode="Markdown"))

    assert result == {"message_id": 1, "text": "hi"}
    assert bot.calls == [
        ("send_message", {"chat_id": 5, "text": "hi", "parse_mode": "Markdown", "reply_markup": None})
    ]


def test_set_webhook_forwards_secret():
    bot = StubBot()
    client = TelegramClient("token", bot=bot)

    assert asyncio.run(client.set_webhook("https://a.example/hook", secret_token="s")) is True
    assert bot.calls == [("set_webhook", {"url": "https://a.example/hook", "secret_token": "s"})]


@pytest.mark.parametrize("error", [NetworkError("connection reset"), BadRequest("chat not found")])
def test_telegram_errors_become_transport_errors(error):
    client = TelegramClient("token", bot=StubBot(error=error))

    with pytest.raises(UpstreamTransportError):
        asyncio.run(client.send_message(5, "hi"))
    with pytest.raises(UpstreamTransportError):
        asyncio.run(client.get_me())
    with pytest.raises(UpstreamTransportError):
        asyncio.run(client.delete_webhook())


def test_real_bot_and_markup_types():
    import databot.main  # noqa: F401  full import chain against the installed library

    client = TelegramClient("123456:TEST-TOKEN")
    hints = typing.get_type_hints(TelegramClient.send_message)

    assert isinstance(client.bot, Bot)
    assert InlineKeyboardMarkup in typing.get_args(hints["reply_markup"])

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Union

from telegram import (
    Bot,
    ForceReply,
    InlineKeyboardMarkup,
    ReplyKeyboardMarkup,
    ReplyKeyboardRemove,
)
from telegram.error import TelegramError

from .errors import UpstreamTransportError

logger = logging.getLogger("databot.telegram")

ReplyMarkup = Union[InlineKeyboardMarkup, ReplyKeyboardMarkup, ReplyKeyboardRemove, ForceReply]


@asynccontextmanager
async def _upstream(action: str) -> AsyncIterator[None]:
    try:
        yield
    except TelegramError as exc:
        logger.error("Telegram API %s failed: %s", action, exc)
        raise UpstreamTransportError(f"{action} failed: {exc}") from exc


class TelegramClient:
    """Outbound Bot API calls. Holds no state besides the underlying Bot."""

    def __init__(self, token: str, bot: Optional[Bot] = None) -> None:
        self.bot = bot if bot is not None else Bot(token)

    async def initialize(self) -> None:
        async with _upstream("initialize"):
            await self.bot.initialize()

    async def shutdown(self) -> None:
        await self.bot.shutdown()

    async def send_message(
        self,
        chat_id: int,
        text: str,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[ReplyMarkup] = None,
    ) -> dict:
        async with _upstream("sendMessage"):
            message = await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=parse_mode,
                reply_markup=reply_markup,
            )
        return message.to_dict()

    async def set_webhook(self, url: str, secret_token: Optional[str] = None) -> bool:
        async with _upstream("setWebhook"):
            return await self.bot.set_webhook(url=url, secret_token=secret_token)

    async def delete_webhook(self) -> bool:
        async with _upstream("deleteWebhook"):
            return await self.bot.delete_webhook()

    async def get_me(self) -> dict:
        async with _upstream("getMe"):
            me = await self.bot.get_me()
        return me.to_dict()

    async def get_webhook_info(self) -> dict:
        async with _upstream("getWebhookInfo"):
            info = await self.bot.get_webhook_info()
        return info.to_dict()

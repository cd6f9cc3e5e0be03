"""
Command dispatch for inbound chat messages.

A message is resolved to its owning user, appended to the message log and
routed on its first token. Every outcome ends in exactly one reply (or
none for messages without text); failures never escape ``handle``.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from telegram.constants import ParseMode
from telegram.helpers import escape_markdown

from . import storage
from .errors import PersistenceError, UpstreamTransportError, ValidationError
from .metrics import inc_command
from .schemas import TelegramMessage, TelegramUser
from .telegram_client import TelegramClient

logger = logging.getLogger("databot.commands")

GENERIC_ERROR = "Sorry, something went wrong. Please try again later."
NO_USER = "User information not available."
UNKNOWN_COMMAND = "Unknown command. Use /help to see available commands."

SAVE_USAGE = "Please provide both a key and value.\nExample: `/save email john@example.com`"
DELETE_USAGE = "Please specify the key to delete.\nExample: `/delete email`"

HELP_TEXT = """
📖 *Available Commands:*

• */start* - Get welcome message and setup
• */help* - Show this help message
• */save <key> <value>* - Save data with a specific key
  Example: `/save email john@example.com`
• */list* - View all your saved data
• */delete <key>* - Delete specific data by key

You can also send me any text message and I'll save it as a note automatically!

💡 *Tips:*
- Keys should be single words (no spaces)
- Use descriptive keys like 'email', 'phone', 'address'
- Data is private to your account only
""".strip()

WELCOME_TEMPLATE = """
🎉 Welcome to the Data Storage Bot!

Hello {name}! I'm here to help you store and manage your data.

Available commands:
• /help - Show this help message
• /save <key> <value> - Save data with a key
• /list - View all your saved data
• /delete <key> - Delete specific data

You can also just send me any text and I'll store it as a note!

Let's get started! 🚀
""".strip()

APOLOGIES = {
    "/save": "Failed to save data. Please try again.",
    "/list": "Failed to retrieve data. Please try again.",
    "/delete": "Failed to delete data. Please try again.",
    "note": "Failed to save your message. Please try again.",
}


def _md(value: str) -> str:
    return escape_markdown(value, version=1)


@dataclass
class Invocation:
    chat_id: int
    text: str
    sender: Optional[TelegramUser]
    user_id: Optional[int] = None


class CommandDispatcher:
    def __init__(self, db: Session, client: TelegramClient) -> None:
        self.db = db
        self.client = client
        self._routes: Dict[str, Callable[[Invocation], Awaitable[None]]] = {
            "/start": self.on_start,
            "/help": self.on_help,
            "/save": self.on_save,
            "/list": self.on_list,
            "/delete": self.on_delete,
        }

    def command_name(self, text: str) -> str:
        """Metric/log name of the command ``text`` selects."""
        token = text.split()[0].lower()
        if not token.startswith("/"):
            return "note"
        # "/save@SomeBot" in group chats
        token = token.split("@", 1)[0]
        return token if token in self._routes else "unknown"

    async def handle(self, message: TelegramMessage) -> Optional[str]:
        """Process one inbound message. Returns the command name, or None if ignored."""
        if message.text is None or not message.text.strip():
            return None

        text = message.text.strip()
        name = self.command_name(text)
        inv = Invocation(chat_id=message.chat.id, text=text, sender=message.from_)
        inc_command(name)

        try:
            if inv.sender is not None:
                try:
                    inv.user_id = await self._ensure_user(inv.sender)
                except PersistenceError:
                    logger.exception("identity resolution failed for %s", inv.sender.id)
                    await self._reply_safely(inv.chat_id, GENERIC_ERROR)
                    return name

                await self._store(
                    storage.record_message,
                    user_id=inv.user_id,
                    text=message.text or message.caption,
                    message_type=message.content_type,
                    telegram_message_id=message.message_id,
                )

            handler = self._routes.get(name)
            if handler is not None:
                await handler(inv)
            elif name == "note":
                await self.on_note(inv)
            else:
                await self.reply(inv.chat_id, UNKNOWN_COMMAND)
        except ValidationError as exc:
            logger.info("usage error for %s in chat %s", name, inv.chat_id)
            await self._reply_safely(inv.chat_id, exc.usage, parse_mode=ParseMode.MARKDOWN)
        except PersistenceError:
            logger.exception("store failure while handling %s", name)
            await self._reply_safely(inv.chat_id, APOLOGIES.get(name, GENERIC_ERROR))
        except Exception:
            logger.exception("error handling %s in chat %s", name, inv.chat_id)
            await self._reply_safely(inv.chat_id, GENERIC_ERROR)

        return name

    # ---------- replies ----------

    async def reply(self, chat_id: int, text: str, parse_mode: Optional[str] = None) -> None:
        await self.client.send_message(chat_id, text, parse_mode=parse_mode)

    async def _reply_safely(self, chat_id: int, text: str, parse_mode: Optional[str] = None) -> None:
        try:
            await self.reply(chat_id, text, parse_mode=parse_mode)
        except UpstreamTransportError:
            logger.error("could not deliver reply to chat %s", chat_id)

    async def _store(self, func: Callable[..., Any], **kwargs: Any) -> Any:
        """Run a blocking storage call in the threadpool."""
        return await run_in_threadpool(func, self.db, **kwargs)

    async def _ensure_user(self, sender: TelegramUser) -> int:
        return await self._store(
            storage.ensure_user,
            telegram_id=sender.id,
            username=sender.username,
            first_name=sender.first_name,
            last_name=sender.last_name,
            is_bot=sender.is_bot,
            language_code=sender.language_code,
        )

    async def _require_user(self, inv: Invocation) -> Optional[int]:
        if inv.user_id is None:
            await self.reply(inv.chat_id, NO_USER)
        return inv.user_id

    # ---------- handlers ----------

    async def on_start(self, inv: Invocation) -> None:
        name = inv.sender.first_name if inv.sender and inv.sender.first_name else "there"
        await self.reply(inv.chat_id, WELCOME_TEMPLATE.format(name=name))

    async def on_help(self, inv: Invocation) -> None:
        await self.reply(inv.chat_id, HELP_TEXT, parse_mode=ParseMode.MARKDOWN)

    async def on_save(self, inv: Invocation) -> None:
        user_id = await self._require_user(inv)
        if user_id is None:
            return

        parts = inv.text.split(maxsplit=2)
        if len(parts) < 3:
            raise ValidationError(SAVE_USAGE)
        key, value = parts[1].lower(), parts[2]

        created = await self._store(storage.save_entry, user_id=user_id, key=key, value=value)
        verb = "Saved" if created else "Updated"
        await self.reply(
            inv.chat_id,
            f"✅ {verb} *{_md(key)}*: {_md(value)}",
            parse_mode=ParseMode.MARKDOWN,
        )

    async def on_list(self, inv: Invocation) -> None:
        user_id = await self._require_user(inv)
        if user_id is None:
            return

        entries = await self._store(storage.list_entries, user_id=user_id)
        if not entries:
            await self.reply(
                inv.chat_id,
                "📝 You have no saved data yet.\n\nUse `/save <key> <value>` to store some data!",
                parse_mode=ParseMode.MARKDOWN,
            )
            return

        lines = ["📋 *Your Saved Data:*", ""]
        for index, entry in enumerate(entries, start=1):
            lines.append(f"{index}. *{_md(entry.data_key)}*: {_md(entry.data_value)}")
        lines.append("")
        lines.append(f"💾 Total items: {len(entries)}")
        await self.reply(inv.chat_id, "\n".join(lines), parse_mode=ParseMode.MARKDOWN)

    async def on_delete(self, inv: Invocation) -> None:
        user_id = await self._require_user(inv)
        if user_id is None:
            return

        args = inv.text.split()[1:]
        if len(args) != 1:
            raise ValidationError(DELETE_USAGE)
        key = args[0].lower()

        deleted = await self._store(storage.delete_entry, user_id=user_id, key=key)
        if deleted:
            text = f"🗑️ Deleted *{_md(key)}* successfully!"
        else:
            text = f"❌ No data found with key *{_md(key)}*"
        await self.reply(inv.chat_id, text, parse_mode=ParseMode.MARKDOWN)

    async def on_note(self, inv: Invocation) -> None:
        user_id = await self._require_user(inv)
        if user_id is None:
            return

        await self._store(storage.add_note, user_id=user_id, text=inv.text)
        await self.reply(inv.chat_id, "📝 Saved your note!\n\nUse /list to view all saved data.")

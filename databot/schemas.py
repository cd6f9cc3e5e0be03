from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


MessageType = Literal["text", "photo", "document", "voice", "video", "other"]


# ---------- Inbound Telegram update ----------


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None


class TelegramChat(BaseModel):
    id: int
    type: str = "private"
    title: Optional[str] = None
    username: Optional[str] = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: int
    from_: Optional[TelegramUser] = Field(default=None, alias="from")
    chat: TelegramChat
    date: int = 0
    text: Optional[str] = None
    caption: Optional[str] = None
    # media payloads are only inspected for their presence
    photo: Optional[List[Any]] = None
    document: Optional[Any] = None
    voice: Optional[Any] = None
    video: Optional[Any] = None

    @property
    def content_type(self) -> MessageType:
        if self.text is not None:
            return "text"
        if self.photo:
            return "photo"
        if self.document is not None:
            return "document"
        if self.voice is not None:
            return "voice"
        if self.video is not None:
            return "video"
        return "other"


class TelegramUpdate(BaseModel):
    update_id: int
    message: Optional[TelegramMessage] = None
    edited_message: Optional[TelegramMessage] = None

    @property
    def effective_message(self) -> Optional[TelegramMessage]:
        return self.message or self.edited_message


# ---------- Setup ----------


class WebhookSetupRequest(BaseModel):
    webhook_url: Optional[str] = Field(default=None, alias="webhookUrl")

    model_config = ConfigDict(populate_by_name=True)


# ---------- Admin projection ----------


class DataEntryItem(BaseModel):
    id: int
    data_key: str
    data_value: str
    data_type: str
    created_at: str
    updated_at: str


class MessageItem(BaseModel):
    id: int
    message_text: Optional[str]
    message_type: str
    telegram_message_id: int
    created_at: str


class AdminUserItem(BaseModel):
    id: int
    telegram_id: int
    username: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    is_bot: bool
    language_code: Optional[str]
    created_at: str
    user_data: List[DataEntryItem]
    user_messages: List[MessageItem]


class AdminUsersResponse(BaseModel):
    users: List[AdminUserItem]
    count: int

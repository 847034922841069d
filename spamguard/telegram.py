"""Data types for the subset of the Telegram Bot API the bot works with."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

MODE_MARKDOWN = "Markdown"


@dataclass
class TgUser:
    """A Telegram user."""

    id: int = 0
    user_name: str = ""
    first_name: str = ""
    last_name: str = ""


@dataclass
class Chat:
    """A Telegram chat: private, group, supergroup or channel."""

    id: int = 0
    type: str = ""
    title: str = ""
    user_name: str = ""


@dataclass
class PhotoSize:
    """One size of a photo."""

    file_id: str = ""
    width: int = 0
    height: int = 0
    file_size: int = 0


@dataclass
class MessageEntity:
    """A special entity in a message text or caption."""

    type: str = ""
    offset: int = 0
    length: int = 0
    url: str = ""
    user: TgUser | None = None


@dataclass
class MessageOrigin:
    """Where a forwarded message came from."""

    type: str = ""
    date: int = 0
    sender_user: TgUser | None = None
    sender_user_name: str = ""
    chat: Chat | None = None
    message_id: int = 0

    def is_user(self) -> bool:
        return self.type == "user"

    def is_hidden_user(self) -> bool:
        return self.type == "hidden_user"


@dataclass
class InlineKeyboardButton:
    """A button of an inline keyboard."""

    text: str = ""
    callback_data: str = ""


@dataclass
class InlineKeyboardMarkup:
    """An inline keyboard: rows of buttons."""

    inline_keyboard: list[list[InlineKeyboardButton]] = field(default_factory=list)


def keyboard(*args: list[InlineKeyboardButton]) -> InlineKeyboardMarkup:
    """Build an inline keyboard from rows of buttons."""
    return InlineKeyboardMarkup(inline_keyboard=[list(row) for row in args])


@dataclass
class TgMessage:
    """A Telegram message. Media fields are set to any non-None value when present."""

    message_id: int = 0
    from_user: TgUser | None = None
    sender_chat: Chat | None = None
    chat: Chat = field(default_factory=Chat)
    date: int = 0
    text: str = ""
    caption: str = ""
    entities: list[MessageEntity] = field(default_factory=list)
    caption_entities: list[MessageEntity] = field(default_factory=list)
    photo: list[PhotoSize] = field(default_factory=list)
    video: object | None = None
    video_note: object | None = None
    story: object | None = None
    audio: object | None = None
    forward_origin: MessageOrigin | None = None
    reply_to_message: TgMessage | None = None
    reply_markup: InlineKeyboardMarkup | None = None

    def time(self) -> datetime:
        """Return the send time as an aware UTC datetime."""
        return datetime.fromtimestamp(self.date, tz=timezone.utc)


@dataclass
class CallbackQuery:
    """A press of an inline keyboard button."""

    id: str = ""
    from_user: TgUser = field(default_factory=TgUser)
    message: TgMessage = field(default_factory=TgMessage)
    data: str = ""


@dataclass
class Update:
    """An incoming update."""

    update_id: int = 0
    message: TgMessage | None = None
    callback_query: CallbackQuery | None = None


@dataclass
class ChatPermissions:
    """What a chat member may do."""

    can_send_messages: bool = False
    can_send_audios: bool = False
    can_send_documents: bool = False
    can_send_photos: bool = False
    can_send_videos: bool = False
    can_send_video_notes: bool = False
    can_send_voice_notes: bool = False
    can_send_other_messages: bool = False
    can_change_info: bool = False
    can_invite_users: bool = False
    can_pin_messages: bool = False


@dataclass
class MessageConfig:
    """A request to send a text message."""

    chat_id: int = 0
    text: str = ""
    parse_mode: str = ""
    disable_link_preview: bool = False
    reply_markup: InlineKeyboardMarkup | None = None


@dataclass
class EditMessageTextConfig:
    """A request to edit the text of a message."""

    chat_id: int = 0
    message_id: int = 0
    text: str = ""
    parse_mode: str = ""
    disable_link_preview: bool = False
    reply_markup: InlineKeyboardMarkup | None = None


@dataclass
class EditMessageReplyMarkupConfig:
    """A request to replace the keyboard of a message."""

    chat_id: int = 0
    message_id: int = 0
    reply_markup: InlineKeyboardMarkup | None = None


@dataclass
class DeleteMessageConfig:
    """A request to delete a message."""

    chat_id: int = 0
    message_id: int = 0


@dataclass
class BanChatMemberConfig:
    """A request to ban a user until a unix time."""

    chat_id: int = 0
    user_id: int = 0
    until_date: int = 0


@dataclass
class BanChatSenderChatConfig:
    """A request to ban a channel posting in a chat."""

    chat_id: int = 0
    sender_chat_id: int = 0
    until_date: int = 0


@dataclass
class RestrictChatMemberConfig:
    """A request to set a member's permissions until a unix time."""

    chat_id: int = 0
    user_id: int = 0
    until_date: int = 0
    permissions: ChatPermissions = field(default_factory=ChatPermissions)


@dataclass
class UnbanChatMemberConfig:
    """A request to lift a ban."""

    chat_id: int = 0
    user_id: int = 0
    only_if_banned: bool = False


@dataclass
class CallbackConfig:
    """An answer to a callback query."""

    callback_query_id: str = ""
    text: str = ""


@dataclass
class APIResponse:
    """The outcome of an API request."""

    ok: bool = False
    result: str = ""
"""Helpers shared by the event handlers: sending, banning and message conversion."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from spamguard.bot import CheckResult, Entity, Image, Message, ReplyTo, SenderChat, User
from spamguard.telegram import (
    MODE_MARKDOWN,
    BanChatMemberConfig,
    BanChatSenderChatConfig,
    ChatPermissions,
    EditMessageTextConfig,
    MessageConfig,
    MessageEntity,
    RestrictChatMemberConfig,
    TgMessage,
)

log = logging.getLogger(__name__)

_MARKDOWN_SPECIALS = ("_", "*", "`", "[")


class SendError(Exception):
    """Raised when a message cannot be sent either as markdown or as plain text."""


class BanError(Exception):
    """Raised when Telegram refuses a ban or restriction."""


@dataclass
class MsgMeta:
    """What the locator knows about a message."""

    time: datetime | None = None
    chat_id: int = 0
    user_id: int = 0
    user_name: str = ""
    msg_id: int = 0


@dataclass
class SpamData:
    """The spam checks recorded for a user."""

    time: datetime | None = None
    checks: list[CheckResult] = field(default_factory=list)


@dataclass
class BanRequest:
    """Parameters of a ban. If channel_id is set the channel is banned instead of the user."""

    api: Any
    user_id: int = 0
    channel_id: int = 0
    chat_id: int = 0
    duration: timedelta = timedelta(0)
    user_name: str = ""
    dry: bool = False
    training: bool = False
    restrict: bool = False


def escape_markdown_v1(text: str) -> str:
    """Escape the characters that Telegram's legacy markdown treats as markup."""
    for symbol in _MARKDOWN_SPECIALS:
        text = text.replace(symbol, "\\" + symbol)
    return text


def _with_parse_mode(message: Any, mode: str) -> Any:
    if isinstance(message, (MessageConfig, EditMessageTextConfig)):
        return replace(message, parse_mode=mode, disable_link_preview=True)
    return message


def send(message: Any, api: Any) -> None:
    """Send a message as markdown, falling back to plain text if that fails."""
    try:
        api.send(_with_parse_mode(message, MODE_MARKDOWN))
    except Exception as err:
        log.warning("failed to send message as markdown, %s", err)
        try:
            api.send(_with_parse_mode(message, ""))
        except Exception as plain_err:
            raise SendError(f"can't send message to telegram: {plain_err}") from plain_err


def ban_user_or_channel(request: BanRequest) -> None:
    """Ban or restrict a user, or ban a channel; a no-op in dry or training mode."""
    entity = f"channel {request.channel_id}" if request.channel_id else f"user {request.user_id}"
    if request.dry:
        log.info("dry run: ban %s for %s", entity, request.duration)
        return
    if request.training:
        log.info("training mode: ban %s for %s", entity, request.duration)
        return

    # durations under 30 seconds would be taken by Telegram as permanent
    duration = request.duration
    if duration < timedelta(seconds=30):
        duration = timedelta(minutes=1)
    until = int(time.time() + duration.total_seconds())

    if request.restrict:
        config: Any = RestrictChatMemberConfig(
            chat_id=request.chat_id, user_id=request.user_id,
            until_date=until, permissions=ChatPermissions(),
        )
        done = f"{request.user_name} restricted"
    elif request.channel_id:
        config = BanChatSenderChatConfig(
            chat_id=request.chat_id, sender_chat_id=request.channel_id, until_date=until,
        )
        done = f"channel {request.user_name} banned"
    else:
        config = BanChatMemberConfig(chat_id=request.chat_id, user_id=request.user_id, until_date=until)
        done = f"user {request.user_name} banned"

    response = request.api.request(config)
    if not response.ok:
        raise BanError(f"response is not Ok: {response.result}")
    log.info("%s by bot for %s", done, duration)


def _entities(entities: list[MessageEntity]) -> list[Entity] | None:
    if not entities:
        return None
    result = []
    for entity in entities:
        user = None
        if entity.user is not None:
            user = User(
                id=entity.user.id,
                username=entity.user.user_name,
                display_name=f"{entity.user.first_name} {entity.user.last_name}",
            )
        result.append(Entity(type=entity.type, offset=entity.offset, length=entity.length,
                             url=entity.url, user=user))
    return result


def transform(msg: TgMessage) -> Message:
    """Convert a Telegram message to the bot's message, merging caption into text."""
    message = Message(id=msg.message_id, sent=msg.time(), text=msg.text, chat_id=msg.chat.id)

    if msg.from_user is not None:
        message.from_user = User(id=msg.from_user.id, username=msg.from_user.user_name)
        first = msg.from_user.first_name.strip()
        last = msg.from_user.last_name.strip()
        if first:
            message.from_user.display_name = first
        if last:
            message.from_user.display_name += " " + last

    if msg.sender_chat is not None:
        message.sender_chat = SenderChat(id=msg.sender_chat.id, username=msg.sender_chat.user_name)

    if msg.entities:
        message.entities = _entities(msg.entities)

    if msg.photo:
        best = msg.photo[-1]  # highest quality
        message.image = Image(
            file_id=best.file_id, width=best.width, height=best.height,
            caption=msg.caption, entities=_entities(msg.caption_entities),
        )

    message.with_video = msg.video is not None or msg.story is not None
    message.with_video_note = msg.video_note is not None
    message.with_audio = msg.audio is not None
    message.with_forward = msg.forward_origin is not None

    reply = msg.reply_to_message
    if reply is not None:
        message.reply_to = ReplyTo(text=reply.text, sent=reply.time())
        if reply.from_user is not None:
            message.reply_to.from_user = User(
                id=reply.from_user.id,
                username=reply.from_user.user_name,
                display_name=f"{reply.from_user.first_name} {reply.from_user.last_name}",
            )
        if reply.sender_chat is not None:
            message.reply_to.sender_chat = SenderChat(id=reply.sender_chat.id,
                                                      username=reply.sender_chat.user_name)

    if msg.caption:
        if not message.text:
            log.debug("caption only message: %r", msg.caption)
            message.text = msg.caption
        else:
            log.debug("caption appended to message: %r", msg.caption)
            message.text += "\n" + msg.caption

    return message
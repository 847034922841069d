"""Handling of the admin chat: ban reports, forwarded spam and direct reports by super-users."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

from spamguard.bot import PERMANENT_BAN_DURATION, Message, Response, User
from spamguard.events import (
    BanRequest,
    MsgMeta,
    SpamData,
    ban_user_or_channel,
    escape_markdown_v1,
    send,
    transform,
)
from spamguard.telegram import (
    MODE_MARKDOWN,
    DeleteMessageConfig,
    InlineKeyboardButton,
    MessageConfig,
    TgMessage,
    TgUser,
    Update,
    keyboard,
)

log = logging.getLogger(__name__)

CONFIRMATION_PREFIX = "?"
BAN_PREFIX = "+"
INFO_PREFIX = "!"

USER_LINK = "[messaging-link]"

_SPAM_INFO_MARKERS = ("spam detection results", "**spam detection results**")
_MARKDOWN_NAME = re.compile(r"\[(.*?)\]\([^)]*\)")
_PLAIN_NAME = re.compile(r"\{\d+ (\S+) .+?\}")
_INT = re.compile(r"[+-]?[0-9]+")
_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1


class AdminError(Exception):
    """Raised when an admin action fails; errors holds every collected failure."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors if errors is not None else [message]


class _Locator(Protocol):
    def message(self, msg: str) -> MsgMeta | None: ...

    def spam(self, user_id: int) -> SpamData | None: ...

    def user_name_by_id(self, user_id: int) -> str: ...


class _SuperUsers(Protocol):
    def is_super(self, user_name: str, user_id: int) -> bool: ...


class _Bot(Protocol):
    def on_message(self, msg: Message, check_only: bool) -> Response: ...

    def update_spam(self, msg: str) -> None: ...

    def update_ham(self, msg: str) -> None: ...

    def add_approved_user(self, user_id: int, name: str) -> None: ...

    def remove_approved_user(self, user_id: int) -> None: ...

    def is_approved_user(self, user_id: int) -> bool: ...


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _raise_collected(errors: list[str]) -> None:
    if errors:
        raise AdminError("; ".join(errors), errors)


def _parse_int(text: str, what: str) -> int:
    if not _INT.fullmatch(text):
        raise AdminError(f"failed to parse {what} {_quote(text)}: invalid syntax")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise AdminError(f"failed to parse {what} {_quote(text)}: value out of range")
    return value


def _sender(msg: TgMessage) -> TgUser:
    return msg.from_user if msg.from_user is not None else TgUser()


def _message_text(msg: TgMessage) -> str:
    """Return the message text, or the text of the converted message if there is none."""
    return msg.text or transform(msg).text


def _spam_info(response: Response) -> str:
    lines = [f"- {escape_markdown_v1(str(check))}" for check in response.check_results]
    return "\n".join(lines) if lines else "**can't get spam info**"


def get_clean_message(msg: str) -> str:
    """Return the original message from an admin chat report, without header and spam info.

    Reports look like a header line, an empty line, the original message,
    and optionally a "spam detection results" section.
    """
    lines = msg.split("\n")
    if len(lines) < 2:
        raise AdminError(f"unexpected message from callback data: {_quote(msg)}")

    end = next(
        (i for i, line in enumerate(lines) if line.startswith(_SPAM_INFO_MARKERS)),
        len(lines),
    )
    if end <= 2:
        raise AdminError(f"no original message found in callback data: {_quote(msg)}")
    return "\n".join(lines[2:end]).strip()


def parse_callback_data(data: str) -> tuple[int, int]:
    """Parse "[prefix]userID:msgID" callback data into the user and message ids."""
    if len(data) < 3:
        raise AdminError(f"unexpected callback data, too short {_quote(data)}")
    if data[0] in (CONFIRMATION_PREFIX, BAN_PREFIX, INFO_PREFIX):
        data = data[1:]

    parts = data.split(":")
    if len(parts) != 2:
        raise AdminError(f"unexpected callback data, should have both ids {_quote(data)}")
    return _parse_int(parts[0], "userID"), _parse_int(parts[1], "msgID")


def extract_username(text: str) -> str:
    """Extract the username from a ban report, in markdown or plain form."""
    for pattern in (_MARKDOWN_NAME, _PLAIN_NAME):
        match = pattern.search(text)
        if match:
            return match.group(1)
    raise AdminError("username not found")


@dataclass
class Admin:
    """Admin chat actions: reporting bans and acting on spam reported by super-users."""

    api: Any
    bot: _Bot | None = None
    locator: _Locator | None = None
    super_users: _SuperUsers | None = None
    prim_chat_id: int = 0
    admin_chat_id: int = 0
    training_mode: bool = False
    soft_ban: bool = False  # restrict instead of banning
    dry: bool = False
    warn_msg: str = ""

    def _is_super(self, user_name: str, user_id: int) -> bool:
        return bool(user_name) and self.super_users is not None and self.super_users.is_super(
            user_name, user_id
        )

    def _delete(self, message_id: int, errors: list[str], what: str) -> None:
        try:
            self.api.request(DeleteMessageConfig(chat_id=self.prim_chat_id, message_id=message_id))
        except Exception as err:
            errors.append(f"failed to delete message {message_id}: {err}")
        else:
            log.info("%s %d deleted", what, message_id)

    def _ban(self, user_id: int, user_name: str, errors: list[str]) -> None:
        request = BanRequest(
            api=self.api,
            duration=PERMANENT_BAN_DURATION,
            user_id=user_id,
            chat_id=self.prim_chat_id,
            dry=self.dry,
            training=self.training_mode,
            user_name=user_name,
        )
        try:
            ban_user_or_channel(request)
        except Exception as err:
            errors.append(f"failed to ban user {user_id}: {err}")

    @staticmethod
    def _forward_username_and_id(update: Update) -> tuple[int, str]:
        """Return the id and username of a forwarded message's author, if known."""
        origin = update.message.forward_origin if update.message is not None else None
        if origin is not None:
            if origin.is_user() and origin.sender_user is not None:
                return origin.sender_user.id, origin.sender_user.user_name
            if origin.is_hidden_user():
                return 0, origin.sender_user_name
        return 0, ""

    def report_ban(self, ban_user_str: str, msg: Message) -> None:
        """Post a ban report to the admin chat with buttons to change the ban and show info."""
        log.debug("report to admin chat, ban for %s, group: %d", ban_user_str, self.admin_chat_id)
        text = escape_markdown_v1(msg.text).replace("\n", " ")
        would = "would have " if self.dry else ""
        report = (
            f"**{would}permanently banned [{escape_markdown_v1(ban_user_str)}]({USER_LINK})**"
            f"\n\n{text}\n\n"
        )
        try:
            self.send_with_unban_markup(report, "change ban", msg.from_user, msg.id, self.admin_chat_id)
        except AdminError as err:
            log.warning("failed to send admin message, %s", err)

    def msg_handler(self, update: Update) -> None:
        """Handle a message forwarded to the admin chat as missed spam: learn it and ban its author.

        The user is banned in training mode too, but not in dry mode.
        """
        message = update.message
        fwd_id, username = self._forward_username_and_id(update)
        log.debug(
            "message from admin chat: msg id: %d, update id: %d, from: %s, sender: %r (%d)",
            message.message_id, update.update_id, _sender(message).user_name, username, fwd_id,
        )
        if not username and message.forward_origin is None:
            return  # a regular admin chat message, not a forwarded one

        msg_text = _message_text(message)
        if not msg_text:
            raise AdminError("empty message text")

        # the forwarded author's id is hidden by telegram, so look the message up instead
        info = self.locator.message(msg_text) if self.locator is not None else None
        if info is None:
            shrunk = msg_text if len(msg_text) <= 50 else msg_text[:50] + "..."
            raise AdminError(f"not found {_quote(shrunk)} in locator")
        log.debug("locator found message %s", info)

        if self._is_super(info.user_name, info.user_id):
            raise AdminError(
                f"forwarded message is about super-user {info.user_name} ({info.user_id}), ignored"
            )

        errors: list[str] = []
        try:
            self.bot.remove_approved_user(info.user_id)
        except Exception as err:
            errors.append(f"failed to remove user {info.user_id} from approved list: {err}")

        # check only, so the user is not approved again right after removal
        response = self.bot.on_message(
            Message(text=message.text, from_user=User(id=info.user_id)), True
        )
        report = (
            f"**original detection results for {_quote(escape_markdown_v1(info.user_name))} "
            f"({info.user_id})**\n\n{_spam_info(response)}\n\n\n*the user banned and message deleted*"
        )
        try:
            send(MessageConfig(chat_id=self.admin_chat_id, text=report), self.api)
        except Exception as err:
            errors.append(f"failed to send spam detection results to admin chat: {err}")

        if self.dry:
            _raise_collected(errors)
            return

        try:
            self.bot.update_spam(msg_text)
        except Exception as err:
            raise AdminError(f"failed to update spam for {_quote(msg_text)}: {err}") from err

        self._delete(info.msg_id, errors, "message")
        self._ban(info.user_id, username, errors)
        _raise_collected(errors)

    def direct_spam_report(self, update: Update) -> None:
        """Handle a reply with "spam" by an admin: learn the message as spam, delete it and ban."""
        self._direct_report(update, update_samples=True)

    def direct_ban_report(self, update: Update) -> None:
        """Handle a reply with "ban" by an admin: delete the message and ban, without learning it."""
        self._direct_report(update, update_samples=False)

    def direct_warn_report(self, update: Update) -> None:
        """Handle a reply with "warn" by an admin: delete both messages and post a warning."""
        admin_user = _sender(update.message)
        orig = update.message.reply_to_message
        orig_user = _sender(orig)
        log.debug(
            "direct warn by admin %r: msg id: %d, from: %r (%d)",
            admin_user.user_name, orig.message_id, orig_user.user_name, orig_user.id,
        )
        msg_text = _message_text(orig)
        log.debug("reported warn message from superuser %r (%d): %r",
                  admin_user.user_name, admin_user.id, msg_text)
        if self._is_super(orig_user.user_name, orig_user.id):
            raise AdminError(
                f"warn message is from super-user {orig_user.user_name} ({orig_user.id}), ignored"
            )

        errors: list[str] = []
        self._delete(orig.message_id, errors, "warn message")
        self._delete(update.message.message_id, errors, "admin warn report message")

        warning = f"warning from {admin_user.user_name}\n\n@{orig_user.user_name} {self.warn_msg}"
        try:
            send(MessageConfig(chat_id=self.prim_chat_id, text=escape_markdown_v1(warning)), self.api)
        except Exception as err:
            errors.append(f"failed to send warning to main chat: {err}")
        _raise_collected(errors)

    def _direct_report(self, update: Update, update_samples: bool) -> None:
        admin_user = _sender(update.message)
        orig = update.message.reply_to_message
        orig_user = _sender(orig)
        log.debug(
            "direct ban by admin %r: msg id: %d, from: %r (%d)",
            admin_user.user_name, orig.message_id, orig_user.user_name, orig_user.id,
        )
        msg_text = _message_text(orig)
        log.debug("reported spam message from superuser %r (%d): %r",
                  admin_user.user_name, admin_user.id, msg_text)

        if self._is_super(orig_user.user_name, orig_user.id):
            raise AdminError(
                f"banned message is from super-user {orig_user.user_name} ({orig_user.id}), ignored"
            )

        errors: list[str] = []
        try:
            self.bot.remove_approved_user(orig_user.id)
        except Exception as err:
            # not critical: the user may never have been approved
            log.debug("can't remove user %d from approved list: %s", orig_user.id, err)

        response = self.bot.on_message(Message(text=msg_text, from_user=User(id=orig_user.id)), True)
        report = (
            f"**original detection results for {escape_markdown_v1(orig_user.user_name)} "
            f"({orig_user.id})**\n\n{msg_text}\n\n{escape_markdown_v1(_spam_info(response))}\n\n\n"
            f"*the user banned by {_quote(escape_markdown_v1(admin_user.user_name))} and message deleted*"
        )
        try:
            send(MessageConfig(chat_id=self.admin_chat_id, text=report), self.api)
        except Exception as err:
            errors.append(f"failed to send spam detection results to admin chat: {err}")

        if self.dry:
            _raise_collected(errors)
            return

        if update_samples:
            try:
                self.bot.update_spam(msg_text)
            except Exception as err:
                raise AdminError(f"failed to update spam for {_quote(msg_text)}: {err}") from err

        self._delete(orig.message_id, errors, "spam message")
        self._delete(update.message.message_id, errors, "admin spam report message")

        _, username = self._forward_username_and_id(update)
        self._ban(orig_user.id, username, errors)
        _raise_collected(errors)

    def send_with_unban_markup(
        self, text: str, action: str, user: User, msg_id: int, chat_id: int
    ) -> None:
        """Send a markdown message with an action button (asks confirmation) and an info button."""
        log.debug("action response %r: user %s, msgID:%d, text: %r", action, user, msg_id, text)
        config = MessageConfig(
            chat_id=chat_id,
            text=text,
            parse_mode=MODE_MARKDOWN,
            disable_link_preview=True,
            reply_markup=keyboard(
                [
                    InlineKeyboardButton(
                        text="\u26d4\ufe0e " + action,
                        callback_data=f"{CONFIRMATION_PREFIX}{user.id}:{msg_id}",
                    ),
                    InlineKeyboardButton(
                        text="\ufe0f\u2691 info",
                        callback_data=f"{INFO_PREFIX}{user.id}:{msg_id}",
                    ),
                ]
            ),
        )
        try:
            self.api.send(config)
        except Exception as err:
            raise AdminError(f"can't send message to telegram {_quote(text)}: {err}") from err
"""Handling of inline keyboard callbacks in the admin chat: unban, confirm ban, show spam info."""

from __future__ import annotations

import json
import logging
import time
from datetime import timedelta

from spamguard.admin import (
    BAN_PREFIX,
    CONFIRMATION_PREFIX,
    INFO_PREFIX,
    Admin,
    AdminError,
    extract_username,
    get_clean_message,
    parse_callback_data,
)
from spamguard.bot import PERMANENT_BAN_DURATION
from spamguard.events import BanRequest, ban_user_or_channel, escape_markdown_v1, send
from spamguard.telegram import (
    MODE_MARKDOWN,
    CallbackConfig,
    CallbackQuery,
    ChatPermissions,
    DeleteMessageConfig,
    EditMessageReplyMarkupConfig,
    EditMessageTextConfig,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    RestrictChatMemberConfig,
    UnbanChatMemberConfig,
    keyboard,
)

log = logging.getLogger(__name__)


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _format_duration(duration: timedelta) -> str:
    """Format whole seconds as hours, minutes and seconds, e.g. "1m5s"."""
    total = int(duration.total_seconds())
    if total == 0:
        return "0s"
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{minutes}m{seconds}s"
    return f"{seconds}s"


def since_query(query: CallbackQuery) -> timedelta:
    """Return the time since the query's message was sent, rounded to seconds, never negative."""
    elapsed = time.time() - query.message.date
    if elapsed <= 0:  # clock out of sync with telegram, message from the future
        return timedelta(0)
    return timedelta(seconds=int(elapsed + 0.5))


class CallbackHandler:
    """Reacts to presses of the buttons attached to ban reports in the admin chat."""

    def __init__(self, admin: Admin) -> None:
        self.admin = admin

    def _elapsed(self, query: CallbackQuery) -> str:
        return _format_duration(since_query(query))

    def _check_lines(self, user_id: int) -> list[str]:
        locator = self.admin.locator
        info = locator.spam(user_id) if locator is not None else None
        if info is None:
            return []
        return [f"- {escape_markdown_v1(str(check))}" for check in info.checks]

    def _is_super(self, user_name: str, user_id: int) -> bool:
        supers = self.admin.super_users
        return bool(user_name) and supers is not None and supers.is_super(user_name, user_id)

    def handle(self, query: CallbackQuery) -> None:
        """Dispatch a callback by its data prefix; callbacks from other chats are ignored."""
        data = query.data
        chat_id = query.message.chat.id
        if chat_id != self.admin.admin_chat_id:
            return

        if data.startswith(CONFIRMATION_PREFIX):
            try:
                self.ask_ban_confirmation(query)
            except Exception as err:
                raise AdminError(f"failed to make ban confirmation dialog: {err}") from err
            log.debug("unban confirmation request sent, chatID: %d, userID: %s, orig: %r",
                      chat_id, data[1:], query.message.text)
            return

        if data.startswith(BAN_PREFIX):
            try:
                self.ban_confirmed(query)
            except Exception as err:
                raise AdminError(f"failed confirmation ban: {err}") from err
            log.debug("ban confirmed, chatID: %d, userID: %s, orig: %r",
                      chat_id, data, query.message.text)
            return

        if data.startswith(INFO_PREFIX):
            try:
                self.show_info(query)
            except Exception as err:
                raise AdminError(f"failed to show spam info: {err}") from err
            log.debug("spam info sent, chatID: %d, userID: %s, orig: %r",
                      chat_id, data, query.message.text)
            return

        log.debug("unban action activated, chatID: %d, userID: %s, orig: %r",
                  chat_id, data, query.message.text)
        try:
            self.unban_confirmed(query)
        except Exception as err:
            raise AdminError(f"failed to unban user: {err}") from err
        log.info("user unbanned, chatID: %d, userID: %s, orig: %r", chat_id, data, query.message.text)

    def ask_ban_confirmation(self, query: CallbackQuery) -> None:
        """Replace the keyboard with "unban" and "keep banned" buttons. Data: ?userID:msgID."""
        ids = query.data[1:]
        keep_banned = "Confirm ban" if self.admin.training_mode else "Keep it banned"
        markup = keyboard([
            InlineKeyboardButton(text="Unban for real", callback_data=ids),
            InlineKeyboardButton(text=keep_banned, callback_data=BAN_PREFIX + ids),
        ])
        edit = EditMessageReplyMarkupConfig(
            chat_id=query.message.chat.id, message_id=query.message.message_id, reply_markup=markup
        )
        try:
            send(edit, self.admin.api)
        except Exception as err:
            raise AdminError(
                f"failed to make confirmation, chatID:{query.message.chat.id}, "
                f"msgID:{query.message.message_id}, {err}"
            ) from err

    def ban_confirmed(self, query: CallbackQuery) -> None:
        """Keep the ban: clear the keyboard, learn the message as spam, and ban for real if needed.

        Data: +userID:msgID.
        """
        admin = self.admin
        text = (query.message.text
                + f"\n\n_ban confirmed by {query.from_user.user_name} in {self._elapsed(query)}_")
        edit = EditMessageTextConfig(
            chat_id=query.message.chat.id, message_id=query.message.message_id, text=text,
            reply_markup=InlineKeyboardMarkup(),
        )
        try:
            send(edit, admin.api)
        except Exception as err:
            raise AdminError(
                f"failed to clear confirmation, chatID:{query.message.chat.id}, "
                f"msgID:{query.message.message_id}, {err}"
            ) from err

        try:
            clean = get_clean_message(query.message.text)
        except AdminError as err:
            log.debug("failed to get clean message: %s", err)
            clean = ""
        if clean:
            try:
                admin.bot.update_spam(clean)
            except Exception as err:
                raise AdminError(f"failed to update spam for {_quote(clean)}: {err}") from err

        try:
            user_id, msg_id = parse_callback_data(query.data)
        except AdminError as err:
            raise AdminError(f"failed to parse callback's userID {_quote(query.data)}: {err}") from err

        if admin.training_mode:
            # nothing was banned in training mode, do the real ban and delete now
            try:
                self.delete_and_ban(query, user_id, msg_id)
            except Exception as err:
                raise AdminError(f"failed to ban user {user_id}: {err}") from err

        if admin.soft_ban and not admin.training_mode:
            try:
                user_name = extract_username(query.message.text)
            except AdminError as err:
                log.debug("failed to extract username from %r: %s", query.message.text, err)
                user_name = ""
            request = BanRequest(
                api=admin.api, duration=PERMANENT_BAN_DURATION, user_id=user_id,
                chat_id=admin.prim_chat_id, dry=admin.dry, training=admin.training_mode,
                user_name=user_name, restrict=False,
            )
            try:
                ban_user_or_channel(request)
            except Exception as err:
                raise AdminError(f"failed to ban user {user_id}: {err}") from err

    def unban_confirmed(self, query: CallbackQuery) -> None:
        """Unban the user, approve them, learn the message as ham and mark the report.

        Data: userID:msgID.
        """
        admin = self.admin
        chat_id = query.message.chat.id
        try:
            admin.api.request(CallbackConfig(callback_query_id=query.id, text="accepted"))
        except Exception as err:
            raise AdminError(f"failed to send callback response: {err}") from err

        try:
            user_id, _ = parse_callback_data(query.data)
        except AdminError as err:
            raise AdminError(f"failed to parse callback data {_quote(query.data)}: {err}") from err

        try:
            clean = get_clean_message(query.message.text)
        except AdminError as err:
            log.debug("failed to get clean message: %s", err)
            clean = ""
        if clean:
            try:
                admin.bot.update_ham(clean)
            except Exception as err:
                raise AdminError(f"failed to update ham for {_quote(clean)}: {err}") from err

        if not admin.training_mode:  # nothing was banned in training mode
            self.unban(user_id)

        try:
            name = extract_username(query.message.text)
        except AdminError as err:
            log.debug("failed to extract username from %r: %s", query.message.text, err)
            name = ""
        try:
            admin.bot.add_approved_user(user_id, name)
        except Exception as err:
            raise AdminError(f"failed to add user {user_id} to approved list: {err}") from err

        text = query.message.text + f"\n\n_unbanned by {query.from_user.user_name} in {self._elapsed(query)}_"
        if "spam detection results" not in query.message.text and user_id != 0:
            lines = ["\n\n**original detection results**\n", *self._check_lines(user_id)]
            if len(lines) > 1:
                text += "\n".join(lines)

        edit = EditMessageTextConfig(
            chat_id=chat_id, message_id=query.message.message_id, text=text,
            reply_markup=InlineKeyboardMarkup(),
        )
        try:
            send(edit, admin.api)
        except Exception as err:
            raise AdminError(
                f"failed to edit message, chatID:{chat_id}, msgID:{query.message.message_id}, {err}"
            ) from err

    def unban(self, user_id: int) -> None:
        """Lift the ban: drop restrictions in soft-ban mode, unban otherwise."""
        admin = self.admin
        if admin.soft_ban:
            permissions = ChatPermissions(
                can_send_messages=True, can_send_audios=True, can_send_documents=True,
                can_send_photos=True, can_send_videos=True, can_send_video_notes=True,
                can_send_voice_notes=True, can_send_other_messages=True, can_change_info=True,
                can_invite_users=True, can_pin_messages=True,
            )
            try:
                admin.api.request(RestrictChatMemberConfig(
                    chat_id=admin.prim_chat_id, user_id=user_id, permissions=permissions,
                ))
            except Exception as err:
                raise AdminError(f"failed to drop restrictions for user {user_id}: {err}") from err
            return

        # only_if_banned keeps a member who is not banned from being removed from the chat
        try:
            admin.api.request(UnbanChatMemberConfig(
                chat_id=admin.prim_chat_id, user_id=user_id, only_if_banned=True,
            ))
        except Exception as err:
            raise AdminError(f"failed to unban user {user_id}: {err}") from err

    def show_info(self, query: CallbackQuery) -> None:
        """Append spam detection details to the report and drop the info button. Data: !userID:msgID."""
        data = query.data
        info_text = "**can't get spam info**"
        info: list[str] = []
        try:
            user_id, _ = parse_callback_data(data)
        except AdminError as err:
            info.append(f"**failed to parse userID from {_quote(data[1:])}: {err}**")
            user_id = 0

        if user_id != 0:
            info.extend(self._check_lines(user_id))
            if info:
                info_text = "\n".join(info)

        text = query.message.text + "\n\n**spam detection results**\n" + info_text
        rows: list[list[InlineKeyboardButton]] = []
        markup = query.message.reply_markup
        if markup is not None and markup.inline_keyboard:
            rows = [list(row) for row in markup.inline_keyboard]
            rows[0] = rows[0][:1]  # drop the info button
        edit = EditMessageTextConfig(
            chat_id=query.message.chat.id, message_id=query.message.message_id, text=text,
            parse_mode=MODE_MARKDOWN, reply_markup=InlineKeyboardMarkup(inline_keyboard=rows),
        )
        try:
            send(edit, self.admin.api)
        except Exception as err:
            raise AdminError(
                f"failed to send spam info, chatID:{query.message.chat.id}, "
                f"msgID:{query.message.message_id}, {err}"
            ) from err

    def delete_and_ban(self, query: CallbackQuery, user_id: int, msg_id: int) -> None:
        """Delete the message and ban its author, unless the author is a super-user."""
        admin = self.admin
        errors: list[str] = []
        user_name = admin.locator.user_name_by_id(user_id) if admin.locator is not None else ""
        request = BanRequest(
            api=admin.api, duration=PERMANENT_BAN_DURATION, user_id=user_id,
            chat_id=admin.prim_chat_id, dry=admin.dry, training=False, user_name=user_name,
        )

        from_super = self._is_super(user_name, user_id)
        if not from_super:
            try:
                ban_user_or_channel(request)
            except Exception as err:
                errors.append(f"failed to ban user {user_id}: {err}")

        # deleting a super-user's message is allowed, supers may train the bot this way
        try:
            admin.api.request(DeleteMessageConfig(chat_id=admin.prim_chat_id, message_id=msg_id))
        except Exception as err:
            raise AdminError(f"failed to delete message {query.message.message_id}: {err}") from err

        if errors:
            raise AdminError("\n".join(errors), errors)

        if from_super:
            log.info("message %d deleted, user %r (%d) is super, not banned", msg_id, user_name, user_id)
        else:
            log.info("message %d deleted, user %r (%d) banned", msg_id, user_name, user_id)
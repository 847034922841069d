# spamguard

spamguard is the moderation core of a group-chat anti-spam bot. It does not classify messages itself. You supply the following objects, and spamguard runs the workflow around them:

- a detector
- a samples store
- a dictionary store
- a message locator
- a Telegram API client

The workflow covers:

- turning chat messages into check requests
- deciding on bans
- reporting to the admin chat
- reacting to admin buttons and replies
- keeping spam and ham samples up to date

It has no runtime dependencies.

## Modules

### `spamguard.bot`

This module holds the chat model:

- `Message`, `User`, `SenderChat`, `Entity`, `Image` and `ReplyTo`
- the check types `CheckRequest`, `CheckMeta` and `CheckResult`
- `Response`, `ApprovedUser`, `LoadResult` and `SamplesStats`
- the enums `SampleType`, `SampleOrigin` and `DictionaryType`

Other members:

- `display_name(msg)` returns the sender's display name. It falls back to the username, then to the id.
- `PERMANENT_BAN_DURATION` is 400 days.

`SpamFilter(detector, params)` wraps a detector. `params` is a `SpamConfig` with these fields:

- `samples_store`
- `dict_store`
- `spam_msg`
- `spam_dry_msg`
- `group_id`
- `dry`

The `SpamFilter` methods are:

- `on_message(msg, check_only)`
  - Messages with sender id 0 are ignored.
  - Otherwise it builds a `CheckRequest`. The request counts images and `http://`/`https://` links, and flags video, audio and forwards.
  - It then calls `detector.check`.
  - For spam it returns a `Response` with `send=True`, `delete_reply_to=True` and a permanent `ban_interval`. The text is `<spam_msg>: "<name>" (<id>)`, or uses `spam_dry_msg` in dry mode.
  - For ham it returns a `Response` holding only the check results.
- `update_spam(msg)` and `update_ham(msg)` replace newlines with spaces and pass the message to the detector.
- `add_approved_user(user_id, name)`, `remove_approved_user(user_id)` and `is_approved_user(user_id)` manage approved users.
- `reload_samples()` reloads everything into the detector from the stores:
  - preset and user spam/ham samples
  - stop phrases
  - ignored words

  It fails when the store has no preset spam or no preset ham.
- `dynamic_samples()` returns `(spam, ham)`, the user-added samples.
- `remove_dynamic_spam_sample(sample)` and `remove_dynamic_ham_sample(sample)` remove user-added samples.

#### Interfaces you provide

The detector must provide:

- `check(request)`, returning `(is_spam, results)`
- `load_samples(excl_reader, spam_readers, ham_readers)`
- `load_stop_words(*readers)`
- `update_spam`, `update_ham`
- `remove_spam`, `remove_ham`
- `add_approved_user`, `remove_approved_user`, `approved_users` and `is_approved_user`

The samples store must provide:

- `read(sample_type, origin)`
- `reader(sample_type, origin)`
- `stats()`

The dictionary store must provide `reader(dict_type)`.

Readers are file-like text objects. They are closed after loading.

### `spamguard.telegram`

This module holds plain data classes for the parts of the Telegram Bot API that spamguard uses:

- incoming data: `TgMessage`, `TgUser`, `Chat`, `Update`, `CallbackQuery`, `MessageOrigin` and related types
- keyboards: `InlineKeyboardMarkup`, `InlineKeyboardButton`, and `keyboard(*rows)` to build one
- request configs: `MessageConfig`, `EditMessageTextConfig`, `EditMessageReplyMarkupConfig`, `DeleteMessageConfig`, `BanChatMemberConfig`, `BanChatSenderChatConfig`, `RestrictChatMemberConfig`, `UnbanChatMemberConfig` and `CallbackConfig`
- `APIResponse`

### `spamguard.events`

- `transform(msg)` converts a `TgMessage` into a `Message`.
  - It keeps the largest photo.
  - It sets the video, video-note, audio and forward flags. A story counts as video.
  - It puts the caption into the text: the caption becomes the text when there is none, and is appended after a newline otherwise.
- `send(message, api)` sends via `api.send` as Markdown first and retries as plain text. It raises `SendError` if both attempts fail.
- `ban_user_or_channel(BanRequest(...))` bans a user, bans a channel (`channel_id`), or restricts a user (`restrict=True`) through `api.request`.
  - It does nothing in dry or training mode.
  - Durations under 30 seconds become one minute.
  - It raises `BanError` when the response is not ok.
- `escape_markdown_v1(text)` escapes `_`, `*`, `` ` `` and `[`.
- `MsgMeta` and `SpamData` are the records a locator returns.

### `spamguard.admin`

`Admin(api, bot, locator, super_users, prim_chat_id, admin_chat_id, training_mode, soft_ban, dry, warn_msg)` handles the admin chat. Its methods are:

- `report_ban(ban_user_str, msg)` posts a ban report with two buttons: "change ban" and "info".
- `msg_handler(update)` handles a message forwarded to the admin chat as missed spam.
  - It finds the original through `locator.message(text)`.
  - It reports the detection results and learns the message as spam.
  - It deletes the original message and bans its author.
  - Super-users are never targeted.
- `direct_spam_report(update)` and `direct_ban_report(update)` handle an admin's reply to a message. Both delete the message and the reply, then ban the author. Only the spam report also learns the message as spam.
- `direct_warn_report(update)` deletes both messages and posts `warn_msg` to the main chat.
- `send_with_unban_markup(text, action, user, msg_id, chat_id)` sends a Markdown message with the action and info buttons.

Helper functions:

- `get_clean_message(msg)` extracts the original message from a ban report.
- `parse_callback_data(data)` parses `[?+!]userID:msgID` into `(user_id, msg_id)`.
- `extract_username(text)` reads the username out of a report.

In dry mode, nothing is learned, deleted or banned after the report is sent.

### `spamguard.callbacks`

`CallbackHandler(admin).handle(query)` handles inline-button presses from the admin chat. Presses from other chats are ignored. The callback data prefix selects the action:

| Prefix | Method | What it does |
| --- | --- | --- |
| `?` | `ask_ban_confirmation` | Shows "Unban for real" / "Keep it banned" buttons |
| `+` | `ban_confirmed` | Learns the message as spam; bans for real in training or soft-ban mode |
| `!` | `show_info` | Appends the spam check results |
| none | `unban_confirmed` | Unbans, approves the user and learns the message as ham |

Other members:

- `unban(user_id)` drops the restrictions in soft-ban mode and unbans otherwise.
- `delete_and_ban(query, user_id, msg_id)` is used for training-mode confirmation.
- `since_query(query)` returns the time elapsed since the report was sent.

### `spamguard.chatstore`

`Messages(path)` is a small SQLite message log. The table is created on first use. It provides:

- `add(content, username)`
- `last(count)`, newest first, returning `StoredMessage` items
- `count()`
- `close()`

It works as a context manager.

## Example

```python
from spamguard.bot import Message, SpamConfig, SpamFilter, User

spam_filter = SpamFilter(detector, SpamConfig(
    samples_store=samples_store,
    dict_store=dict_store,
    spam_msg="this is spam",
    spam_dry_msg="this is spam (dry run)",
))
spam_filter.reload_samples()

resp = spam_filter.on_message(
    Message(text="buy now https://example.com", from_user=User(id=42, username="bob")),
    False,
)
if resp.send:
    print(resp.text)
```

```python
from spamguard.chatstore import Messages

with Messages("messages.db") as store:
    store.add("hello", "alice")
    print(store.count(), store.last(10))
```

## Errors

Failures raise exceptions:

- `SpamFilterError` is raised by `SpamFilter`.
- `SendError` is raised by `send`.
- `BanError` is raised by `ban_user_or_channel`.
- `AdminError` is raised by the admin and callback handlers. Its `errors` attribute lists every failure collected.
- `ChatStoreError` is raised by `Messages`.

## What it does not do

spamguard contains no spam detector, no samples or dictionary store, and no message locator. These must be supplied by the caller.

It does not talk to Telegram itself:

- There is no HTTP client and no update polling loop.
- `api` is any object with `send(config)` and `request(config)` methods that you provide.

There is no command-line program, bot runner or web chat server. The chat store is storage only.

## Running the tests

```
pip install .[test]
pytest
```
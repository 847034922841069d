"""Bot message model and the spam filter that wraps a spam detector."""

from __future__ import annotations

import contextlib
import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import IO, Iterable, Protocol

log = logging.getLogger(__name__)

# Telegram treats restrictions longer than 366 days as permanent.
PERMANENT_BAN_DURATION = timedelta(days=400)


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


@dataclass
class User:
    """A message author."""

    id: int = 0
    username: str = ""
    display_name: str = ""


@dataclass
class SenderChat:
    """The chat a message was sent on behalf of (channel or supergroup)."""

    id: int = 0
    username: str = ""


@dataclass
class Entity:
    """A special entity in a text message: hashtag, mention, URL and so on."""

    type: str = ""
    offset: int = 0
    length: int = 0
    url: str = ""
    user: User | None = None


@dataclass
class Image:
    """An image attached to a message."""

    file_id: str = ""
    width: int = 0
    height: int = 0
    caption: str = ""
    entities: list[Entity] | None = None


@dataclass
class ReplyTo:
    """The message a message replies to."""

    from_user: User = field(default_factory=User)
    text: str = ""
    sent: datetime | None = None
    sender_chat: SenderChat = field(default_factory=SenderChat)


@dataclass
class Message:
    """The bot's own representation of a chat message."""

    id: int = 0
    from_user: User = field(default_factory=User)
    sender_chat: SenderChat = field(default_factory=SenderChat)
    chat_id: int = 0
    sent: datetime | None = None
    html: str = ""
    text: str = ""
    entities: list[Entity] | None = None
    image: Image | None = None
    reply_to: ReplyTo = field(default_factory=ReplyTo)
    with_video: bool = False
    with_video_note: bool = False
    with_forward: bool = False
    with_audio: bool = False


@dataclass
class CheckMeta:
    """Facts about a message beyond its text."""

    images: int = 0
    links: int = 0
    has_video: bool = False
    has_audio: bool = False
    has_forward: bool = False


@dataclass
class CheckRequest:
    """A request to check one message for spam."""

    msg: str = ""
    user_id: str = ""
    user_name: str = ""
    meta: CheckMeta = field(default_factory=CheckMeta)
    check_only: bool = False


@dataclass
class CheckResult:
    """The verdict of one spam check."""

    name: str = ""
    spam: bool = False
    details: str = ""

    def __str__(self) -> str:
        verdict = "spam" if self.spam else "ham"
        return f"{self.name}: {verdict}, {self.details}"


@dataclass
class Response:
    """The bot's reaction to a message."""

    text: str = ""
    send: bool = False
    ban_interval: timedelta = timedelta(0)
    user: User = field(default_factory=User)
    channel_id: int = 0
    reply_to: int = 0
    delete_reply_to: bool = False
    check_results: list[CheckResult] = field(default_factory=list)


@dataclass
class ApprovedUser:
    """A user trusted not to be a spammer."""

    user_id: str = ""
    user_name: str = ""


@dataclass
class LoadResult:
    """Counts of what a detector loaded."""

    excluded_tokens: int = 0
    spam_samples: int = 0
    ham_samples: int = 0
    stop_words: int = 0


@dataclass
class SamplesStats:
    """Counts of samples held by a samples store."""

    total_spam: int = 0
    total_ham: int = 0
    preset_spam: int = 0
    preset_ham: int = 0
    user_spam: int = 0
    user_ham: int = 0


class SampleType(enum.Enum):
    HAM = "ham"
    SPAM = "spam"


class SampleOrigin(enum.Enum):
    PRESET = "preset"
    USER = "user"


class DictionaryType(enum.Enum):
    STOP_PHRASE = "stop_phrase"
    IGNORED_WORD = "ignored_word"


class SpamFilterError(Exception):
    """Raised when the spam filter cannot complete an operation."""


class Detector(Protocol):
    def check(self, request: CheckRequest) -> tuple[bool, list[CheckResult]]: ...

    def load_samples(
        self, excl_reader: IO[str], spam_readers: list[IO[str]], ham_readers: list[IO[str]]
    ) -> LoadResult: ...

    def load_stop_words(self, *readers: IO[str]) -> LoadResult: ...

    def update_spam(self, msg: str) -> None: ...

    def update_ham(self, msg: str) -> None: ...

    def remove_ham(self, msg: str) -> None: ...

    def remove_spam(self, msg: str) -> None: ...

    def add_approved_user(self, user: ApprovedUser) -> None: ...

    def remove_approved_user(self, user_id: str) -> None: ...

    def approved_users(self) -> list[ApprovedUser]: ...

    def is_approved_user(self, user_id: str) -> bool: ...


class SamplesStore(Protocol):
    def read(self, sample_type: SampleType, origin: SampleOrigin) -> list[str]: ...

    def reader(self, sample_type: SampleType, origin: SampleOrigin) -> IO[str]: ...

    def stats(self) -> SamplesStats: ...


class DictStore(Protocol):
    def reader(self, dict_type: DictionaryType) -> IO[str]: ...


@dataclass
class SpamConfig:
    """Parameters of the spam filter."""

    samples_store: SamplesStore | None = None
    dict_store: DictStore | None = None
    spam_msg: str = ""
    spam_dry_msg: str = ""
    group_id: str = ""
    dry: bool = False


def display_name(msg: Message) -> str:
    """Return the sender's display name, else the username, else the id."""
    name = msg.from_user.display_name or msg.from_user.username or str(msg.from_user.id)
    return name.strip()


def _flatten(text: str) -> str:
    return text.replace("\n", " ")


class SpamFilter:
    """Checks messages with a detector and manages its samples and approved users."""

    def __init__(self, detector: Detector, params: SpamConfig) -> None:
        self.detector = detector
        self.params = params

    def on_message(self, msg: Message, check_only: bool) -> Response:
        """Check a message and return the reaction: a ban response for spam, else check results only."""
        if msg.from_user.id == 0:  # system message
            return Response()
        name = display_name(msg)

        meta = CheckMeta(
            images=1 if msg.image is not None else 0,
            links=msg.text.count("http://") + msg.text.count("https://"),
            has_video=msg.with_video or msg.with_video_note,
            has_audio=msg.with_audio,
            has_forward=msg.with_forward,
        )
        request = CheckRequest(
            msg=msg.text,
            user_id=str(msg.from_user.id),
            user_name=msg.from_user.username,
            meta=meta,
            check_only=check_only,
        )
        is_spam, results = self.detector.check(request)
        summary = ", ".join(
            f"{{name: {r.name}, spam: {str(r.spam).lower()}, details: {r.details}}}" for r in results
        )
        if not is_spam:
            log.debug("user %s is not a spammer, %s", name, summary)
            return Response(check_results=results)

        log.info("user %s detected as spammer: %s, %r", name, summary, msg.text)
        prefix = self.params.spam_dry_msg if self.params.dry else self.params.spam_msg
        return Response(
            text=f"{prefix}: {_quote(name)} ({msg.from_user.id})",
            send=True,
            reply_to=msg.id,
            ban_interval=PERMANENT_BAN_DURATION,
            check_results=results,
            delete_reply_to=True,
            user=User(
                id=msg.from_user.id,
                username=msg.from_user.username,
                display_name=msg.from_user.display_name,
            ),
        )

    def update_spam(self, msg: str) -> None:
        """Add a message to the spam samples."""
        clean = _flatten(msg)
        log.debug("update spam samples with %r", clean)
        try:
            self.detector.update_spam(clean)
        except Exception as err:
            raise SpamFilterError(f"can't update spam samples: {err}") from err
        log.info("updated spam samples with %r", clean)

    def update_ham(self, msg: str) -> None:
        """Add a message to the ham samples."""
        clean = _flatten(msg)
        log.debug("update ham samples with %r", clean)
        try:
            self.detector.update_ham(clean)
        except Exception as err:
            raise SpamFilterError(f"can't update ham samples: {err}") from err
        log.info("updated ham samples with %r", clean)

    def is_approved_user(self, user_id: int) -> bool:
        return self.detector.is_approved_user(str(user_id))

    def add_approved_user(self, user_id: int, name: str) -> None:
        log.info("add approved user: id:%d, name:%r", user_id, name)
        try:
            self.detector.add_approved_user(ApprovedUser(user_id=str(user_id), user_name=name))
        except Exception as err:
            raise SpamFilterError(f"failed to write approved user to storage: {err}") from err

    def remove_approved_user(self, user_id: int) -> None:
        log.info("remove approved user: %d", user_id)
        try:
            self.detector.remove_approved_user(str(user_id))
        except Exception as err:
            raise SpamFilterError(f"failed to delete approved user from storage: {err}") from err

    def reload_samples(self) -> None:
        """Reload samples, excluded tokens and stop words from the stores into the detector."""
        log.debug("reloading samples")
        samples = self.params.samples_store
        dicts = self.params.dict_store
        if samples is None or dicts is None:
            raise SpamFilterError("samples or dictionary store is not configured")

        try:
            stats = samples.stats()
        except Exception as err:
            raise SpamFilterError(f"failed to get samples store stats: {err}") from err
        if stats.preset_spam == 0 or stats.preset_ham == 0:
            raise SpamFilterError("no persistent spam or ham samples found in the store")

        def open_reader(stack: contextlib.ExitStack, what: str, opener, *args) -> IO[str]:
            try:
                reader = opener(*args)
            except Exception as err:
                raise SpamFilterError(f"failed to get {what}: {err}") from err
            return stack.enter_context(contextlib.closing(reader))

        with contextlib.ExitStack() as stack:
            spam = open_reader(stack, "persistent spam samples", samples.reader,
                               SampleType.SPAM, SampleOrigin.PRESET)
            ham = open_reader(stack, "persistent ham samples", samples.reader,
                              SampleType.HAM, SampleOrigin.PRESET)
            spam_dynamic = open_reader(stack, "dynamic spam samples", samples.reader,
                                       SampleType.SPAM, SampleOrigin.USER)
            ham_dynamic = open_reader(stack, "dynamic ham samples", samples.reader,
                                      SampleType.HAM, SampleOrigin.USER)
            stop_words = open_reader(stack, "stop words", dicts.reader, DictionaryType.STOP_PHRASE)
            excluded = open_reader(stack, "excluded tokens", dicts.reader, DictionaryType.IGNORED_WORD)

            # loading clears the detector's state first, no reset needed
            try:
                loaded = self.detector.load_samples(excluded, [spam, spam_dynamic], [ham, ham_dynamic])
            except Exception as err:
                raise SpamFilterError(f"failed to reload samples: {err}") from err
            try:
                loaded_words = self.detector.load_stop_words(stop_words)
            except Exception as err:
                raise SpamFilterError(f"failed to reload stop words: {err}") from err

        log.info(
            "loaded samples - spam: %d, ham: %d, excluded tokens: %d, stop-words: %d",
            loaded.spam_samples, loaded.ham_samples, loaded.excluded_tokens, loaded_words.stop_words,
        )

    def dynamic_samples(self) -> tuple[list[str], list[str]]:
        """Return the user-added spam and ham samples."""
        store = self.params.samples_store
        if store is None:
            raise SpamFilterError("samples store is not configured")
        errors: list[str] = []
        spam: list[str] = []
        ham: list[str] = []
        try:
            spam = store.read(SampleType.SPAM, SampleOrigin.USER)
        except Exception as err:
            errors.append(f"failed to read dynamic spam samples: {err}")
        try:
            ham = store.read(SampleType.HAM, SampleOrigin.USER)
        except Exception as err:
            errors.append(f"failed to read dynamic ham samples: {err}")
        if errors:
            raise SpamFilterError("; ".join(errors))
        return spam, ham

    def remove_dynamic_spam_sample(self, sample: str) -> None:
        log.info("remove dynamic spam sample: %r", sample)
        try:
            self.detector.remove_spam(_flatten(sample))
        except Exception as err:
            raise SpamFilterError(f"can't remove spam sample {_quote(sample)}: {err}") from err

    def remove_dynamic_ham_sample(self, sample: str) -> None:
        log.info("remove dynamic ham sample: %r", sample)
        try:
            self.detector.remove_ham(_flatten(sample))
        except Exception as err:
            raise SpamFilterError(f"can't remove ham sample {_quote(sample)}: {err}") from err


def _unused(_: Iterable[object]) -> None:  # pragma: no cover
    return None
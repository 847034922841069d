import io
from collections import defaultdict

import pytest

from spamguard.bot import (
    PERMANENT_BAN_DURATION,
    CheckMeta,
    CheckRequest,
    CheckResult,
    DictionaryType,
    Image,
    LoadResult,
    Message,
    Response,
    SampleOrigin,
    SampleType,
    SamplesStats,
    SpamConfig,
    SpamFilter,
    SpamFilterError,
    User,
    display_name,
)


class FakeDetector:
    def __init__(self, error=None, load_error=None, stop_words_error=None, approved=None):
        self.error = error
        self.load_error = load_error
        self.stop_words_error = stop_words_error
        self.approved = approved
        self.calls = defaultdict(list)

    def check(self, request):
        self.calls["check"].append(request)
        if request.msg == "good message":
            return False, [CheckResult(name="test", spam=False, details="ham")]
        return True, [CheckResult(name="test", spam=True, details="spam")]

    def load_samples(self, excl_reader, spam_readers, ham_readers):
        self.calls["load_samples"].append(
            (excl_reader.read(), [r.read() for r in spam_readers], [r.read() for r in ham_readers])
        )
        if self.load_error:
            raise self.load_error
        return LoadResult(spam_samples=10, ham_samples=5)

    def load_stop_words(self, *readers):
        self.calls["load_stop_words"].append([r.read() for r in readers])
        if self.stop_words_error:
            raise self.stop_words_error
        return LoadResult(stop_words=3)

    def _op(self, name, value):
        self.calls[name].append(value)
        if self.error:
            raise self.error

    def update_spam(self, msg):
        self._op("update_spam", msg)

    def update_ham(self, msg):
        self._op("update_ham", msg)

    def remove_spam(self, msg):
        self._op("remove_spam", msg)

    def remove_ham(self, msg):
        self._op("remove_ham", msg)

    def add_approved_user(self, user):
        self._op("add_approved_user", user)

    def remove_approved_user(self, user_id):
        self._op("remove_approved_user", user_id)

    def approved_users(self):
        return []

    def is_approved_user(self, user_id):
        self.calls["is_approved_user"].append(user_id)
        return user_id == self.approved


class FakeSamplesStore:
    def __init__(self, stats=None, stats_error=None, reader_error=None, spam=None, ham=None, read_error=None):
        self._stats = stats
        self.stats_error = stats_error
        self.reader_error = reader_error
        self.spam = spam
        self.ham = ham
        self.read_error = read_error
        self.readers = []
        self.read_calls = []
        self.stats_calls = 0

    def stats(self):
        self.stats_calls += 1
        if self.stats_error:
            raise self.stats_error
        return self._stats

    def reader(self, sample_type, origin):
        if self.reader_error:
            raise self.reader_error
        r = io.StringIO(f"{sample_type.value}-{origin.value}")
        self.readers.append(r)
        return r

    def read(self, sample_type, origin):
        self.read_calls.append((sample_type, origin))
        if self.read_error:
            raise self.read_error
        return self.spam if sample_type is SampleType.SPAM else self.ham


class FakeDictStore:
    def __init__(self):
        self.readers = []
        self.types = []

    def reader(self, dict_type):
        self.types.append(dict_type)
        r = io.StringIO(dict_type.value)
        self.readers.append(r)
        return r


@pytest.mark.parametrize(
    "user, expected",
    [
        (User(id=1, username="john", display_name="John Doe"), "John Doe"),
        (User(id=2, username="jane"), "jane"),
        (User(id=3), "3"),
    ],
)
def test_display_name(user, expected):
    assert display_name(Message(from_user=user)) == expected


def test_check_result_str():
    assert str(CheckResult("cas", False, "record not found")) == "cas: ham, record not found"
    assert str(CheckResult("stopword", True, "found")) == "stopword: spam, found"


SPAM_RESULTS = [CheckResult(name="test", spam=True, details="spam")]


def _spam_response(text, user):
    return Response(
        text=text,
        send=True,
        ban_interval=PERMANENT_BAN_DURATION,
        delete_reply_to=True,
        user=user,
        check_results=SPAM_RESULTS,
    )


@pytest.mark.parametrize(
    "message, dry, want_response, want_request",
    [
        (
            Message(text="spam message", from_user=User(id=1, username="user1"), image=Image(file_id="123")),
            False,
            _spam_response('detected: "user1" (1)', User(id=1, username="user1")),
            CheckRequest(msg="spam message", user_id="1", user_name="user1", meta=CheckMeta(images=1)),
        ),
        (
            Message(text="spam message", from_user=User(id=1, username="user1"),
                    with_video=True, with_forward=True),
            False,
            _spam_response('detected: "user1" (1)', User(id=1, username="user1")),
            CheckRequest(msg="spam message", user_id="1", user_name="user1",
                         meta=CheckMeta(has_video=True, has_forward=True)),
        ),
        (
            Message(text="spam message", from_user=User(id=1, username="user1"), with_video_note=True),
            False,
            _spam_response('detected: "user1" (1)', User(id=1, username="user1")),
            CheckRequest(msg="spam message", user_id="1", user_name="user1", meta=CheckMeta(has_video=True)),
        ),
        (
            Message(text="spam message", from_user=User(id=1, username="user1")),
            True,
            _spam_response('detected dry: "user1" (1)', User(id=1, username="user1")),
            None,
        ),
        (
            Message(text="good message", from_user=User(id=1, username="user1")),
            False,
            Response(check_results=[CheckResult(name="test", spam=False, details="ham")]),
            None,
        ),
        (
            Message(text="message https://example.com/path?param=1 http://test.com http://test.com/another",
                    from_user=User(id=1, username="user1")),
            False,
            _spam_response('detected: "user1" (1)', User(id=1, username="user1")),
            CheckRequest(msg="message https://example.com/path?param=1 http://test.com http://test.com/another",
                         user_id="1", user_name="user1", meta=CheckMeta(links=3)),
        ),
        (
            Message(text="spam message", from_user=User(id=1, username="user1", display_name="User One")),
            False,
            _spam_response('detected: "User One" (1)', User(id=1, username="user1", display_name="User One")),
            CheckRequest(msg="spam message", user_id="1", user_name="user1"),
        ),
    ],
    ids=["image", "video+forward", "video note", "dry", "ham", "links", "display name"],
)
def test_on_message(message, dry, want_response, want_request):
    det = FakeDetector()
    flt = SpamFilter(det, SpamConfig(spam_msg="detected", spam_dry_msg="detected dry", dry=dry))
    assert flt.on_message(message, False) == want_response
    assert len(det.calls["check"]) == 1
    if want_request is not None:
        assert det.calls["check"][0] == want_request


@pytest.mark.parametrize(
    "message",
    [
        Message(text="system", from_user=User(id=0)),
        Message(text="system message", from_user=User(id=0), with_forward=True, image=Image(file_id="123")),
    ],
)
def test_on_message_system(message):
    det = FakeDetector()
    flt = SpamFilter(det, SpamConfig(spam_msg="detected"))
    assert flt.on_message(message, False) == Response()
    assert det.calls["check"] == []


def test_on_message_check_only_passed():
    det = FakeDetector()
    SpamFilter(det, SpamConfig()).on_message(Message(text="x", from_user=User(id=5)), True)
    assert det.calls["check"][0].check_only is True


def _filter(det):
    return SpamFilter(det, SpamConfig(samples_store=FakeSamplesStore(), dict_store=FakeDictStore(), group_id="gr1"))


def test_update_spam_success():
    det = FakeDetector()
    _filter(det).update_spam("spam\nmessage")
    assert det.calls["update_spam"] == ["spam message"]


def test_update_spam_error():
    det = FakeDetector(error=RuntimeError("update error"))
    with pytest.raises(SpamFilterError, match="can't update spam samples"):
        _filter(det).update_spam("err")


def test_update_ham_success():
    det = FakeDetector()
    _filter(det).update_ham("ham message")
    assert det.calls["update_ham"] == ["ham message"]


def test_update_ham_error():
    det = FakeDetector(error=RuntimeError("update error"))
    with pytest.raises(SpamFilterError, match="can't update ham samples"):
        _filter(det).update_ham("err")


def test_add_approved_user_success():
    det = FakeDetector(approved="123")
    flt = _filter(det)
    flt.add_approved_user(123, "test_user")
    user = det.calls["add_approved_user"][0]
    assert (user.user_id, user.user_name) == ("123", "test_user")
    assert flt.is_approved_user(123) is True


def test_add_approved_user_error():
    det = FakeDetector(error=RuntimeError("operation failed"))
    with pytest.raises(SpamFilterError, match="failed to write approved user"):
        _filter(det).add_approved_user(-1, "test_user")


def test_remove_approved_user_success():
    det = FakeDetector()
    _filter(det).remove_approved_user(123)
    assert det.calls["remove_approved_user"] == ["123"]


def test_remove_approved_user_error():
    det = FakeDetector(error=RuntimeError("operation failed"))
    with pytest.raises(SpamFilterError, match="failed to delete approved user"):
        _filter(det).remove_approved_user(-1)


@pytest.mark.parametrize("user_id, approved, want", [(123, "123", True), (456, "123", False)])
def test_is_approved_user(user_id, approved, want):
    det = FakeDetector(approved=approved)
    assert SpamFilter(det, SpamConfig()).is_approved_user(user_id) is want
    assert det.calls["is_approved_user"] == [str(user_id)]


def test_reload_samples_success():
    det = FakeDetector()
    samples = FakeSamplesStore(stats=SamplesStats(preset_spam=10, preset_ham=5))
    dicts = FakeDictStore()
    SpamFilter(det, SpamConfig(samples_store=samples, dict_store=dicts)).reload_samples()
    assert det.calls["load_samples"] == [
        ("ignored_word", ["spam-preset", "spam-user"], ["ham-preset", "ham-user"])
    ]
    assert det.calls["load_stop_words"] == [["stop_phrase"]]
    assert samples.stats_calls == 1
    assert all(r.closed for r in samples.readers + dicts.readers)


@pytest.mark.parametrize(
    "store_kwargs, det_kwargs, match",
    [
        ({"stats": SamplesStats()}, {}, "no persistent"),
        ({"stats_error": RuntimeError("stats error")}, {}, "stats"),
        ({"stats": SamplesStats(preset_spam=10, preset_ham=5), "reader_error": RuntimeError("reader error")},
         {}, "persistent spam samples"),
        ({"stats": SamplesStats(preset_spam=10, preset_ham=5)},
         {"load_error": RuntimeError("load error")}, "failed to reload samples"),
        ({"stats": SamplesStats(preset_spam=10, preset_ham=5)},
         {"stop_words_error": RuntimeError("stop words error")}, "failed to reload stop words"),
    ],
    ids=["no preset", "stats error", "reader error", "load error", "stop words error"],
)
def test_reload_samples_errors(store_kwargs, det_kwargs, match):
    samples = FakeSamplesStore(**store_kwargs)
    dicts = FakeDictStore()
    flt = SpamFilter(FakeDetector(**det_kwargs), SpamConfig(samples_store=samples, dict_store=dicts))
    with pytest.raises(SpamFilterError, match=match):
        flt.reload_samples()
    assert all(r.closed for r in samples.readers + dicts.readers)


@pytest.mark.parametrize(
    "spam, ham",
    [(["spam1", "spam2"], ["ham1", "ham2"]), ([], [])],
)
def test_dynamic_samples(spam, ham):
    store = FakeSamplesStore(spam=spam, ham=ham)
    flt = SpamFilter(FakeDetector(), SpamConfig(samples_store=store))
    assert flt.dynamic_samples() == (spam, ham)
    assert store.read_calls == [
        (SampleType.SPAM, SampleOrigin.USER),
        (SampleType.HAM, SampleOrigin.USER),
    ]


def test_dynamic_samples_error():
    store = FakeSamplesStore(read_error=RuntimeError("read error"))
    flt = SpamFilter(FakeDetector(), SpamConfig(samples_store=store))
    with pytest.raises(SpamFilterError, match="dynamic spam samples.*dynamic ham samples"):
        flt.dynamic_samples()


def test_remove_dynamic_spam_sample():
    det = FakeDetector()
    _filter(det).remove_dynamic_spam_sample("spam sample")
    assert det.calls["remove_spam"] == ["spam sample"]


def test_remove_dynamic_ham_sample():
    det = FakeDetector()
    _filter(det).remove_dynamic_ham_sample("ham\nsample")
    assert det.calls["remove_ham"] == ["ham sample"]


@pytest.mark.parametrize("method", ["remove_dynamic_spam_sample", "remove_dynamic_ham_sample"])
def test_remove_dynamic_sample_error(method):
    det = FakeDetector(error=RuntimeError("delete error"))
    with pytest.raises(SpamFilterError, match="delete error"):
        getattr(_filter(det), method)("sample")


def test_reload_samples_requests_dictionaries_in_order():
    dicts = FakeDictStore()
    samples = FakeSamplesStore(stats=SamplesStats(preset_spam=1, preset_ham=1))
    SpamFilter(FakeDetector(), SpamConfig(samples_store=samples, dict_store=dicts)).reload_samples()
    assert dicts.types == [DictionaryType.STOP_PHRASE, DictionaryType.IGNORED_WORD]
import pytest

from spamguard.chatstore import ChatStoreError, Messages, StoredMessage


@pytest.fixture
def store(tmp_path):
    with Messages(tmp_path / "messages.db") as messages:
        yield messages


def test_empty_store(store):
    assert store.count() == 0
    assert store.last(10) == []


def test_add_and_count(store):
    store.add("hello", "user1")
    store.add("world", "user2")
    assert store.count() == 2


def test_last_newest_first(store):
    for i in range(3):
        store.add(f"msg{i}", "user1")
    result = store.last(10)
    assert [m.content for m in result] == ["msg2", "msg1", "msg0"]
    assert all(m.username == "user1" for m in result)
    assert all(m.timestamp for m in result)


def test_last_respects_limit(store):
    for i in range(5):
        store.add(f"msg{i}", "u")
    result = store.last(2)
    assert [m.content for m in result] == ["msg4", "msg3"]


def test_last_returns_stored_messages(store):
    store.add("content", "name")
    (message,) = store.last(1)
    assert isinstance(message, StoredMessage)
    assert (message.content, message.username) == ("content", "name")


def test_persists_across_reopen(tmp_path):
    path = tmp_path / "chat.db"
    with Messages(path) as first:
        first.add("kept", "u1")
    with Messages(path) as second:
        assert second.count() == 1
        assert second.last(1)[0].content == "kept"


def test_closed_store_raises(tmp_path):
    messages = Messages(tmp_path / "x.db")
    messages.close()
    with pytest.raises(ChatStoreError):
        messages.add("a", "b")
    with pytest.raises(ChatStoreError):
        messages.count()
    with pytest.raises(ChatStoreError):
        messages.last(1)


def test_bad_path_raises(tmp_path):
    with pytest.raises(ChatStoreError):
        Messages(tmp_path / "missing" / "dir" / "x.db")
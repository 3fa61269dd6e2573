"""Unit tests for ConversationStore."""
import sys
import json
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from datetime import datetime, timezone
from unittest.mock import Mock

from models.conversation import Conversation, Turn
from services.conversation_store import CHATS_KEY, GREETING, ConversationStore
from services.storage import JSONFileStorage, MemoryStorage


class TestConversationStore:
    """Test suite for ConversationStore."""

    @pytest.fixture
    def storage(self):
        return MemoryStorage()

    @pytest.fixture
    def store(self, storage):
        store = ConversationStore(storage)
        store.load()
        return store

    def test_fresh_store_starts_with_greeting(self, store):
        """Test a fresh store shows only the greeting."""
        assert store.active is None
        assert [(t.role, t.content) for t in store.turns] == [("assistant", GREETING)]

    def test_first_append_creates_conversation(self, store, storage):
        """Test the first append creates and saves a conversation."""
        conversation = store.append(Turn("user", "What is the weather like?"))

        assert conversation.id.startswith("conv_")
        assert conversation.title == "What is the weather like?"
        assert store.active_id == conversation.id
        assert [t.role for t in conversation.turns] == ["assistant", "user"]
        assert json.loads(storage.get_item(CHATS_KEY))[0]["id"] == conversation.id

    def test_title_is_truncated(self, store):
        """Test long first messages are truncated for the title."""
        conversation = store.append(Turn("user", "x" * 51))

        assert conversation.title == "x" * 50 + "..."

    def test_title_at_limit_is_not_truncated(self, store):
        """Test a first message at the limit is used whole."""
        conversation = store.append(Turn("user", "y" * 50))

        assert conversation.title == "y" * 50

    def test_append_overwrites_active_conversation(self, store, storage):
        """Test later appends update the active conversation in place."""
        first = store.append(Turn("user", "Hi"))
        second = store.append(Turn("assistant", "Hello!"))

        assert first is second
        assert len(store.conversations) == 1
        saved = json.loads(storage.get_item(CHATS_KEY))
        assert [t["content"] for t in saved[0]["turns"]] == [GREETING, "Hi", "Hello!"]

    def test_new_conversations_are_listed_first(self, store):
        """Test newer conversations come first."""
        store.append(Turn("user", "Older"))
        store.new_conversation()
        store.append(Turn("user", "Newer"))

        assert [c.title for c in store.conversations] == ["Newer", "Older"]

    def test_save_load_round_trip(self, store, storage):
        """Test saved conversations load back unchanged."""
        stamp = datetime(2026, 10, 19, 8, 30, 15, 123456, tzinfo=timezone.utc)
        store.append(Turn("user", "Hi", timestamp=stamp))
        store.append(Turn("assistant", "Hello!", timestamp=stamp))
        store.new_conversation()
        store.append(Turn("user", "Second chat"))

        reloaded = ConversationStore(storage)
        reloaded.load()

        assert reloaded.conversations == store.conversations

    def test_round_trip_empty(self, storage):
        """Test an empty collection saves and loads."""
        store = ConversationStore(storage)
        store.save()

        reloaded = ConversationStore(storage)

        assert reloaded.load() == []
        assert storage.get_item(CHATS_KEY) == "[]"

    @pytest.mark.parametrize("raw", [
        "not json",
        '{"id": "conv_1"}',
        '[{"id": "conv_1"}]',
        '[{"id": "c", "title": "t", "turns": [{"role": "robot", "content": ""}], "createdAt": "2026-01-01T00:00:00"}]',
    ])
    def test_corrupt_storage_loads_empty(self, raw):
        """Test corrupt stored data loads as an empty collection."""
        store = ConversationStore(MemoryStorage({CHATS_KEY: raw}))

        assert store.load() == []

    def test_storage_failure_loads_empty(self):
        """Test a storage read failure loads as an empty collection."""
        storage = Mock()
        storage.get_item.side_effect = OSError("disk gone")

        assert ConversationStore(storage).load() == []

    def test_rename(self, store, storage):
        """Test renaming an existing and a missing conversation."""
        conversation = store.append(Turn("user", "Hi"))

        assert store.rename(conversation.id, "Greetings") is True
        assert store.rename("conv_missing", "x") is False
        assert json.loads(storage.get_item(CHATS_KEY))[0]["title"] == "Greetings"

    def test_rename_survives_later_appends(self, store):
        """Test a renamed title is kept after more turns."""
        conversation = store.append(Turn("user", "Hi"))
        store.rename(conversation.id, "Greetings")
        store.append(Turn("assistant", "Hello!"))

        assert store.active.title == "Greetings"

    def test_delete_inactive(self, store):
        """Test deleting a conversation that is not active."""
        older = store.append(Turn("user", "Older"))
        store.new_conversation()
        newer = store.append(Turn("user", "Newer"))

        assert store.delete(older.id) is True
        assert store.active_id == newer.id
        assert [c.id for c in store.conversations] == [newer.id]

    def test_delete_active_resets(self, store, storage):
        """Test deleting the active conversation resets to the greeting."""
        conversation = store.append(Turn("user", "Hi"))

        assert store.delete(conversation.id) is True
        assert store.active is None
        assert [t.content for t in store.turns] == [GREETING]
        assert json.loads(storage.get_item(CHATS_KEY)) == []
        assert store.delete(conversation.id) is False

    def test_open(self, store):
        """Test opening a stored conversation makes it active."""
        first = store.append(Turn("user", "First"))
        store.new_conversation()
        store.append(Turn("user", "Second"))

        assert store.open(first.id) is first
        assert store.turns[-1].content == "First"
        assert store.open("conv_missing") is None

    def test_export_text(self, store):
        """Test the plain-text transcript format."""
        store.append(Turn("user", "Hi"))
        store.append(Turn("assistant", "Hello!"))

        assert store.export_text() == f"ASSISTANT: {GREETING}\n\nUSER: Hi\n\nASSISTANT: Hello!"

    def test_without_greeting(self, storage):
        """Test a store configured without a greeting starts empty."""
        store = ConversationStore(storage, greeting=None)

        assert store.turns == []


def test_file_storage_round_trip(tmp_path):
    """Test conversations persist through the JSON file storage."""
    storage = JSONFileStorage(tmp_path / "avas" / "storage.json")
    store = ConversationStore(storage)
    store.append(Turn("user", "Persist me"))

    reloaded = ConversationStore(JSONFileStorage(tmp_path / "avas" / "storage.json"))

    assert reloaded.load() == store.conversations


def test_corrupt_file_recovers_on_next_save(tmp_path):
    """A corrupt storage file loads empty and is replaced by the next append."""
    path = tmp_path / "storage.json"
    path.write_text("{not json", encoding="utf-8")
    store = ConversationStore(JSONFileStorage(path))

    assert store.load() == []
    conversation = store.append(Turn("user", "Hi"))

    reloaded = ConversationStore(JSONFileStorage(path))
    assert [c.id for c in reloaded.load()] == [conversation.id]
    assert reloaded.conversations[0].turns[-1].content == "Hi"


def test_failed_save_rolls_back_new_conversation():
    """A storage failure on the first append leaves no conversation behind."""
    storage = Mock()
    storage.set_item.side_effect = OSError("disk full")
    store = ConversationStore(storage)

    with pytest.raises(OSError):
        store.append(Turn("user", "Hi"))

    assert store.conversations == []
    assert store.active is None
    assert [t.content for t in store.turns] == [GREETING]


def test_failed_save_rolls_back_appended_turn():
    """A storage failure on a later append restores the previous turns."""
    storage = MemoryStorage()
    store = ConversationStore(storage)
    conversation = store.append(Turn("user", "Hi"))
    saved = storage.get_item(CHATS_KEY)

    storage.set_item = Mock(side_effect=OSError("disk full"))
    with pytest.raises(OSError):
        store.append(Turn("assistant", "Hello!"))

    assert [t.content for t in conversation.turns] == [GREETING, "Hi"]
    assert [t.content for t in store.turns] == [GREETING, "Hi"]
    assert storage.items[CHATS_KEY] == saved


def test_title_derivation_without_user_turn():
    """Test the default title when there is no user turn."""
    assert Conversation.derive_title([Turn("assistant", "Hi")]) == "New chat"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""Tests for the bounded conversation cache and deduplication index."""

from dataclasses import replace

import pytest

from realtime_chat.core.cache import BoundedConversationCache, DeduplicationIndex
from realtime_chat.models.conversation import ConversationKind
from realtime_chat.models.message import Message, MessageStatus
from tests.fakes import BASE_TIME, make_message


class TestDeduplicationIndex:
    """Test per-conversation client id tracking."""

    def test_add_is_idempotent(self):
        """Adding the same id twice leaves a single entry."""
        index = DeduplicationIndex()
        index.add("c1", "m1")
        index.add("c1", "m1")
        assert index.has("c1", "m1")
        assert index.size("c1") == 1

    def test_ids_are_scoped_per_conversation(self):
        """An id seen in one conversation is unknown in another."""
        index = DeduplicationIndex()
        index.add("c1", "m1")
        assert not index.has("c2", "m1")

    def test_discard_conversation(self):
        """Discarding drops every id of that conversation only."""
        index = DeduplicationIndex()
        index.add_many("c1", ["m1", "m2"])
        index.add("c2", "m3")
        index.discard_conversation("c1")
        assert "c1" not in index
        assert not index.has("c1", "m1")
        assert index.has("c2", "m3")

    def test_clear(self):
        """Clear forgets everything."""
        index = DeduplicationIndex()
        index.add("c1", "m1")
        index.clear()
        assert len(index) == 0


class TestCacheBounds:
    """Test per-conversation truncation and ordering."""

    def test_keeps_newest_hundred_of_hundred_twenty(self):
        """Inserting 120 messages keeps the 100 newest, newest first."""
        cache = BoundedConversationCache()
        for i in range(1, 121):
            assert cache.add_message("c1", make_message(i))

        messages = cache.get_messages("c1")
        assert len(messages) == 100
        assert messages[0].client_id == "cg-120"
        # The oldest survivor is the 21st message inserted
        assert messages[-1].client_id == "cg-21"

    def test_order_is_by_created_at_not_arrival(self):
        """Out-of-order arrivals are sorted newest first."""
        cache = BoundedConversationCache()
        for i in (3, 1, 2):
            cache.add_message("c1", make_message(i))
        assert [m.client_id for m in cache.get_messages("c1")] == ["cg-3", "cg-2", "cg-1"]

    def test_set_messages_truncates(self):
        """set_messages keeps only max_messages entries."""
        cache = BoundedConversationCache(max_messages=5)
        cache.set_messages("c1", [make_message(i) for i in range(10)])
        messages = cache.get_messages("c1")
        assert [m.client_id for m in messages] == ["cg-9", "cg-8", "cg-7", "cg-6", "cg-5"]

    def test_set_messages_records_dedup_ids(self):
        """Fetched messages are recognised when echoed by the feed."""
        cache = BoundedConversationCache()
        cache.set_messages("c1", [make_message(1), make_message(2)])
        assert cache.has_seen("c1", "cg-1")
        assert not cache.add_message("c1", make_message(1))

    def test_unknown_conversation_returns_empty(self):
        """Reads of unknown conversations return an empty list."""
        cache = BoundedConversationCache()
        assert cache.get_messages("missing") == []

    def test_returned_list_is_a_copy(self):
        """Mutating the returned list does not change the cache."""
        cache = BoundedConversationCache()
        cache.add_message("c1", make_message(1))
        cache.get_messages("c1").clear()
        assert len(cache.get_messages("c1")) == 1

    @pytest.mark.parametrize("kwargs", [{"max_conversations": 0}, {"max_messages": 0}])
    def test_rejects_zero_capacity(self, kwargs):
        """Capacities below one are rejected."""
        with pytest.raises(ValueError):
            BoundedConversationCache(**kwargs)


class TestCacheDeduplication:
    """Test duplicate suppression on insert."""

    def test_duplicate_client_id_is_rejected(self):
        """A second insert with the same client id is a no-op."""
        cache = BoundedConversationCache()
        message = make_message(1)
        assert cache.add_message("c1", message)
        assert not cache.add_message("c1", replace(message, body="changed"))
        messages = cache.get_messages("c1")
        assert len(messages) == 1
        assert messages[0].body == "message 1"

    def test_same_client_id_in_other_conversation_is_accepted(self):
        """Deduplication is scoped per conversation."""
        cache = BoundedConversationCache()
        assert cache.add_message("c1", make_message(1))
        assert cache.add_message("c2", make_message(1, "c2"))


class TestCacheEviction:
    """Test least-recently-used eviction of whole conversations."""

    def test_evicts_least_recently_used(self):
        """Exceeding capacity drops the oldest untouched conversation."""
        cache = BoundedConversationCache(max_conversations=3)
        for cid in ("c1", "c2", "c3"):
            cache.add_message(cid, make_message(1, cid))

        cache.add_message("c4", make_message(1, "c4"))

        assert "c1" not in cache
        assert cache.get_messages("c1") == []
        assert len(cache) == 3

    def test_read_protects_from_eviction(self):
        """Reading a conversation refreshes its recency."""
        cache = BoundedConversationCache(max_conversations=3)
        for cid in ("c1", "c2", "c3"):
            cache.add_message(cid, make_message(1, cid))

        cache.get_messages("c1")
        cache.add_message("c4", make_message(1, "c4"))

        assert "c1" in cache
        assert "c2" not in cache

    def test_eviction_drops_dedup_set(self):
        """An evicted conversation's client ids are forgotten."""
        cache = BoundedConversationCache(max_conversations=1)
        cache.add_message("c1", make_message(1))
        cache.add_message("c2", make_message(1, "c2"))

        assert not cache.has_seen("c1", "cg-1")
        assert "c1" not in cache.dedup
        # A re-sent copy is accepted again
        assert cache.add_message("c1", make_message(1))

    def test_size_never_exceeds_capacity(self):
        """The number of cached conversations stays bounded."""
        cache = BoundedConversationCache(max_conversations=50)
        for i in range(80):
            cache.add_message(f"c{i}", make_message(1, f"c{i}"))
            assert len(cache) <= 50
        assert len(cache.dedup) <= 50


class TestCacheMutations:
    """Test update, delete and clear."""

    def test_update_replaces_by_server_id(self):
        """An edited row replaces the cached entry with the same server id."""
        cache = BoundedConversationCache()
        cache.add_message("c1", make_message(1))
        edited = replace(make_message(1), body="edited")

        assert cache.update_message("c1", edited)
        assert cache.get_messages("c1")[0].body == "edited"

    def test_update_confirms_pending_entry(self):
        """A confirmed message replaces its pending copy by client id."""
        cache = BoundedConversationCache()
        pending = Message.pending("c1", ConversationKind.CHANNEL, "u1", "hi", created_at=BASE_TIME)
        cache.add_message("c1", pending)

        confirmed = replace(pending.confirm(), server_id="srv-9")
        assert cache.update_message("c1", confirmed)

        cached = cache.get_messages("c1")
        assert len(cached) == 1
        assert cached[0].status is MessageStatus.SENT
        assert cached[0].server_id == "srv-9"

    def test_update_unknown_message_is_ignored(self):
        """Updating a message that is not cached changes nothing."""
        cache = BoundedConversationCache()
        cache.add_message("c1", make_message(1))
        assert not cache.update_message("c1", make_message(2))
        assert not cache.update_message("missing", make_message(2))
        assert len(cache.get_messages("c1")) == 1

    def test_delete_by_server_id(self):
        """Deleting removes only the matching message."""
        cache = BoundedConversationCache()
        cache.set_messages("c1", [make_message(1), make_message(2)])

        assert cache.delete_message("c1", "srv-m1")
        assert [m.client_id for m in cache.get_messages("c1")] == ["cg-2"]
        assert not cache.delete_message("c1", "srv-m1")
        assert not cache.delete_message("missing", "srv-m1")

    def test_find_by_client_id(self):
        """Cached messages can be looked up by client id."""
        cache = BoundedConversationCache()
        cache.add_message("c1", make_message(1))
        assert cache.find_by_client_id("c1", "cg-1") is not None
        assert cache.find_by_client_id("c1", "cg-2") is None

    def test_clear_conversation(self):
        """Clearing one conversation drops its messages and dedup set."""
        cache = BoundedConversationCache()
        cache.add_message("c1", make_message(1))
        cache.add_message("c2", make_message(1, "c2"))

        cache.clear_conversation("c1")

        assert cache.get_messages("c1") == []
        assert not cache.has_seen("c1", "cg-1")
        assert cache.has_seen("c2", "cg-1")

    def test_clear_all(self):
        """Clearing everything leaves an empty, usable cache."""
        cache = BoundedConversationCache(max_conversations=2)
        cache.add_message("c1", make_message(1))
        cache.add_message("c2", make_message(1, "c2"))

        cache.clear_all()

        assert len(cache) == 0
        assert len(cache.dedup) == 0
        assert cache.max_conversations == 2
        assert cache.add_message("c1", make_message(1))

    def test_conversation_ids(self):
        """Only cached conversations are listed."""
        cache = BoundedConversationCache(max_conversations=2)
        for cid in ("c1", "c2", "c3"):
            cache.add_message(cid, make_message(1, cid))
        assert sorted(cache.conversation_ids()) == ["c2", "c3"]

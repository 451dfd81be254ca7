"""
Unit tests for the key-value stores.

Tests copy semantics, atomic updates, bounded appends and the JSON file store.
"""

import copy
import threading

import pytest

from autopilot.storage import keys
from autopilot.storage.store import InMemoryStore, JsonFileStore


@pytest.fixture(params=["memory", "file"])
def any_store(request, tmp_path):
    """Run each test against both store implementations."""
    if request.param == "memory":
        return InMemoryStore()
    return JsonFileStore(str(tmp_path / "state"))


class TestBasicOperations:
    """Test get / set / delete / keys."""

    def test_missing_key_returns_default(self, any_store):
        assert any_store.get("nope") is None
        assert any_store.get("nope", []) == []

    def test_set_then_get(self, any_store):
        any_store.set("account:A:config", {"enabled": True})
        assert any_store.get("account:A:config") == {"enabled": True}

    def test_values_are_copies(self, any_store):
        """Mutating a returned value does not change the stored one."""
        any_store.set("k", {"items": [1, 2]})
        value = any_store.get("k")
        value["items"].append(3)

        assert any_store.get("k") == {"items": [1, 2]}

    def test_delete(self, any_store):
        any_store.set("k", 1)
        assert any_store.delete("k") is True
        assert any_store.delete("k") is False
        assert any_store.get("k") is None

    def test_keys_by_prefix(self, any_store):
        any_store.set(keys.config_key("A"), {})
        any_store.set(keys.cycles_key("A"), [])
        any_store.set(keys.config_key("B"), {})

        assert any_store.keys("account:A:") == [keys.config_key("A"), keys.cycles_key("A")]


class TestAtomicOperations:
    """Test update, append and increment."""

    def test_update_uses_default_when_missing(self, any_store):
        result = any_store.update("k", lambda v: v + [1], default=[])
        assert result == [1]
        assert any_store.get("k") == [1]

    def test_append_evicts_oldest_past_cap(self, any_store):
        for i in range(5):
            any_store.append("log", i, max_items=3)

        assert any_store.get("log") == [2, 3, 4]

    def test_appended_item_is_a_copy(self, any_store):
        item = {"details": [1]}
        any_store.append("log", item)
        item["details"].append(2)

        assert any_store.get("log") == [{"details": [1]}]

    def test_view_copies_only_the_projection(self, any_store):
        any_store.set("log", [{"n": 1}, {"n": 2}])

        last = any_store.view("log", lambda items: items[-1])
        last["n"] = 99

        assert any_store.get("log") == [{"n": 1}, {"n": 2}]
        assert any_store.view("missing", len, default=[]) == 0

    def test_capped_append_copies_only_the_new_item(self, monkeypatch):
        store = InMemoryStore()
        store.set("log", [{"n": i} for i in range(10000)])
        calls = []
        deepcopy = copy.deepcopy

        def counting_deepcopy(value, memo=None):
            calls.append(value)
            return deepcopy(value, memo)

        monkeypatch.setattr(copy, "deepcopy", counting_deepcopy)

        assert store.append("log", {"n": 10000}, max_items=10000) == 10000

        assert len(calls) < 10
        assert store.view("log", lambda items: (items[0], items[-1])) == ({"n": 1}, {"n": 10000})


    def test_increment_is_monotonic(self, any_store):
        assert any_store.increment("counter") == 1
        assert any_store.increment("counter") == 2
        assert any_store.increment("counter", 5) == 7

    def test_concurrent_increments_are_not_lost(self):
        store = InMemoryStore()

        def bump():
            for _ in range(200):
                store.increment("counter")

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get("counter") == 800


class TestKeyLayout:
    """Test per-account key naming."""

    def test_account_keys(self):
        assert keys.config_key("ACC_001") == "account:ACC_001:config"
        assert keys.signal_history_key("ACC_001") == "account:ACC_001:signals:history"
        assert keys.GLOBAL_ENABLED == "global:enabled"

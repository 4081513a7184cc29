"""Tests for the presence registry (user identity -> live connection handles)."""
import threading

import pytest

from marketchat.chat.presence import PresenceRegistry, PresenceTransition


class Handle:
    """Distinct object per tab; registry compares handles by identity."""


class TestRegisterConnection:

    def test_first_connection_goes_online(self):
        presence = PresenceRegistry()
        assert presence.register_connection("alice", Handle()) is PresenceTransition.ONLINE
        assert presence.is_online("alice")
        assert presence.list_online() == {"alice"}

    def test_second_connection_is_not_a_transition(self):
        presence = PresenceRegistry()
        presence.register_connection("alice", Handle())
        assert presence.register_connection("alice", Handle()) is None
        assert presence.connection_count("alice") == 2

    def test_registering_same_handle_twice_is_idempotent(self):
        presence = PresenceRegistry()
        tab = Handle()
        presence.register_connection("alice", tab)
        assert presence.register_connection("alice", tab) is None
        assert presence.connection_count("alice") == 1

    def test_handle_belongs_to_one_user(self):
        presence = PresenceRegistry()
        tab = Handle()
        presence.register_connection("alice", tab)

        with pytest.raises(ValueError):
            presence.register_connection("bob", tab)

        assert not presence.is_online("bob")
        assert presence.handles_for("alice") == frozenset({tab})

        # Free again once its owner lets go
        presence.remove_connection("alice", tab)
        assert presence.register_connection("bob", tab) is PresenceTransition.ONLINE

    def test_users_are_tracked_independently(self):
        presence = PresenceRegistry()
        presence.register_connection("alice", Handle())
        assert presence.register_connection("bob", Handle()) is PresenceTransition.ONLINE
        assert presence.list_online() == {"alice", "bob"}


class TestRemoveConnection:

    def test_last_connection_goes_offline(self):
        presence = PresenceRegistry()
        tab = Handle()
        presence.register_connection("alice", tab)
        assert presence.remove_connection("alice", tab) is PresenceTransition.OFFLINE
        assert not presence.is_online("alice")
        assert presence.list_online() == set()

    def test_user_stays_online_while_another_tab_is_open(self):
        presence = PresenceRegistry()
        tab1, tab2 = Handle(), Handle()
        presence.register_connection("alice", tab1)
        presence.register_connection("alice", tab2)

        assert presence.remove_connection("alice", tab1) is None
        assert presence.is_online("alice")
        assert presence.handles_for("alice") == frozenset({tab2})

        assert presence.remove_connection("alice", tab2) is PresenceTransition.OFFLINE

    def test_removing_unknown_handle_is_a_noop(self):
        presence = PresenceRegistry()
        presence.register_connection("alice", Handle())
        assert presence.remove_connection("alice", Handle()) is None
        assert presence.remove_connection("nobody", Handle()) is None
        assert presence.connection_count("alice") == 1

    def test_double_remove_reports_offline_once(self):
        presence = PresenceRegistry()
        tab = Handle()
        presence.register_connection("alice", tab)
        assert presence.remove_connection("alice", tab) is PresenceTransition.OFFLINE
        assert presence.remove_connection("alice", tab) is None


class TestSnapshots:

    def test_handles_for_offline_user_is_empty(self):
        assert PresenceRegistry().handles_for("ghost") == frozenset()

    def test_snapshots_do_not_expose_internal_state(self):
        presence = PresenceRegistry()
        presence.register_connection("alice", Handle())

        online = presence.list_online()
        online.add("mallory")

        assert presence.list_online() == {"alice"}

    def test_all_handles_spans_users(self):
        presence = PresenceRegistry()
        a1, a2, b1 = Handle(), Handle(), Handle()
        presence.register_connection("alice", a1)
        presence.register_connection("alice", a2)
        presence.register_connection("bob", b1)
        assert presence.all_handles() == frozenset({a1, a2, b1})

    def test_clear(self):
        presence = PresenceRegistry()
        presence.register_connection("alice", Handle())
        presence.clear()
        assert presence.list_online() == set()


class TestConcurrency:
    """Simultaneous tabs of one user must yield exactly one edge each way."""

    def _run_concurrently(self, fn, items):
        results = []
        results_lock = threading.Lock()
        barrier = threading.Barrier(len(items))

        def worker(item):
            barrier.wait()
            outcome = fn(item)
            with results_lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker, args=(item,)) for item in items]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_concurrent_connects_and_disconnects(self):
        presence = PresenceRegistry()
        tabs = [Handle() for _ in range(32)]

        registered = self._run_concurrently(
            lambda tab: presence.register_connection("alice", tab), tabs
        )
        assert registered.count(PresenceTransition.ONLINE) == 1
        assert presence.connection_count("alice") == len(tabs)

        removed = self._run_concurrently(
            lambda tab: presence.remove_connection("alice", tab), tabs
        )
        assert removed.count(PresenceTransition.OFFLINE) == 1
        assert presence.connection_count("alice") == 0
        assert not presence.is_online("alice")

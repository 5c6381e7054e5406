"""Unit tests for the client registry, records and tag correlation."""

import threading
from unittest import mock

import pytest

from multilock import (
    ClientNotFoundError, ClientRegistry, Record, TagCorrelator,
)
from multilock.tokens import Command, Status


def _client(registry, name="c1"):
    client, created = registry.resolve(name, create=True)
    assert created
    client.transport = mock.MagicMock()
    client.connected = True
    return client


# ---------------------------------------------------------------------------
# ClientRegistry
# ---------------------------------------------------------------------------

class TestRegistry:
    """Name resolution and creation."""

    def test_resolve_unknown(self):
        registry = ClientRegistry()
        with pytest.raises(ClientNotFoundError) as exc_info:
            registry.resolve("ghost")
        assert str(exc_info.value) == "Could not find client ghost"
        assert len(registry) == 0

    def test_create_then_find(self):
        registry = ClientRegistry()
        client, created = registry.resolve("c1", create=True)
        again, created_again = registry.resolve("c1", create=True)
        assert created and not created_again
        assert again is client
        assert client.refcount == 0
        assert registry.names() == ["c1"]

    def test_names_are_case_sensitive(self):
        registry = ClientRegistry()
        registry.resolve("c1", create=True)
        assert "c1" in registry
        assert "C1" not in registry
        with pytest.raises(ClientNotFoundError):
            registry.resolve("C1")

    def test_discard_unreferenced(self):
        registry = ClientRegistry()
        client = _client(registry)
        transport = client.transport
        registry.discard("c1")
        assert "c1" not in registry
        assert client.freed
        transport.close.assert_called_once_with()

    def test_discard_keeps_referenced(self):
        registry = ClientRegistry()
        client = _client(registry)
        client.acquire()
        registry.discard("c1")
        assert "c1" in registry


# ---------------------------------------------------------------------------
# Reference lifecycle
# ---------------------------------------------------------------------------

class TestReferences:
    """A client lives exactly as long as something references it."""

    def test_three_records_outlive_owner(self):
        registry = ClientRegistry()
        client = _client(registry)
        transport = client.transport
        client.acquire()  # connection reference

        records = [Record(Command.LOCKW, tag=i).attach(client)
                   for i in range(3)]
        assert client.refcount == 4

        assert client.release() is False
        assert "c1" in registry
        records[0].release()
        records[1].release()
        assert client.refcount == 1
        assert not client.freed
        transport.close.assert_not_called()

        records[2].release()
        assert client.freed
        assert "c1" not in registry
        transport.close.assert_called_once_with()
        with pytest.raises(ClientNotFoundError):
            registry.resolve("c1")

    def test_release_is_idempotent(self):
        registry = ClientRegistry()
        client = _client(registry)
        rec = Record(Command.CLOSE).attach(client)
        rec.release()
        rec.release()
        assert client.refcount == 0
        assert client.freed
        assert client.release() is False

    def test_freed_client_cannot_be_acquired(self):
        registry = ClientRegistry()
        client = _client(registry)
        client.acquire()
        client.release()
        with pytest.raises(ClientNotFoundError):
            client.acquire()

    def test_copy_takes_own_reference(self):
        registry = ClientRegistry()
        client = _client(registry)
        rec = Record(Command.LOCKW, tag=3, status=Status.GRANTED,
                     start=5).attach(client)
        dup = rec.copy(status=Status.CANCELED)
        assert client.refcount == 2
        assert dup.status is Status.CANCELED
        assert dup.start == 5
        assert dup.client is client
        rec.release()
        assert not client.freed
        dup.release()
        assert client.freed

    def test_reattach_same_client(self):
        registry = ClientRegistry()
        client = _client(registry)
        rec = Record().attach(client)
        rec.attach(client)
        assert client.refcount == 1

    def test_concurrent_release_frees_once(self):
        registry = ClientRegistry()
        client = _client(registry)
        transport = client.transport
        records = [Record().attach(client) for _ in range(50)]
        threads = [threading.Thread(target=r.release) for r in records]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert client.freed
        transport.close.assert_called_once_with()


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------

class TestRecord:

    def test_defaults(self):
        rec = Record()
        assert rec.command is Command.UNKNOWN
        assert rec.tag == -1
        assert rec.relaxed
        assert rec.mode == 0o600
        assert rec.client_name == "<NULL>"

    def test_unknown_field(self):
        with pytest.raises(TypeError):
            Record(Command.LOCK, colour="red")

    def test_equality_ignores_client(self):
        registry = ClientRegistry()
        client = _client(registry)
        a = Record(Command.CLOSE, tag=1, fpos=2).attach(client)
        b = Record(Command.CLOSE, tag=1, fpos=2)
        assert a == b
        assert a != Record(Command.CLOSE, tag=1, fpos=3)
        a.release()


# ---------------------------------------------------------------------------
# TagCorrelator
# ---------------------------------------------------------------------------

class TestTagCorrelator:

    def test_counter(self):
        corr = TagCorrelator()
        assert corr.next() == 1
        assert corr.next() == 2
        assert corr.next(advance=False) == 2

    def test_slot_round_trip(self):
        corr = TagCorrelator()
        corr.mint()
        tag = corr.mint("a")
        corr.mint()
        assert corr.load("a") == tag == 2
        assert corr.load("A") == tag

    def test_save(self):
        corr = TagCorrelator()
        corr.save("z", 99)
        assert corr.load("z") == 99

    def test_invalid_slot(self):
        for letter in ("", "ab", "1", "$"):
            with pytest.raises(ValueError):
                TagCorrelator.slot_index(letter)

    def test_replay_ignores_missing_line(self):
        corr = TagCorrelator(replay=True)
        assert corr.mint(lineno=12) == 12
        assert corr.mint() == 13
        assert corr.mint(lineno=0) == 14

    def test_threads_get_distinct_tags(self):
        corr = TagCorrelator()
        seen = []
        lock = threading.Lock()

        def worker():
            for _ in range(100):
                tag = corr.mint()
                with lock:
                    seen.append(tag)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(seen) == list(range(1, 401))

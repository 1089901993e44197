"""
Tests for the remote document store backend, against a fake HTTP session.
"""

import json
import threading
import time

import pytest
import requests

from splitchain.models.ledger import Group, Participant
from splitchain.services.group_store import GroupStore
from splitchain.storage.base import BackendUnavailable
from splitchain.storage.remote import FirebaseBackend, GroupStream, strip_missing
from tests.factories import ALICE, BOB, expense

DB_URL = "https://splitchain-test.firebaseio.example"


class FakeResponse:
    def __init__(self, payload=None, status=200, lines=(), error=None):
        self.payload = payload
        self.status_code = status
        self.lines = list(lines)
        self.error = error
        self.closed = False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload

    def iter_lines(self):
        yield from self.lines
        if self.error is not None:
            raise self.error

    def close(self):
        self.closed = True


class FakeSession:
    """In-memory stand-in for the database's REST API."""

    def __init__(self):
        self.docs = {}
        self.calls = []
        self.fail = False
        self.stream = None

    def request(self, method, url, params=None, timeout=None, json=None):
        self.calls.append((method, url, params, json))
        if self.fail:
            raise requests.ConnectionError("network down")
        path = url[len(DB_URL) + 1:-len(".json")]
        if path == "groups":
            return FakeResponse(dict(self.docs) or None)
        group_id = path.split("/", 1)[1]
        if method == "GET":
            return FakeResponse(self.docs.get(group_id))
        if method == "PUT":
            self.docs[group_id] = json
        elif method == "PATCH":
            self.docs.setdefault(group_id, {}).update(json)
        elif method == "DELETE":
            self.docs.pop(group_id, None)
        return FakeResponse(json)

    def get(self, url, params=None, headers=None, stream=False, timeout=None):
        self.calls.append(("STREAM", url, params, headers))
        if isinstance(self.stream, list):
            if not self.stream:
                raise requests.ConnectionError("stream refused")
            return self.stream.pop(0)
        return self.stream


@pytest.fixture
def http():
    return FakeSession()


@pytest.fixture
def remote(http):
    return FirebaseBackend(DB_URL, auth_token="secret", session=http)


class TestStripMissing:
    def test_drops_none_at_every_depth(self):
        doc = {"a": None, "b": {"c": None, "d": 1}, "e": [{"f": None, "g": 2}, None, 3]}

        assert strip_missing(doc) == {"b": {"d": 1}, "e": [{"g": 2}, None, 3]}

    def test_keeps_list_order(self):
        assert strip_missing({"x": [3, 1, 2]}) == {"x": [3, 1, 2]}


class TestFirebaseBackend:
    def test_save_writes_cleaned_document_at_group_path(self, http, remote, group):
        GroupStore(remote).save_group(group)

        method, url, params, body = http.calls[-1]
        assert (method, url, params) == ("PUT", f"{DB_URL}/groups/group-1.json", {"auth": "secret"})
        assert "channelSessionId" not in body
        assert "ensName" not in body["participants"][0]
        assert isinstance(body["updatedAt"], int)

    def test_round_trip_through_store(self, remote, group):
        store = GroupStore(remote)
        store.save_group(group)

        store.add_expense(group.id, expense(40, ALICE, [ALICE, BOB]))

        loaded = store.get_group(group.id)
        assert loaded.expenses[0].amount == 40
        assert loaded.settlements == []

    def test_missing_group(self, remote):
        assert remote.get_group("nope") is None

    def test_unreadable_group_is_none(self, http, remote, caplog):
        http.docs["broken"] = {"name": "no id"}

        assert remote.get_group("broken") is None
        assert "Skipping unreadable group document broken" in caplog.text

    def test_list_groups(self, http, remote, group):
        remote.save_group(group)
        remote.save_group(Group(id="group-2", name="Ski", created_by=BOB))
        http.docs["broken"] = {"name": "no id"}

        assert sorted(g.id for g in remote.get_all_groups()) == ["group-1", "group-2"]

    def test_list_groups_empty(self, remote):
        assert remote.get_all_groups() == []

    def test_status_update_is_a_patch(self, http, remote, group):
        remote.save_group(group)

        remote.update_group_status(group.id, False, 123)

        assert http.calls[-1][0] == "PATCH"
        assert http.docs["group-1"]["isActive"] is False
        assert http.docs["group-1"]["updatedAt"] == 123

    def test_delete(self, http, remote, group):
        remote.save_group(group)

        remote.delete_group(group.id)

        assert "group-1" not in http.docs

    def test_connection_failure_propagates(self, http, remote, group):
        http.fail = True

        with pytest.raises(BackendUnavailable):
            GroupStore(remote).save_group(group)
        with pytest.raises(BackendUnavailable):
            remote.get_group(group.id)


def sse(event, data):
    return [f"event: {event}", f"data: {json.dumps(data)}", ""]


class TestGroupStream:
    def test_initial_put_and_later_changes(self, http, remote, group):
        received = []
        stream = GroupStream(remote, group.id, received.append)
        http.docs[group.id] = group.to_document()
        changed = group.model_copy(deep=True)
        changed.participants.append(Participant(address=BOB))

        lines = sse("put", {"path": "/", "data": group.to_document()})
        lines += sse("keep-alive", None)
        lines += sse("put", {"path": "/", "data": changed.to_document()})
        stream.consume(lines)

        assert [len(g.participants) for g in received] == [1, 2]

    def test_partial_change_reloads_whole_document(self, http, remote, group):
        received = []
        stream = GroupStream(remote, group.id, received.append)
        http.docs[group.id] = group.to_document()

        stream.consume(sse("patch", {"path": "/isActive", "data": False}))

        assert received[0].id == group.id
        assert http.calls[-1][0] == "GET"

    def test_missing_then_deleted(self, remote, group):
        received = []
        stream = GroupStream(remote, group.id, received.append)

        stream.consume(sse("put", {"path": "/", "data": None}))
        assert received == []

        stream.consume(sse("put", {"path": "/", "data": group.to_document()}))
        stream.consume(sse("put", {"path": "/", "data": None}))
        assert received[-1] is None
        assert len(received) == 2

    def test_cancel_ends_stream(self, remote, group):
        received = []
        stream = GroupStream(remote, group.id, received.append)

        lines = sse("cancel", None) + sse("put", {"path": "/", "data": group.to_document()})
        stream.consume(lines)

        assert received == []

    def test_bytes_lines_are_decoded(self, remote, group):
        received = []
        stream = GroupStream(remote, group.id, received.append)

        stream.consume([line.encode() for line in sse("put", {"path": "/", "data": group.to_document()})])

        assert received[0].name == group.name

    def test_subscribe_and_unsubscribe(self, http, remote, group):
        delivered = threading.Event()
        received = []

        def on_change(g):
            received.append(g)
            delivered.set()

        http.stream = FakeResponse(lines=sse("put", {"path": "/", "data": group.to_document()}))
        unsubscribe = GroupStore(remote).subscribe_to_group(group.id, on_change)

        assert delivered.wait(2)
        unsubscribe()
        unsubscribe()

        assert received[0].id == group.id
        assert http.stream.closed
        assert http.calls[-1][3] == {"Accept": "text/event-stream"}

    def test_failing_listener_keeps_stream_alive(self, remote, group, caplog):
        received = []

        def flaky(g):
            received.append(g)
            if len(received) == 1:
                raise RuntimeError("listener bug")

        stream = GroupStream(remote, group.id, flaky)
        changed = group.model_copy(update={"name": "Porto"})

        lines = sse("put", {"path": "/", "data": group.to_document()})
        lines += sse("put", {"path": "/", "data": changed.to_document()})
        stream.consume(lines)

        assert [g.name for g in received] == [group.name, "Porto"]
        assert "Group listener for group-1 failed" in caplog.text


def changed_group(group):
    changed = group.model_copy(deep=True)
    changed.participants.append(Participant(address=BOB))
    return changed


class TestStreamLifetime:
    def test_dropped_stream_is_reopened(self, http, group):
        remote = FirebaseBackend(DB_URL, session=http, retry_seconds=0.01)
        http.stream = [
            FakeResponse(lines=sse("put", {"path": "/", "data": group.to_document()}),
                         error=requests.ConnectionError("connection reset")),
            FakeResponse(lines=sse("put", {"path": "/", "data": changed_group(group).to_document()})),
        ]
        received = []
        both = threading.Event()

        def on_change(g):
            received.append(g)
            if len(received) == 2:
                both.set()

        unsubscribe = remote.subscribe(group.id, on_change)

        assert both.wait(2)
        unsubscribe()
        assert [len(g.participants) for g in received[:2]] == [1, 2]

    def test_refused_stream_is_retried(self, http, group):
        remote = FirebaseBackend(DB_URL, session=http, retry_seconds=0.01)
        http.stream = []
        delivered = threading.Event()

        unsubscribe = remote.subscribe(group.id, lambda g: delivered.set())
        time.sleep(0.05)
        http.stream.append(FakeResponse(lines=sse("put", {"path": "/", "data": group.to_document()})))

        assert delivered.wait(2)
        unsubscribe()

    def test_unsubscribe_after_close(self, http, group):
        remote = FirebaseBackend(DB_URL, session=http, retry_seconds=0.01)
        http.stream = [FakeResponse(lines=sse("put", {"path": "/", "data": group.to_document()}))]
        store = GroupStore(remote)
        received = []
        delivered = threading.Event()

        def on_change(g):
            received.append(g)
            delivered.set()

        unsubscribe = store.subscribe_to_group(group.id, on_change)
        assert delivered.wait(2)

        store.close()
        unsubscribe()
        unsubscribe()
        http.stream.append(FakeResponse(lines=sse("put", {"path": "/", "data": changed_group(group).to_document()})))
        time.sleep(0.1)

        assert len(received) == 1

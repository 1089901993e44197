"""
Remote storage on the Firebase Realtime Database REST API.

One document per group at ``groups/{id}``. Live updates come from the
database's server-sent event stream; every change re-delivers the full
group document to the subscriber.
"""

import json
import logging
import threading
from typing import Any, List, Optional

import requests
from pydantic import ValidationError

from splitchain.models.ledger import Group
from splitchain.storage.base import BackendUnavailable, GroupBackend, GroupCallback, Unsubscribe

GROUPS_PATH = "groups"
MAX_RETRY_SECONDS = 30.0


def strip_missing(value: Any) -> Any:
    """Drop ``None`` entries from mappings at every depth; list order is kept."""
    if isinstance(value, dict):
        return {k: strip_missing(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [strip_missing(v) for v in value]
    return value


class FirebaseBackend(GroupBackend):
    name = "remote"

    def __init__(self, database_url: str, auth_token: Optional[str] = None,
                 session: Optional[requests.Session] = None, timeout: float = 10.0,
                 retry_seconds: float = 1.0):
        self._base_url = database_url.rstrip("/")
        self._auth_token = auth_token
        self._http = session or requests.Session()
        self._timeout = timeout
        self.retry_seconds = retry_seconds
        self._lock = threading.Lock()
        self._streams = set()

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path}.json"

    def _params(self) -> dict:
        return {"auth": self._auth_token} if self._auth_token else {}

    def _request(self, method: str, path: str, **kwargs):
        try:
            resp = self._http.request(method, self._url(path), params=self._params(),
                                      timeout=self._timeout, **kwargs)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise BackendUnavailable(f"{method} {path} failed: {e}") from e
        return resp

    def fetch_document(self, group_id: str) -> Optional[dict]:
        return self._request("GET", f"{GROUPS_PATH}/{group_id}").json()

    def get_group(self, group_id: str) -> Optional[Group]:
        doc = self.fetch_document(group_id)
        if doc is None:
            logging.info("Group not found in remote store: %s", group_id)
            return None
        try:
            return Group.model_validate(doc)
        except ValidationError:
            logging.warning("Skipping unreadable group document %s", group_id)
            return None

    def save_group(self, group: Group) -> None:
        self._request("PUT", f"{GROUPS_PATH}/{group.id}", json=strip_missing(group.to_document()))
        logging.info("Saved group %s to remote store", group.id)

    def get_all_groups(self) -> List[Group]:
        data = self._request("GET", GROUPS_PATH).json() or {}
        groups = []
        for key, doc in data.items():
            try:
                groups.append(Group.model_validate(doc))
            except ValidationError:
                logging.warning("Skipping unreadable group document %s", key)
        return groups

    def delete_group(self, group_id: str) -> None:
        self._request("DELETE", f"{GROUPS_PATH}/{group_id}")
        logging.info("Deleted group %s from remote store", group_id)

    def update_group_status(self, group_id: str, is_active: bool, updated_at: int) -> None:
        self._request("PATCH", f"{GROUPS_PATH}/{group_id}",
                      json={"isActive": is_active, "updatedAt": updated_at})
        logging.info("Updated group status %s: %s", group_id, is_active)

    def subscribe(self, group_id: str, callback: GroupCallback) -> Unsubscribe:
        stream = GroupStream(self, group_id, callback)
        with self._lock:
            self._streams.add(stream)
        stream.start()
        logging.debug("Subscribed to remote group updates: %s", group_id)

        def unsubscribe():
            with self._lock:
                self._streams.discard(stream)
            stream.stop()

        return unsubscribe

    def open_stream(self, group_id: str):
        headers = {"Accept": "text/event-stream"}
        try:
            resp = self._http.get(self._url(f"{GROUPS_PATH}/{group_id}"), params=self._params(),
                                  headers=headers, stream=True, timeout=(self._timeout, None))
            resp.raise_for_status()
        except requests.RequestException as e:
            raise BackendUnavailable(f"stream {group_id} failed: {e}") from e
        return resp

    def close(self) -> None:
        with self._lock:
            streams = list(self._streams)
            self._streams.clear()
        for stream in streams:
            stream.stop()


class GroupStream:
    """One server-sent event connection delivering a single group's document."""

    def __init__(self, backend: FirebaseBackend, group_id: str, callback: GroupCallback):
        self.backend = backend
        self.group_id = group_id
        self.callback = callback
        self._stopped = threading.Event()
        self._response = None
        self._delivered = False
        self._thread = threading.Thread(target=self.run, name=f"group-stream-{group_id}", daemon=True)

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        if self._stopped.is_set():
            return
        self._stopped.set()
        resp = self._response
        if resp is not None:
            resp.close()
        logging.debug("Unsubscribed from remote group: %s", self.group_id)

    def run(self) -> None:
        failures = 0
        while not self._stopped.is_set():
            if self.listen():
                failures = 0
            else:
                failures += 1
            if self._stopped.is_set():
                return
            delay = min(self.backend.retry_seconds * max(failures, 1), MAX_RETRY_SECONDS)
            logging.info("Reopening group stream for %s in %.1fs", self.group_id, delay)
            if self._stopped.wait(delay):
                return

    def listen(self) -> bool:
        """Follow one stream connection until it ends; returns False if it never opened."""
        try:
            resp = self.backend.open_stream(self.group_id)
        except BackendUnavailable as e:
            logging.warning("Could not subscribe to group %s: %s", self.group_id, e)
            return False
        self._response = resp
        try:
            if not self._stopped.is_set():
                self.consume(resp.iter_lines())
        except Exception:
            # closing the response from stop() interrupts the read mid-stream
            if not self._stopped.is_set():
                logging.exception("Group stream for %s dropped", self.group_id)
        finally:
            resp.close()
        return True

    def consume(self, lines) -> None:
        event = None
        for line in lines:
            if self._stopped.is_set():
                return
            if isinstance(line, bytes):
                line = line.decode("utf-8")
            if not line:
                event = None
            elif line.startswith("event:"):
                event = line[len("event:"):].strip()
            elif line.startswith("data:"):
                if not self.handle(event, line[len("data:"):].strip()):
                    return

    def handle(self, event: Optional[str], data: str) -> bool:
        """Process one event; returns False when the stream should end."""
        if event in ("cancel", "auth_revoked"):
            logging.warning("Remote store ended stream for %s: %s", self.group_id, event)
            return False
        if event not in ("put", "patch"):
            return True

        payload = json.loads(data) if data else {}
        if event == "put" and payload.get("path") == "/":
            doc = payload.get("data")
        else:
            try:
                doc = self.backend.fetch_document(self.group_id)
            except BackendUnavailable:
                logging.exception("Could not reload group %s after change", self.group_id)
                return True

        if doc is None:
            if not self._delivered:
                return True
            group = None
        else:
            try:
                group = Group.model_validate(doc)
            except ValidationError:
                logging.warning("Ignoring unreadable update for group %s", self.group_id)
                return True

        self._delivered = True
        if not self._stopped.is_set():
            try:
                self.callback(group)
            except Exception:
                logging.exception("Group listener for %s failed", self.group_id)
        return True

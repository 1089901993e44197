"""
Local fallback storage used when no remote document store is configured.

All groups live in one JSON array stored under a single key and replaced
wholesale on every write. Subscribers in this process are notified right
after a write; writes made by other processes sharing the same database
file are picked up by a watcher that polls the row's revision counter.
"""

import itertools
import json
import logging
import threading
from typing import Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.engine import Engine
from sqlmodel import Session

from splitchain.db import init_db
from splitchain.models.ledger import Group
from splitchain.models.stored_value import StoredValue, utc_now
from splitchain.storage.base import GroupBackend, GroupCallback, Unsubscribe

STORAGE_KEY = "splitchain_groups"


class LocalBackend(GroupBackend):
    name = "local"

    def __init__(self, engine: Engine, poll_interval: float = 1.0):
        self._engine = engine
        self._poll_interval = poll_interval
        self._lock = threading.RLock()
        self._listeners: Dict[str, Dict[int, GroupCallback]] = {}
        self._tokens = itertools.count(1)
        self._watcher_stop: Optional[threading.Event] = None
        init_db(engine)
        self._seen_revision = self._current_revision()

    # --- raw array access ---

    def _current_revision(self) -> int:
        with Session(self._engine) as s:
            row = s.get(StoredValue, STORAGE_KEY)
            return row.revision if row else 0

    def _read_documents(self) -> List[dict]:
        with Session(self._engine) as s:
            row = s.get(StoredValue, STORAGE_KEY)
            raw = row.value if row else None
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logging.error("Stored group list under %s is not valid JSON; treating as empty", STORAGE_KEY)
            return []
        return data if isinstance(data, list) else []

    def _write_documents(self, docs: List[dict]) -> None:
        with Session(self._engine) as s:
            row = s.get(StoredValue, STORAGE_KEY)
            if row is None:
                row = StoredValue(key=STORAGE_KEY)
            previous = row.revision
            row.value = json.dumps(docs)
            row.revision = previous + 1
            row.updated_at = utc_now()
            s.add(row); s.commit(); s.refresh(row)
            # a gap means another process wrote since the last poll; leave it for poll_once
            if previous == self._seen_revision:
                self._seen_revision = row.revision

    @staticmethod
    def _parse(doc: dict) -> Optional[Group]:
        try:
            return Group.model_validate(doc)
        except ValidationError:
            logging.warning("Skipping unreadable group document %r", doc.get("id") if isinstance(doc, dict) else doc)
            return None

    # --- GroupBackend ---

    def get_all_groups(self) -> List[Group]:
        groups = (self._parse(doc) for doc in self._read_documents())
        return [g for g in groups if g is not None]

    def get_group(self, group_id: str) -> Optional[Group]:
        for doc in self._read_documents():
            if isinstance(doc, dict) and doc.get("id") == group_id:
                return self._parse(doc)
        return None

    def save_group(self, group: Group) -> None:
        doc = group.to_document()
        with self._lock:
            docs = self._read_documents()
            for i, existing in enumerate(docs):
                if isinstance(existing, dict) and existing.get("id") == group.id:
                    docs[i] = doc
                    break
            else:
                docs.append(doc)
            self._write_documents(docs)
        logging.info("Saved group %s to local storage", group.id)
        self._notify(group.id)

    def delete_group(self, group_id: str) -> None:
        with self._lock:
            docs = self._read_documents()
            kept = [d for d in docs if not (isinstance(d, dict) and d.get("id") == group_id)]
            if len(kept) == len(docs):
                return
            self._write_documents(kept)
        logging.info("Deleted group %s from local storage", group_id)
        self._notify(group_id)

    def update_group_status(self, group_id: str, is_active: bool, updated_at: int) -> None:
        with self._lock:
            docs = self._read_documents()
            for doc in docs:
                if isinstance(doc, dict) and doc.get("id") == group_id:
                    doc["isActive"] = is_active
                    doc["updatedAt"] = updated_at
                    break
            else:
                logging.warning("Group not found: %s", group_id)
                return
            self._write_documents(docs)
        self._notify(group_id)

    def subscribe(self, group_id: str, callback: GroupCallback) -> Unsubscribe:
        initial = self.get_group(group_id)
        if initial is not None:
            callback(initial)

        token = next(self._tokens)
        with self._lock:
            self._listeners.setdefault(group_id, {})[token] = callback
            self._ensure_watcher()
        logging.debug("Subscribed to local group updates: %s", group_id)

        def unsubscribe():
            with self._lock:
                listeners = self._listeners.get(group_id)
                if not listeners or token not in listeners:
                    return
                del listeners[token]
                if not listeners:
                    del self._listeners[group_id]
                if not self._listeners:
                    self._stop_watcher()
            logging.debug("Unsubscribed from local group: %s", group_id)

        return unsubscribe

    def close(self) -> None:
        with self._lock:
            self._listeners.clear()
            self._stop_watcher()

    # --- change propagation ---

    def _notify(self, group_id: str) -> None:
        with self._lock:
            callbacks = list(self._listeners.get(group_id, {}).values())
        if not callbacks:
            return
        group = self.get_group(group_id)
        for callback in callbacks:
            try:
                callback(group)
            except Exception:
                logging.exception("Group listener for %s failed", group_id)

    def poll_once(self) -> bool:
        """Check for writes made by other processes; returns True if any were seen."""
        revision = self._current_revision()
        if revision == self._seen_revision:
            return False
        self._seen_revision = revision
        with self._lock:
            group_ids = list(self._listeners)
        logging.debug("Local storage changed by another process (revision %s)", revision)
        for group_id in group_ids:
            self._notify(group_id)
        return True

    def _ensure_watcher(self) -> None:
        if self._watcher_stop is not None or self._poll_interval <= 0:
            return
        stop = threading.Event()
        self._watcher_stop = stop
        thread = threading.Thread(target=self._watch, args=(stop,), name="local-group-watcher", daemon=True)
        thread.start()

    def _stop_watcher(self) -> None:
        if self._watcher_stop is not None:
            self._watcher_stop.set()
            self._watcher_stop = None

    def _watch(self, stop: threading.Event) -> None:
        while not stop.wait(self._poll_interval):
            try:
                self.poll_once()
            except Exception:
                logging.exception("Polling local storage failed")

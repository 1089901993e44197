"""
Client for the state-channel network node.

Expense and payment events are mirrored over a WebSocket keyed by group
session id so other participants hear about them quickly. The channel is
best-effort: the group store stays the record of truth. A client is built
and connected by whoever owns it; nothing connects on import.
"""

import itertools
import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as ws_connect

from splitchain.models.ledger import Expense, Settlement, now_ms

Signer = Callable[[str], str]
MessageHandler = Callable[[Any], None]


class StateChannelError(Exception):
    pass


class StateChannelClient:
    def __init__(self, ws_url: str, network: str = "sandbox", max_reconnect_attempts: int = 5,
                 backoff_seconds: float = 2.0, connector: Callable = ws_connect):
        self.ws_url = ws_url
        self.network = network
        self.max_reconnect_attempts = max_reconnect_attempts
        self.backoff_seconds = backoff_seconds
        self._connector = connector
        self._lock = threading.RLock()
        self._ws = None
        self._handlers: Dict[str, MessageHandler] = {}
        self._handler_ids = itertools.count(1)
        self._reconnect_attempts = 0
        self._reconnect_timer: Optional[threading.Timer] = None
        self._closing = False

    # --- lifecycle ---

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def connect(self) -> None:
        with self._lock:
            if self._ws is not None:
                return
            try:
                ws = self._connector(self.ws_url)
            except (OSError, WebSocketException) as e:
                raise StateChannelError(f"could not connect to {self.ws_url}: {e}") from e
            self._ws = ws
            self._closing = False
            self._reconnect_attempts = 0
        logging.info("Connected to state-channel node %s (%s)", self.ws_url, self.network)
        threading.Thread(target=self._receive_loop, args=(ws,), name="state-channel-recv", daemon=True).start()

    def start(self) -> None:
        """Connect now, or keep retrying in the background if the node is down."""
        try:
            self.connect()
        except StateChannelError as e:
            logging.warning("State channel auto-connect failed: %s", e)
            self._schedule_reconnect()

    def disconnect(self) -> None:
        with self._lock:
            self._closing = True
            timer, self._reconnect_timer = self._reconnect_timer, None
            ws, self._ws = self._ws, None
        if timer is not None:
            timer.cancel()
        if ws is not None:
            ws.close()
            logging.info("Disconnected from state-channel node")

    def _receive_loop(self, ws) -> None:
        try:
            for raw in ws:
                self._dispatch(raw)
        except ConnectionClosed as e:
            logging.warning("State-channel connection closed: %s", e)
        finally:
            with self._lock:
                if self._ws is ws:
                    self._ws = None
                closing = self._closing
            if not closing:
                self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        with self._lock:
            if self._closing:
                return
            if self._reconnect_attempts >= self.max_reconnect_attempts:
                logging.error("State-channel reconnect gave up after %s attempts", self._reconnect_attempts)
                return
            self._reconnect_attempts += 1
            delay = self.backoff_seconds * self._reconnect_attempts
            logging.info("Reconnecting in %.1fs (attempt %s/%s)", delay, self._reconnect_attempts,
                         self.max_reconnect_attempts)
            timer = threading.Timer(delay, self._reconnect)
            timer.daemon = True
            self._reconnect_timer = timer
        timer.start()

    def _reconnect(self) -> None:
        if self._closing:
            return
        try:
            self.connect()
        except StateChannelError as e:
            logging.warning("Reconnect failed: %s", e)
            self._schedule_reconnect()

    # --- messaging ---

    def _dispatch(self, raw) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            message = raw
        with self._lock:
            handlers = list(self._handlers.values())
        for handler in handlers:
            try:
                handler(message)
            except Exception:
                logging.exception("State-channel handler failed")

    def _send(self, payload: dict) -> None:
        # sends never open a connection; connect() and the reconnect timer do
        ws = self._ws
        if ws is None:
            raise StateChannelError("not connected")
        try:
            ws.send(json.dumps(payload))
        except (ConnectionClosed, OSError) as e:
            raise StateChannelError(f"send failed: {e}") from e

    @staticmethod
    def _sign(data: dict, signer: Signer, sender: Optional[str] = None) -> dict:
        message = dict(data, signature=signer(json.dumps(data)))
        if sender:
            message["sender"] = sender
        return message

    def create_session(self, session_id: str, creator: str, participants: List[str], signer: Signer,
                       initial_amount: str = "0") -> str:
        members = [creator] + list(participants)
        definition = {
            "protocol": session_id,
            "participants": members,
            "weights": [100 / len(members)] * len(members),
            "quorum": 100,
            "challenge": 0,
            "nonce": now_ms(),
        }
        allocations = [{"participant": creator, "asset": "usdc", "amount": initial_amount}]
        allocations += [{"participant": p, "asset": "usdc", "amount": "0"} for p in participants]
        data = {"type": "create_session", "definition": definition, "allocations": allocations,
                "timestamp": now_ms()}
        self._send(self._sign(data, signer, sender=creator))
        logging.info("State-channel session created: %s", session_id)
        return session_id

    def join_session(self, session_id: str, participant: str, signer: Signer, lock_amount: str = "0") -> bool:
        data = {"type": "join", "sessionId": session_id, "participant": participant,
                "lockAmount": lock_amount, "timestamp": now_ms()}
        self._send(self._sign(data, signer))
        logging.info("Joined state-channel session: %s", session_id)
        return True

    def add_expense(self, session_id: str, expense: Expense, signer: Signer) -> bool:
        data = {
            "type": "expense",
            "amount": str(expense.amount),
            "recipient": session_id,
            "timestamp": expense.timestamp,
            "metadata": {
                "id": expense.id,
                "description": expense.description,
                "paidBy": expense.paid_by,
                "splitAmong": expense.split_among,
                "currency": expense.currency,
            },
        }
        self._send(self._sign(data, signer, sender=expense.paid_by))
        return True

    def send_payment(self, amount_units: int, recipient: str, signer: Signer, sender: str) -> bool:
        data = {"type": "payment", "amount": str(amount_units), "recipient": recipient, "timestamp": now_ms()}
        self._send(self._sign(data, signer, sender=sender))
        return True

    def record_settlement(self, session_id: str, settlement: Settlement, signer: Signer) -> bool:
        data = {"type": "settlement", "sessionId": session_id, "timestamp": now_ms(),
                "settlement": settlement.to_document()}
        self._send(self._sign(data, signer, sender=settlement.from_address))
        return True

    def close_session(self, session_id: str, signer: Signer) -> None:
        data = {"type": "close_session", "sessionId": session_id, "timestamp": now_ms()}
        self._send(self._sign(data, signer))
        logging.info("State-channel session closed: %s", session_id)

    def subscribe_to_session(self, session_id: str, callback: MessageHandler) -> Callable[[], None]:
        handler_id = f"session-{session_id}-{next(self._handler_ids)}"

        def handler(message):
            if isinstance(message, dict) and session_id in (message.get("sessionId"), message.get("recipient")):
                callback(message)

        with self._lock:
            self._handlers[handler_id] = handler

        def unsubscribe():
            with self._lock:
                self._handlers.pop(handler_id, None)

        return unsubscribe

"""Pairing and relay sessions.

Protocol (JSON text frames):
- Sender sends:   {type: "send"}
- Server sends:   {type: "code", code}            (code to show to the user)
- Receiver sends: {type: "recive", code}
- Server sends:   {type: "status", code: "0"}     (paired)
- Server sends:   {type: "status", code: "404"}   (unknown or already claimed code)
- Once paired, every other frame from either side goes to the partner as-is.

Protocol violations are never answered; the connection is just closed.
"""

import asyncio
import json
import logging
import time
import uuid
from typing import Optional, Union

from relay_server import config
from relay_server.codes import CodeExhaustedError, is_valid_code, issue_code
from relay_server.registry import TTLRegistry

logger = logging.getLogger("relay.sessions")

RECEIVER_PREFIX = "R"

Frame = Union[str, bytes]


def _frame(**fields) -> str:
    return json.dumps(fields, separators=(",", ":"))


def _is_numeric_code(value, length: int) -> bool:
    """True for a JSON number whose digits would form a valid code, e.g. 1234 or 1234.0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if isinstance(value, float):
        if not value.is_integer():
            return False
        value = int(value)
    return value >= 0 and is_valid_code(str(value), length)


class Peer:
    """One live WebSocket connection.

    ``send()`` and ``close()`` never block: they append to an outbox that the
    connection's writer task drains in order. A ``None`` in the outbox means
    "close the transport". ``paired_with`` holds the partner's id, not the
    partner itself.
    """

    def __init__(self, peer_id: Optional[str] = None, max_queued: int = config.OUTBOX_MAX):
        self.id = peer_id or uuid.uuid4().hex
        self.is_initialized = False
        self.paired_with: Optional[str] = None
        self.code_key: Optional[str] = None
        self.closed = False
        self.outbox: "asyncio.Queue[Optional[Frame]]" = asyncio.Queue(maxsize=max_queued)

    def __repr__(self) -> str:
        return f"Peer({self.id[:8]}, initialized={self.is_initialized}, paired_with={self.paired_with})"

    def send(self, data: Frame):
        if self.closed:
            logger.debug(f"[{self.id[:8]}] dropping frame for closed peer")
            return
        try:
            self.outbox.put_nowait(data)
        except asyncio.QueueFull:
            logger.warning(f"[{self.id[:8]}] outbox full ({self.outbox.maxsize} frames), closing")
            self.close()

    def close(self):
        if self.closed:
            return
        self.closed = True
        if self.outbox.full():
            # A peer this far behind loses its backlog; only the close goes out
            while not self.outbox.empty():
                self.outbox.get_nowait()
        self.outbox.put_nowait(None)


class PairingCoordinator:
    """Tracks connections, hands out pairing codes and relays paired traffic.

    All methods are synchronous. Running them on a single event loop means
    one transition finishes before the next starts, so the registries and
    peer fields need no locking.
    """

    def __init__(
        self,
        pending_ttl: float = config.PENDING_TTL,
        pending_max: int = config.PENDING_MAX,
        paired_ttl: float = config.PAIRED_TTL,
        paired_max: int = config.PAIRED_MAX,
        code_length: int = config.CODE_LENGTH,
        code_attempts: int = config.CODE_ATTEMPTS,
        clock=time.monotonic,
    ):
        self.code_length = code_length
        self.code_attempts = code_attempts
        self.peers: dict[str, Peer] = {}
        # peer id → Peer, until the peer has sent send/recive
        self.pending = TTLRegistry("pending", pending_max, pending_ttl, self._expire_pending, clock)
        # code → sender, "R" + code → receiver
        self.paired = TTLRegistry("paired", paired_max, paired_ttl, self._expire_paired, clock)

    # --- Registry hooks ---

    def _expire_pending(self, key, peer: Peer):
        if peer.is_initialized:
            return
        logger.info(f"[{peer.id[:8]}] not initialized in time, closing")
        peer.close()

    def _expire_paired(self, key, peer: Peer):
        logger.info(f"[{peer.id[:8]}] session {key} timed out, closing")
        peer.close()

    # --- Transport events ---

    def on_open(self, peer: Peer):
        self.peers[peer.id] = peer
        self.pending.set(peer.id, peer)
        logger.debug(f"open: #{peer.id}")

    def on_message(self, peer: Peer, data: Frame):
        # Frames already in flight when the peer was disposed are ignored
        if peer.closed:
            return
        text = data
        if isinstance(data, (bytes, bytearray)):
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError:
                logger.info(f"[{peer.id[:8]}] undecodable frame, closing")
                self.dispose(peer)
                return
        try:
            message = json.loads(text)
        except ValueError:
            logger.info(f"[{peer.id[:8]}] malformed frame, closing")
            self.dispose(peer)
            return

        msg_type = message.get("type") if isinstance(message, dict) else None

        if msg_type == "send":
            try:
                self.init_sender(peer)
            except CodeExhaustedError as e:
                logger.error(f"[{peer.id[:8]}] could not issue a pairing code: {e}")
                self.dispose(peer)

        elif msg_type == "recive":
            if peer.paired_with is not None:
                return
            code = message.get("code")
            if _is_numeric_code(code, self.code_length):
                # Well-formed digits sent as a JSON number never match a
                # string code, so this is an ordinary miss
                self._reject_receiver(peer, code)
                return
            if not is_valid_code(code, self.code_length):
                logger.info(f"[{peer.id[:8]}] invalid pairing code {code!r}, closing")
                self.dispose(peer)
                return
            self.init_receiver(peer, code)

        elif peer.paired_with is not None:
            self.relay(peer, data)

        else:
            logger.info(f"[{peer.id[:8]}] {msg_type!r} frame before pairing, closing")
            self.dispose(peer)

    def on_close(self, peer: Peer):
        logger.debug(f"close: #{peer.id}")
        self.dispose(peer)
        self.peers.pop(peer.id, None)

    def on_error(self, peer: Peer, exc: BaseException):
        logger.warning(f"[{peer.id[:8]}] connection error: {exc}")
        self.dispose(peer)

    # --- Transitions ---

    def init_sender(self, peer: Peer):
        """Give ``peer`` a fresh pairing code and park it in the paired registry."""
        if peer.closed or peer.is_initialized:
            return
        code = issue_code(self.paired.has, self.code_length, self.code_attempts)
        self.paired.set(code, peer)
        peer.code_key = code
        peer.is_initialized = True
        self.pending.delete(peer.id)
        logger.info(f"[{peer.id[:8]}] waiting as sender with code {code}")
        peer.send(_frame(type="code", code=code))

    def init_receiver(self, peer: Peer, code: str):
        """Pair ``peer`` with the sender holding ``code``, or reject it with 404."""
        if peer.closed or peer.paired_with is not None:
            return
        target = self.paired.get(code)
        if (
            target is None
            or target is peer
            or target.closed
            or target.paired_with is not None
            or peer.is_initialized
        ):
            self._reject_receiver(peer, code)
            return

        target.paired_with = peer.id
        peer.paired_with = target.id
        peer.is_initialized = True
        key = RECEIVER_PREFIX + code
        self.paired.set(key, peer)
        peer.code_key = key
        self.pending.delete(peer.id)
        logger.info(f"[{peer.id[:8]}] paired with {target.id[:8]} on code {code}")
        peer.send(_frame(type="status", code="0"))

    def _reject_receiver(self, peer: Peer, code):
        logger.info(f"[{peer.id[:8]}] no sender waiting on code {code}")
        peer.send(_frame(type="status", code="404"))
        self.dispose(peer)

    def relay(self, peer: Peer, data: Frame):
        partner = self.peers.get(peer.paired_with) if peer.paired_with else None
        if partner is None:
            logger.debug(f"[{peer.id[:8]}] partner gone, dropping frame")
            return
        partner.send(data)

    def dispose(self, peer: Peer):
        """Forget ``peer``'s registry entries and close its transport.

        The partner is left alone; it finds out through its own transport.
        """
        self.pending.delete(peer.id)
        if peer.code_key and self.paired.get(peer.code_key) is peer:
            self.paired.delete(peer.code_key)
        peer.close()

    # --- Housekeeping ---

    def purge_expired(self) -> int:
        return self.pending.purge_expired() + self.paired.purge_expired()

    def stats(self) -> dict:
        return {
            "connections": len(self.peers),
            "pending": len(self.pending),
            "paired": len(self.paired),
            "sessions": sum(1 for p in self.peers.values() if p.paired_with) // 2,
        }

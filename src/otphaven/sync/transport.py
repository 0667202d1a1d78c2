"""Peer transport abstraction and the in-process broker.

A transport hands out *endpoints*: identities registered in a shared
rendezvous namespace. An endpoint can open *channels* to other endpoints
by id, and accepts channels opened towards it. Everything is reported
through listener callbacks; nothing here polls.

    transport.create_endpoint(peer_id, listener) -> PeerEndpoint
        listener.on_open(peer_id)          registered under peer_id
        listener.on_connection(channel)    a peer opened a channel to us
        listener.on_error(failure)         unavailable-id, network, ...

    endpoint.connect(remote_id) -> PeerChannel
    channel.bind(listener)
        listener.on_channel_open(channel)
        listener.on_channel_data(channel, message)
        listener.on_channel_close(channel)
        listener.on_channel_error(channel, failure)

Channel events raised before ``bind`` are buffered and replayed on bind,
so a listener attached right after ``connect`` never misses the open.

``MemoryTransport`` is a broker living in one process. Its events are
queued and delivered by ``run_pending()``, which keeps tests deterministic.
"""

import json
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

ANONYMOUS_PREFIX = "anon-"


class FailureKind(str, Enum):
    UNAVAILABLE_ID = "unavailable-id"      # id already registered by a live peer
    PEER_UNAVAILABLE = "peer-unavailable"  # connect() target not registered
    NETWORK = "network"                    # link to the broker/relay lost
    SERVER_ERROR = "server-error"          # relay rejected a frame


@dataclass(frozen=True)
class TransportFailure:
    kind: FailureKind
    message: str = ""


def anonymous_id() -> str:
    """Random identity for endpoints that only dial out."""
    return f"{ANONYMOUS_PREFIX}{uuid.uuid4().hex}"


# ── Listener interfaces ──────────────────────────────────────────────


class EndpointListener(Protocol):
    def on_open(self, peer_id: str) -> None: ...

    def on_connection(self, channel: "PeerChannel") -> None: ...

    def on_error(self, failure: TransportFailure) -> None: ...


class ChannelListener(Protocol):
    def on_channel_open(self, channel: "PeerChannel") -> None: ...

    def on_channel_data(self, channel: "PeerChannel", message: Dict[str, Any]) -> None: ...

    def on_channel_close(self, channel: "PeerChannel") -> None: ...

    def on_channel_error(self, channel: "PeerChannel", failure: TransportFailure) -> None: ...


# ── Base classes ─────────────────────────────────────────────────────


class PeerChannel(ABC):
    """A bidirectional message channel to one remote endpoint."""

    def __init__(self, remote_id: str, channel_id: Optional[str] = None):
        self.remote_id = remote_id
        self.channel_id = channel_id or uuid.uuid4().hex
        self._listener: Optional[ChannelListener] = None
        self._pending: List[Tuple[str, tuple]] = []
        self._lock = threading.RLock()
        self._draining = False
        self._opened = False
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    def bind(self, listener: ChannelListener) -> None:
        """Attach the listener and replay events that arrived before it."""
        with self._lock:
            self._listener = listener
            if self._draining:
                return
            self._draining = True
        self._drain()

    def _emit(self, event: str, *args) -> None:
        with self._lock:
            if event == "open":
                if self._opened or self._closed:
                    return
                self._opened = True
            elif event == "close":
                if self._closed:
                    return
                self._closed = True
            elif self._closed:
                return

            self._pending.append((event, args))
            if self._listener is None or self._draining:
                return
            self._draining = True
        self._drain()

    def _drain(self) -> None:
        # One thread delivers at a time, in order, and never under _lock:
        # listeners take their own locks and may close this channel.
        while True:
            with self._lock:
                if not self._pending:
                    self._draining = False
                    return
                event, args = self._pending.pop(0)
                listener = self._listener
            try:
                getattr(listener, f"on_channel_{event}")(self, *args)
            except Exception:
                with self._lock:
                    self._draining = False
                raise

    @abstractmethod
    def send(self, message: Dict[str, Any]) -> bool:
        """Hand a JSON-serializable message to the channel.

        Returns False if the channel is not open. True means "handed over",
        not "delivered".
        """

    @abstractmethod
    def close(self) -> None:
        """Close the channel on both sides. Safe to call repeatedly."""


class PeerEndpoint(ABC):
    """One identity registered on the rendezvous namespace."""

    def __init__(self, peer_id: str, listener: EndpointListener):
        self.peer_id = peer_id
        self.listener = listener
        self.destroyed = False

    @abstractmethod
    def register(self) -> None:
        """Start registering ``peer_id``; completion arrives via on_open/on_error."""

    @abstractmethod
    def connect(self, remote_id: str) -> PeerChannel:
        """Open a channel to ``remote_id``."""

    @abstractmethod
    def destroy(self) -> None:
        """Release the id and close every channel. Safe at any point."""


class PeerTransport(ABC):
    """Factory for endpoints on one rendezvous namespace."""

    @abstractmethod
    def create_endpoint(self, peer_id: Optional[str], listener: EndpointListener) -> PeerEndpoint:
        """Create an endpoint. ``peer_id=None`` requests an anonymous identity."""


# ── In-process broker ────────────────────────────────────────────────


class MemoryChannel(PeerChannel):
    def __init__(self, transport: "MemoryTransport", remote_id: str, channel_id: str):
        super().__init__(remote_id, channel_id)
        self._transport = transport
        self._closing = False
        self.peer: Optional["MemoryChannel"] = None

    def send(self, message: Dict[str, Any]) -> bool:
        if not self.is_open or self.peer is None:
            return False
        # Same isolation a wire gives: the receiver gets its own copy
        wire = json.loads(json.dumps(message))
        self._transport._schedule(self.peer._emit, "data", wire)
        return True

    @property
    def is_open(self) -> bool:
        return super().is_open and not self._closing

    def close(self) -> None:
        if self._closed or self._closing:
            return
        self._closing = True
        self._transport._schedule(self._emit, "close")
        if self.peer is not None:
            self._transport._schedule(self.peer._emit, "close")


class MemoryEndpoint(PeerEndpoint):
    def __init__(self, transport: "MemoryTransport", peer_id: str, listener: EndpointListener):
        super().__init__(peer_id, listener)
        self._transport = transport
        self.channels: List[MemoryChannel] = []

    def register(self) -> None:
        self._transport._register(self)

    def connect(self, remote_id: str) -> PeerChannel:
        return self._transport._connect(self, remote_id)

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        for channel in list(self.channels):
            channel.close()
        self.channels.clear()
        self._transport._release(self)

    def _notify(self, callback: Callable, *args) -> None:
        if not self.destroyed:
            callback(*args)


class MemoryTransport(PeerTransport):
    """In-process rendezvous broker.

    Events are queued; call ``run_pending()`` to deliver them.
    """

    def __init__(self):
        self._endpoints: Dict[str, MemoryEndpoint] = {}
        self._queue: Deque[Tuple[Callable, tuple]] = deque()
        self._lock = threading.RLock()

    @property
    def registered_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._endpoints)

    def create_endpoint(self, peer_id: Optional[str], listener: EndpointListener) -> PeerEndpoint:
        return MemoryEndpoint(self, peer_id or anonymous_id(), listener)

    def run_pending(self, limit: int = 10_000) -> int:
        """Deliver queued events, including ones queued while delivering.

        Returns the number of events delivered.
        """
        delivered = 0
        while delivered < limit:
            with self._lock:
                if not self._queue:
                    break
                callback, args = self._queue.popleft()
            callback(*args)
            delivered += 1
        return delivered

    def inject_failure(self, peer_id: str, message: str = "Simulated network failure") -> None:
        """Report a network failure to a registered endpoint."""
        with self._lock:
            endpoint = self._endpoints.get(peer_id)
        if endpoint is not None:
            failure = TransportFailure(FailureKind.NETWORK, message)
            self._schedule(endpoint._notify, endpoint.listener.on_error, failure)

    # ── broker internals ─────────────────────────────────────────────

    def _schedule(self, callback: Callable, *args) -> None:
        with self._lock:
            self._queue.append((callback, args))

    def _register(self, endpoint: MemoryEndpoint) -> None:
        with self._lock:
            current = self._endpoints.get(endpoint.peer_id)
            taken = current is not None and current is not endpoint
            if not taken:
                self._endpoints[endpoint.peer_id] = endpoint

        if taken:
            failure = TransportFailure(
                FailureKind.UNAVAILABLE_ID, f"ID {endpoint.peer_id} is taken"
            )
            self._schedule(endpoint._notify, endpoint.listener.on_error, failure)
        else:
            self._schedule(endpoint._notify, endpoint.listener.on_open, endpoint.peer_id)

    def _release(self, endpoint: MemoryEndpoint) -> None:
        with self._lock:
            if self._endpoints.get(endpoint.peer_id) is endpoint:
                del self._endpoints[endpoint.peer_id]

    def _connect(self, source: MemoryEndpoint, remote_id: str) -> MemoryChannel:
        channel_id = uuid.uuid4().hex
        local = MemoryChannel(self, remote_id, channel_id)
        source.channels.append(local)

        with self._lock:
            target = self._endpoints.get(remote_id)

        if target is None or target.destroyed:
            logger.debug("Connect from %s to unregistered id %s", source.peer_id, remote_id)
            failure = TransportFailure(
                FailureKind.PEER_UNAVAILABLE, f"Could not connect to peer {remote_id}"
            )
            self._schedule(local._emit, "error", failure)
            self._schedule(source._notify, source.listener.on_error, failure)
            return local

        remote = MemoryChannel(self, source.peer_id, channel_id)
        local.peer, remote.peer = remote, local
        target.channels.append(remote)

        self._schedule(target._notify, target.listener.on_connection, remote)
        self._schedule(remote._emit, "open")
        self._schedule(local._emit, "open")
        return local

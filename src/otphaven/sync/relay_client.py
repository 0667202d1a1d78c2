"""WebSocket transport speaking to the rendezvous relay.

Each endpoint holds one socket to ``<relay>/peer/<peer_id>`` and one
receiver thread that turns relay frames into listener callbacks. Callbacks
therefore run on the receiver thread; ``PairingSession`` serializes them.
"""

import json
import logging
import threading
import uuid
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as ws_connect

from .transport import (
    EndpointListener,
    FailureKind,
    PeerChannel,
    PeerEndpoint,
    PeerTransport,
    TransportFailure,
    anonymous_id,
)

logger = logging.getLogger(__name__)

OPEN_TIMEOUT = 10.0  # seconds


class RelayChannel(PeerChannel):
    def __init__(self, endpoint: "RelayEndpoint", remote_id: str, channel_id: str):
        super().__init__(remote_id, channel_id)
        self._endpoint = endpoint

    def send(self, message: Dict[str, Any]) -> bool:
        if not self.is_open:
            return False
        return self._endpoint._send_frame({
            "type": "DATA",
            "dst": self.remote_id,
            "channel": self.channel_id,
            "payload": message,
        })

    def close(self) -> None:
        if self._closed:
            return
        self._endpoint._forget(self)
        self._endpoint._send_frame({
            "type": "CLOSE", "dst": self.remote_id, "channel": self.channel_id,
        })
        self._emit("close")


class RelayEndpoint(PeerEndpoint):
    def __init__(self, transport: "RelayTransport", peer_id: str, listener: EndpointListener):
        super().__init__(peer_id, listener)
        self._transport = transport
        self._ws = None
        self._channels: Dict[str, RelayChannel] = {}
        self._channels_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._id_taken = False
        self._thread: Optional[threading.Thread] = None

    @property
    def url(self) -> str:
        return f"{self._transport.url}/peer/{quote(self.peer_id, safe='')}"

    def register(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name=f"otphaven-relay-{self.peer_id[:16]}", daemon=True
        )
        self._thread.start()

    def connect(self, remote_id: str) -> PeerChannel:
        channel = RelayChannel(self, remote_id, uuid.uuid4().hex)
        with self._channels_lock:
            self._channels[channel.channel_id] = channel
        if not self._send_frame({
            "type": "CONNECT", "dst": remote_id, "channel": channel.channel_id,
        }):
            self._forget(channel)
            channel._emit("error", TransportFailure(FailureKind.NETWORK, "Relay not reachable"))
        return channel

    def destroy(self) -> None:
        """Close channels and the socket. Does not wait for the receiver thread."""
        if self.destroyed:
            return
        self.destroyed = True
        with self._channels_lock:
            channels = list(self._channels.values())
        for channel in channels:
            channel.close()
        ws = self._ws
        if ws is not None:
            ws.close()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the receiver thread to finish."""
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    # ── Receiver ─────────────────────────────────────────────────────

    def _run(self) -> None:
        try:
            self._ws = self._transport.open_socket(self.url)
        except (OSError, TimeoutError, WebSocketException) as exc:
            logger.warning("Could not reach relay %s: %s", self._transport.url, exc)
            self._report(TransportFailure(FailureKind.NETWORK, "Could not reach relay"))
            return

        if self.destroyed:
            self._ws.close()
            return

        try:
            for raw in self._ws:
                try:
                    frame = json.loads(raw)
                except ValueError:
                    logger.warning("Ignoring malformed relay frame")
                    continue
                if not isinstance(frame, dict):
                    continue
                self._handle(frame)
                if self.destroyed:
                    return
        except ConnectionClosed:
            pass
        except OSError as exc:
            logger.warning("Relay connection failed: %s", exc)

        if not self.destroyed and not self._id_taken:
            self._drop_channels()
            self._report(TransportFailure(FailureKind.NETWORK, "Connection to relay lost"))

    def _handle(self, frame: Dict[str, Any]) -> None:
        kind = frame.get("type")
        cid = frame.get("channel")

        if kind == "OPEN":
            self._report_open()
        elif kind == "ID-TAKEN":
            self._id_taken = True
            self._report(TransportFailure(
                FailureKind.UNAVAILABLE_ID, f"ID {self.peer_id} is taken"
            ))
        elif kind == "CONNECTION":
            src = frame.get("src")
            if not src or not cid:
                return
            channel = RelayChannel(self, src, cid)
            with self._channels_lock:
                self._channels[cid] = channel
            if not self.destroyed:
                self.listener.on_connection(channel)
            self._send_frame({"type": "ACCEPT", "dst": src, "channel": cid})
            channel._emit("open")
        elif kind == "ACCEPT":
            channel = self._lookup(cid)
            if channel is not None:
                channel._emit("open")
        elif kind == "DATA":
            channel = self._lookup(cid)
            payload = frame.get("payload")
            if channel is not None and isinstance(payload, dict):
                channel._emit("data", payload)
        elif kind == "CLOSE":
            channel = self._lookup(cid)
            if channel is not None:
                self._forget(channel)
                channel._emit("close")
        elif kind == "LEAVE":
            src = frame.get("src")
            with self._channels_lock:
                gone = [c for c in self._channels.values() if c.remote_id == src]
            for channel in gone:
                self._forget(channel)
                channel._emit("close")
        elif kind == "ERROR":
            failure = TransportFailure(
                _failure_kind(frame.get("kind")), str(frame.get("message") or "")
            )
            channel = self._lookup(cid)
            if channel is not None:
                self._forget(channel)
                channel._emit("error", failure)
            self._report(failure)
        else:
            logger.debug("Ignoring relay frame of type %r", kind)

    # ── Helpers ──────────────────────────────────────────────────────

    def _report_open(self) -> None:
        if not self.destroyed:
            self.listener.on_open(self.peer_id)

    def _report(self, failure: TransportFailure) -> None:
        if not self.destroyed:
            self.listener.on_error(failure)

    def _lookup(self, cid: Optional[str]) -> Optional[RelayChannel]:
        if not cid:
            return None
        with self._channels_lock:
            return self._channels.get(cid)

    def _forget(self, channel: RelayChannel) -> None:
        with self._channels_lock:
            self._channels.pop(channel.channel_id, None)

    def _drop_channels(self) -> None:
        with self._channels_lock:
            channels = list(self._channels.values())
            self._channels.clear()
        for channel in channels:
            channel._emit("close")

    def _send_frame(self, frame: Dict[str, Any]) -> bool:
        ws = self._ws
        if ws is None:
            return False
        try:
            with self._send_lock:
                ws.send(json.dumps(frame, separators=(",", ":")))
            return True
        except (ConnectionClosed, OSError) as exc:
            logger.debug("Relay send failed: %s", exc)
            return False


def _failure_kind(value: Any) -> FailureKind:
    try:
        return FailureKind(value)
    except ValueError:
        return FailureKind.SERVER_ERROR


class RelayTransport(PeerTransport):
    """Transport backed by the WebSocket rendezvous relay.

    Args:
        url: Relay base URL, e.g. ``ws://127.0.0.1:9443``
        connect: Socket factory taking ``(url, open_timeout=...)``; defaults
            to the ``websockets`` sync client
        open_timeout: Seconds allowed for the WebSocket handshake
    """

    def __init__(
        self,
        url: str,
        connect: Callable[..., Any] = ws_connect,
        open_timeout: float = OPEN_TIMEOUT,
    ):
        self.url = url.rstrip("/")
        self._connect = connect
        self.open_timeout = open_timeout

    def open_socket(self, url: str):
        return self._connect(url, open_timeout=self.open_timeout)

    def create_endpoint(self, peer_id: Optional[str], listener: EndpointListener) -> PeerEndpoint:
        return RelayEndpoint(self, peer_id or anonymous_id(), listener)

"""Peer pairing session: short numeric code, one vault-snapshot message.

The host registers ``otphaven-v1-<code>`` on the transport's rendezvous
namespace, where ``code`` is four random digits. The joiner registers an
anonymous identity and dials the host's id. Once the channel opens, both
sides may push ``SYNC_DATA`` messages carrying a full vault snapshot.

    host                          join
    ----                          ----
    connecting  "Initializing room..."
    disconnected "Waiting for peer..."
                                  connecting "Joining room 1234..."
    connected  <── channel ──>    connected
    SYNC_DATA  ───────────────>   on_snapshot(vault)

A remote close ends the session in "disconnected" and releases its id,
so the code cannot be dialed again. A transport error is terminal: the
session releases its resources and stays in "error". Either way, pair
again with a new session. Nothing here reconnects on its own.
"""

import logging
import secrets
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..core.audit_log import EventSeverity, EventType, log_security_event
from ..exceptions import OtphavenError, PeerIdCollision, TransportError
from ..models import Vault
from .transport import (
    FailureKind,
    PeerChannel,
    PeerEndpoint,
    PeerTransport,
    TransportFailure,
)

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────

ID_PREFIX = "otphaven-v1-"
CODE_LENGTH = 4
MAX_REGISTRATION_ATTEMPTS = 5


class Role(str, Enum):
    HOST = "host"
    JOIN = "join"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class MessageType(str, Enum):
    SYNC_DATA = "SYNC_DATA"
    ACK = "ACK"  # recognised on the wire, never acted on


# ── Codes ────────────────────────────────────────────────────────────


def generate_code() -> str:
    """Random 4-digit pairing code in 1000-9999."""
    return str(1000 + secrets.randbelow(9000))


def validate_code(code: str) -> str:
    """Normalize a user-entered code. Raises ValueError("Invalid code")."""
    code = (code or "").strip()
    if len(code) != CODE_LENGTH or not (code.isascii() and code.isdigit()):
        raise ValueError("Invalid code")
    return code


def rendezvous_id(code: str) -> str:
    return f"{ID_PREFIX}{code}"


# ── Message ──────────────────────────────────────────────────────────


@dataclass
class SyncMessage:
    type: MessageType
    payload: Optional[Vault] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type.value}
        if self.payload is not None:
            data["payload"] = self.payload.to_dict()
        return data

    @classmethod
    def from_dict(cls, obj: Any) -> "SyncMessage":
        """Parse a received message. Raises ValueError on bad data."""
        if not isinstance(obj, dict):
            raise ValueError("Message is not an object")
        try:
            kind = MessageType(obj.get("type"))
        except ValueError as exc:
            raise ValueError(f"Unknown message type: {obj.get('type')!r}") from exc

        payload = None
        if kind is MessageType.SYNC_DATA:
            payload = Vault.from_dict(obj.get("payload"))
        return cls(type=kind, payload=payload)


# ── Session ──────────────────────────────────────────────────────────

StatusCallback = Callable[[ConnectionStatus, str], None]
SnapshotCallback = Callable[[Vault], None]


class _EndpointEvents:
    """Routes one endpoint's events to the session, if still current."""

    def __init__(self, session: "PairingSession"):
        self.session = session
        self.endpoint: Optional[PeerEndpoint] = None

    def on_open(self, peer_id: str) -> None:
        self.session._on_registered(self.endpoint, peer_id)

    def on_connection(self, channel: PeerChannel) -> None:
        self.session._on_incoming(self.endpoint, channel)

    def on_error(self, failure: TransportFailure) -> None:
        self.session._on_endpoint_error(self.endpoint, failure)


class _ChannelEvents:
    def __init__(self, session: "PairingSession"):
        self.session = session

    def on_channel_open(self, channel: PeerChannel) -> None:
        self.session._on_channel_open(channel)

    def on_channel_data(self, channel: PeerChannel, message: Dict[str, Any]) -> None:
        self.session._on_channel_data(channel, message)

    def on_channel_close(self, channel: PeerChannel) -> None:
        self.session._on_channel_close(channel)

    def on_channel_error(self, channel: PeerChannel, failure: TransportFailure) -> None:
        self.session._on_channel_error(channel, failure)


class PairingSession:
    """One pairing attempt between two devices.

    Args:
        transport: Rendezvous transport (memory broker, relay client ...)
        on_status: Called with ``(status, message)`` on every status change
        on_snapshot: Called with each vault snapshot the peer sends
        code_factory: Source of host codes (tests pin it)
        max_attempts: Host registrations tried before giving up on collisions
    """

    def __init__(
        self,
        transport: PeerTransport,
        on_status: Optional[StatusCallback] = None,
        on_snapshot: Optional[SnapshotCallback] = None,
        code_factory: Callable[[], str] = generate_code,
        max_attempts: int = MAX_REGISTRATION_ATTEMPTS,
    ):
        self.transport = transport
        self._on_status = on_status
        self._on_snapshot = on_snapshot
        self._code_factory = code_factory
        self._max_attempts = max_attempts

        self.role: Optional[Role] = None
        self.code: Optional[str] = None
        self.status = ConnectionStatus.DISCONNECTED
        self.error: Optional[OtphavenError] = None

        self._endpoint: Optional[PeerEndpoint] = None
        self._channel: Optional[PeerChannel] = None
        self._attempts = 0
        self._destroyed = False
        self._lock = threading.RLock()

        self._ready = threading.Event()
        self._connected = threading.Event()
        self._finished = threading.Event()

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def attempts(self) -> int:
        return self._attempts

    # ── Public API ───────────────────────────────────────────────────

    def host(self) -> None:
        """Register under a fresh code and wait for a peer.

        Completion is reported through ``on_status``; ``self.code`` holds the
        code to show once status reaches "disconnected" (waiting for peer).
        """
        with self._lock:
            self._start(Role.HOST)
            self._set_status(ConnectionStatus.CONNECTING, "Initializing room...")
            self._register_host()

    def join(self, code: str) -> None:
        """Dial the host registered under ``code``.

        Raises:
            ValueError: If ``code`` is not four digits.
        """
        code = validate_code(code)
        with self._lock:
            self._start(Role.JOIN)
            self.code = code
            self._set_status(ConnectionStatus.CONNECTING, f"Joining room {code}...")
            self._open_endpoint(None)

    def send_vault(self, vault: Vault) -> bool:
        """Push a full snapshot to the peer. Fire-and-forget.

        Returns False, after logging a warning, when no channel is open.
        """
        with self._lock:
            channel = self._channel
            if self._destroyed or channel is None or not channel.is_open:
                logger.warning("Cannot send vault: connection not open")
                return False
            sent = channel.send(SyncMessage(MessageType.SYNC_DATA, vault).to_dict())

        if sent:
            log_security_event(
                EventType.SYNC_SNAPSHOT_SENT,
                EventSeverity.INFO,
                "Vault snapshot sent to peer",
                details={"role": self.role.value, "accounts": len(vault.accounts)},
            )
        else:
            logger.warning("Cannot send vault: channel refused the message")
        return sent

    def destroy(self) -> None:
        """Close the channel and release the rendezvous id. Idempotent."""
        with self._lock:
            if self._destroyed:
                return
            self._destroyed = True
            self._teardown()
            if self.status is not ConnectionStatus.ERROR:
                self.status = ConnectionStatus.DISCONNECTED
        self._finished.set()
        logger.debug("Pairing session destroyed (role=%s)", self.role)

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the host is registered or the join has started dialing."""
        return self._ready.wait(timeout)

    def wait_connected(self, timeout: Optional[float] = None) -> bool:
        return self._connected.wait(timeout)

    def wait_finished(self, timeout: Optional[float] = None) -> bool:
        """Block until the session ends: peer left, error, or destroy()."""
        return self._finished.wait(timeout)

    # ── Setup ────────────────────────────────────────────────────────

    def _start(self, role: Role) -> None:
        if self._destroyed:
            raise RuntimeError("Pairing session already destroyed")
        if self.role is not None:
            raise RuntimeError("Pairing session already started")
        self.role = role
        log_security_event(
            EventType.SYNC_SESSION_STARTED,
            EventSeverity.INFO,
            f"Pairing session started as {role.value}",
            details={"role": role.value},
        )

    def _register_host(self) -> None:
        self._attempts += 1
        self.code = self._code_factory()
        logger.debug("Registering pairing code (attempt %d)", self._attempts)
        self._open_endpoint(rendezvous_id(self.code))

    def _open_endpoint(self, peer_id: Optional[str]) -> None:
        events = _EndpointEvents(self)
        endpoint = self.transport.create_endpoint(peer_id, events)
        events.endpoint = endpoint
        self._endpoint = endpoint
        endpoint.register()

    def _is_current(self, endpoint: Optional[PeerEndpoint]) -> bool:
        return not self._destroyed and endpoint is not None and endpoint is self._endpoint

    # ── Endpoint events ──────────────────────────────────────────────

    def _on_registered(self, endpoint: PeerEndpoint, peer_id: str) -> None:
        with self._lock:
            if not self._is_current(endpoint):
                return
            if self.role is Role.HOST:
                self._set_status(ConnectionStatus.DISCONNECTED, "Waiting for peer...")
                self._ready.set()
                return
            channel = endpoint.connect(rendezvous_id(self.code))
            self._attach(channel)
            self._ready.set()

    def _on_incoming(self, endpoint: PeerEndpoint, channel: PeerChannel) -> None:
        with self._lock:
            if not self._is_current(endpoint):
                channel.close()
                return
            if self._channel is not None and not self._channel.is_closed:
                logger.warning("Rejecting second peer %s; session already paired", channel.remote_id)
                channel.close()
                return
            self._attach(channel)

    def _on_endpoint_error(self, endpoint: PeerEndpoint, failure: TransportFailure) -> None:
        with self._lock:
            if not self._is_current(endpoint):
                return

            if failure.kind is FailureKind.UNAVAILABLE_ID and self.role is Role.HOST:
                endpoint.destroy()
                self._endpoint = None
                if self._attempts < self._max_attempts:
                    logger.info("Pairing code collision, retrying with a new code")
                    self._register_host()
                    return
                self._fail(PeerIdCollision(
                    f"No free pairing code after {self._attempts} attempts"
                ))
                return

            self._fail(TransportError(failure.message or failure.kind.value))

    # ── Channel events ───────────────────────────────────────────────

    def _attach(self, channel: PeerChannel) -> None:
        self._channel = channel
        channel.bind(_ChannelEvents(self))

    def _on_channel_open(self, channel: PeerChannel) -> None:
        with self._lock:
            if self._destroyed or channel is not self._channel:
                return
            self._set_status(ConnectionStatus.CONNECTED, "Connected")
            self._connected.set()
        log_security_event(
            EventType.SYNC_CONNECTED,
            EventSeverity.INFO,
            "Peer connected",
            details={"role": self.role.value},
        )

    def _on_channel_data(self, channel: PeerChannel, message: Dict[str, Any]) -> None:
        with self._lock:
            if self._destroyed or channel is not self._channel:
                return
        try:
            parsed = SyncMessage.from_dict(message)
        except (ValueError, TypeError, OverflowError) as exc:
            logger.warning("Ignoring malformed sync message: %s", exc)
            return

        if parsed.type is not MessageType.SYNC_DATA:
            return

        log_security_event(
            EventType.SYNC_SNAPSHOT_RECEIVED,
            EventSeverity.INFO,
            "Vault snapshot received from peer",
            details={"role": self.role.value, "accounts": len(parsed.payload.accounts)},
        )
        if self._on_snapshot is not None:
            try:
                self._on_snapshot(parsed.payload)
            except Exception:
                logger.exception("Snapshot handler failed")

    def _on_channel_close(self, channel: PeerChannel) -> None:
        with self._lock:
            if self._destroyed or channel is not self._channel:
                return
            # the session is over; release the rendezvous id as well
            self._teardown()
            self._set_status(ConnectionStatus.DISCONNECTED, "Peer disconnected")
        log_security_event(
            EventType.SYNC_DISCONNECTED,
            EventSeverity.INFO,
            "Peer disconnected",
            details={"role": self.role.value},
        )
        self._finished.set()

    def _on_channel_error(self, channel: PeerChannel, failure: TransportFailure) -> None:
        with self._lock:
            if self._destroyed or channel is not self._channel:
                return
            self._fail(TransportError(failure.message or failure.kind.value))

    # ── Teardown ─────────────────────────────────────────────────────

    def _fail(self, error: OtphavenError) -> None:
        self.error = error
        self._teardown()
        self._set_status(ConnectionStatus.ERROR, str(error))
        log_security_event(
            EventType.SYNC_ERROR,
            EventSeverity.ALERT,
            "Pairing session failed",
            details={"role": self.role.value if self.role else None, "error": type(error).__name__},
        )
        # wake anyone blocked on setup
        self._ready.set()
        self._finished.set()

    def _teardown(self) -> None:
        channel, self._channel = self._channel, None
        endpoint, self._endpoint = self._endpoint, None
        if channel is not None:
            channel.close()
        if endpoint is not None:
            endpoint.destroy()
        self._connected.clear()

    def _set_status(self, status: ConnectionStatus, message: str) -> None:
        self.status = status
        logger.debug("Pairing status: %s (%s)", status.value, message)
        if self._on_status is None:
            return
        try:
            self._on_status(status, message)
        except Exception:
            logger.exception("Status callback failed")

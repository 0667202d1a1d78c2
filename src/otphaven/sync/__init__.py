"""Device-to-device sync: pairing sessions, transports, and merge."""

from .merge import MergeCounts, MergeResult, reconcile
from .pairing import (
    ID_PREFIX,
    MAX_REGISTRATION_ATTEMPTS,
    ConnectionStatus,
    MessageType,
    PairingSession,
    Role,
    SyncMessage,
    generate_code,
    rendezvous_id,
    validate_code,
)
from .transport import (
    FailureKind,
    MemoryTransport,
    PeerChannel,
    PeerEndpoint,
    PeerTransport,
    TransportFailure,
)

__all__ = [
    "ID_PREFIX",
    "MAX_REGISTRATION_ATTEMPTS",
    "ConnectionStatus",
    "FailureKind",
    "MemoryTransport",
    "MergeCounts",
    "MergeResult",
    "MessageType",
    "PairingSession",
    "PeerChannel",
    "PeerEndpoint",
    "PeerTransport",
    "Role",
    "SyncMessage",
    "TransportFailure",
    "generate_code",
    "reconcile",
    "rendezvous_id",
    "validate_code",
]

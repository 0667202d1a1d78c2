# otphaven Sync - Rendezvous Relay
#
# WebSocket relay that gives pairing sessions a shared id namespace and
# forwards their frames. One socket per registered peer id:
#
#   ws://<host>:<port>/peer/{peer_id}
#
# Server -> client:  OPEN, ID-TAKEN, CONNECTION, ACCEPT, DATA, CLOSE, LEAVE, ERROR
# Client -> server:  CONNECT, ACCEPT, DATA, CLOSE
#
# Payloads are opaque to the relay: forwarded as-is, never stored, never
# logged. When a peer's socket goes away every peer it had a channel with
# gets a LEAVE frame.

import json
import logging
import re
from enum import Enum
from typing import Any, Dict, Optional, Set

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9443

PEER_ID_PATTERN = r"^[A-Za-z0-9_-]{1,128}$"
_PEER_ID_RE = re.compile(PEER_ID_PATTERN)
CLOSE_ID_TAKEN = 4001
CLOSE_INVALID_ID = 4002


class FrameType(str, Enum):
    OPEN = "OPEN"
    ID_TAKEN = "ID-TAKEN"
    CONNECT = "CONNECT"
    CONNECTION = "CONNECTION"
    ACCEPT = "ACCEPT"
    DATA = "DATA"
    CLOSE = "CLOSE"
    LEAVE = "LEAVE"
    ERROR = "ERROR"


CLIENT_FRAMES = {FrameType.CONNECT, FrameType.ACCEPT, FrameType.DATA, FrameType.CLOSE}


class ClientFrame(BaseModel):
    """A frame sent by a peer. ``dst`` and ``channel`` are always required."""

    type: FrameType
    dst: str = Field(..., pattern=PEER_ID_PATTERN)
    channel: str = Field(..., min_length=1, max_length=64)
    payload: Optional[Any] = None


class RelayRegistry:
    """Live peer sockets and which peers share channels.

    Only touched from the event loop, so no locking.
    """

    def __init__(self):
        self._peers: Dict[str, WebSocket] = {}
        self._links: Dict[str, Set[str]] = {}

    def __len__(self) -> int:
        return len(self._peers)

    def __contains__(self, peer_id: str) -> bool:
        return peer_id in self._peers

    def register(self, peer_id: str, websocket: WebSocket) -> bool:
        if peer_id in self._peers:
            return False
        self._peers[peer_id] = websocket
        self._links[peer_id] = set()
        return True

    def unregister(self, peer_id: str) -> Set[str]:
        """Drop a peer; returns the peers it was linked with."""
        self._peers.pop(peer_id, None)
        counterparts = self._links.pop(peer_id, set())
        for other in counterparts:
            self._links.get(other, set()).discard(peer_id)
        return counterparts

    def get(self, peer_id: str) -> Optional[WebSocket]:
        return self._peers.get(peer_id)

    def link(self, a: str, b: str) -> None:
        self._links.setdefault(a, set()).add(b)
        self._links.setdefault(b, set()).add(a)


async def _deliver(websocket: Optional[WebSocket], frame: Dict[str, Any]) -> bool:
    if websocket is None:
        return False
    try:
        await websocket.send_json(frame)
        return True
    except WebSocketDisconnect:
        return False
    except Exception:
        logger.debug("Dropping frame to a closing socket", exc_info=True)
        return False


def _error_frame(kind: str, message: str, channel: Optional[str] = None) -> Dict[str, Any]:
    frame = {"type": FrameType.ERROR.value, "kind": kind, "message": message}
    if channel:
        frame["channel"] = channel
    return frame


async def _route(registry: RelayRegistry, src: str, frame: ClientFrame, websocket: WebSocket):
    """Forward one client frame to its destination."""
    target = registry.get(frame.dst)
    if target is None:
        await _deliver(websocket, _error_frame(
            "peer-unavailable", f"Could not connect to peer {frame.dst}", frame.channel
        ))
        return

    if frame.type is FrameType.CONNECT:
        registry.link(src, frame.dst)
        outgoing = {"type": FrameType.CONNECTION.value, "src": src, "channel": frame.channel}
    else:
        outgoing = {"type": frame.type.value, "src": src, "channel": frame.channel}
        if frame.type is FrameType.DATA:
            outgoing["payload"] = frame.payload

    if not await _deliver(target, outgoing):
        await _deliver(websocket, _error_frame(
            "peer-unavailable", f"Peer {frame.dst} went away", frame.channel
        ))


def create_app(registry: Optional[RelayRegistry] = None) -> FastAPI:
    """Build the relay application. Each app owns its own registry."""
    app = FastAPI(title="otphaven relay", docs_url=None, redoc_url=None)
    registry = registry if registry is not None else RelayRegistry()
    app.state.registry = registry

    @app.get("/health")
    async def health():
        return {"status": "ok", "peers": len(registry)}

    @app.websocket("/peer/{peer_id}")
    async def peer_socket(websocket: WebSocket, peer_id: str):
        await websocket.accept()

        if not _valid_peer_id(peer_id):
            await websocket.send_json(_error_frame("invalid-id", "Invalid peer id"))
            await websocket.close(code=CLOSE_INVALID_ID)
            return

        if not registry.register(peer_id, websocket):
            await websocket.send_json({"type": FrameType.ID_TAKEN.value, "id": peer_id})
            await websocket.close(code=CLOSE_ID_TAKEN)
            return

        logger.info("Peer registered (%d online)", len(registry))
        await websocket.send_json({"type": FrameType.OPEN.value, "id": peer_id})

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    frame = ClientFrame.model_validate(json.loads(raw))
                except (ValueError, ValidationError):
                    await _deliver(websocket, _error_frame("server-error", "Malformed frame"))
                    continue
                if frame.type not in CLIENT_FRAMES:
                    await _deliver(websocket, _error_frame(
                        "server-error", f"Unexpected frame {frame.type.value}", frame.channel
                    ))
                    continue
                await _route(registry, peer_id, frame, websocket)
        except WebSocketDisconnect:
            pass
        finally:
            counterparts = registry.unregister(peer_id)
            for other in counterparts:
                await _deliver(registry.get(other), {"type": FrameType.LEAVE.value, "src": peer_id})
            logger.info("Peer left (%d online)", len(registry))

    return app


def _valid_peer_id(peer_id: str) -> bool:
    return _PEER_ID_RE.fullmatch(peer_id) is not None


def run_relay(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT):
    """Serve the relay with uvicorn until interrupted."""
    logger.info("Starting relay on ws://%s:%d", host, port)
    uvicorn.run(create_app(), host=host, port=port, log_level="info")

"""
Live notification channel

Keeps track of open WebSocket connections and which user each one belongs to:
- join: a client announces its user id (last connect wins)
- notification: pushed to the recipient's connection, if any
- new_post / new_comment: rebroadcast to every other connection

Pushes may come from request worker threads, so each connection schedules its
sends on the event loop that owns the socket.
"""

import asyncio
import json
import threading
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect

from logging_config import logger

router = APIRouter(tags=["realtime"])

BROADCAST_EVENTS = ("new_post", "new_comment")


class Connection:
    """Handle for one open WebSocket"""

    def __init__(self, websocket: WebSocket, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.websocket = websocket
        self.loop = loop or asyncio.get_running_loop()

    def send(self, message: Dict[str, Any]) -> None:
        """Fire-and-forget send, safe to call from any thread."""
        future = asyncio.run_coroutine_threadsafe(self.websocket.send_json(message), self.loop)
        future.add_done_callback(self._report_failure)

    @staticmethod
    def _report_failure(future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning(f"[Realtime] Delivery failed: {exc}")


class ConnectionRegistry:
    """Process-local map of user id -> live connection"""

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: List[Any] = []
        self._by_user: Dict[str, Any] = {}

    def attach(self, conn) -> None:
        with self._lock:
            self._connections.append(conn)

    def join(self, user_id: str, conn) -> None:
        with self._lock:
            if conn not in self._connections:
                self._connections.append(conn)
            # A handle belongs to one user at a time
            for stale in [u for u, live in self._by_user.items() if live is conn]:
                del self._by_user[stale]
            self._by_user[user_id] = conn

    def leave(self, conn) -> Optional[str]:
        """Forget ``conn``. Returns the user id it was registered under, if any."""
        with self._lock:
            if conn in self._connections:
                self._connections.remove(conn)
            owners = [u for u, live in self._by_user.items() if live is conn]
            for user_id in owners:
                del self._by_user[user_id]
        return owners[0] if owners else None

    def get(self, user_id: str):
        with self._lock:
            return self._by_user.get(user_id)

    def push(self, user_id: str, event: str, data: Any) -> bool:
        conn = self.get(user_id)
        if conn is None:
            return False
        conn.send({"event": event, "data": data})
        return True

    def broadcast(self, event: str, data: Any, exclude=None) -> int:
        with self._lock:
            targets = [c for c in self._connections if c is not exclude]
        for conn in targets:
            conn.send({"event": event, "data": data})
        return len(targets)

    def __len__(self) -> int:
        return len(self._by_user)

    def __contains__(self, user_id: str) -> bool:
        return self.get(user_id) is not None


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.connections


@router.websocket("/ws")
async def socket_endpoint(websocket: WebSocket):
    registry: ConnectionRegistry = websocket.app.state.connections
    await websocket.accept()
    conn = Connection(websocket)
    registry.attach(conn)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"event": "error", "message": "Invalid JSON"})
                continue
            event = message.get("event") if isinstance(message, dict) else None

            if event == "join":
                user_id = str(message.get("user_id") or "")
                if not user_id:
                    await websocket.send_json({"event": "error", "message": "user_id is required"})
                    continue
                registry.join(user_id, conn)
                logger.info(f"[Realtime] User {user_id} joined")
                await websocket.send_json({"event": "joined", "user_id": user_id})
            elif event in BROADCAST_EVENTS:
                registry.broadcast(event, message.get("data"), exclude=conn)
            else:
                await websocket.send_json({"event": "error", "message": f"Unknown event: {event}"})
    except WebSocketDisconnect:
        logger.debug("[Realtime] Client disconnected")
    finally:
        user_id = registry.leave(conn)
        if user_id:
            logger.info(f"[Realtime] User {user_id} disconnected")

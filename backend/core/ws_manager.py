# core/ws_manager.py
import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger("ws_manager")


class ConnectionManager:
    """Websocket subscribers grouped by topic (e.g. ``release:<jtc>``)."""

    def __init__(self):
        self.topics: dict[str, list[WebSocket]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, topic: str) -> bool:
        """
        只負責記錄，不做 websocket.accept()。
        """
        async with self._lock:
            if websocket not in self.topics[topic]:
                self.topics[topic].append(websocket)
            total = len(self.topics[topic])
        logger.info("🔗 WebSocket subscribed to %s. Total: %d", topic, total)
        return True

    async def disconnect(self, websocket: WebSocket, topic: str | None = None):
        async with self._lock:
            for name in ([topic] if topic else list(self.topics)):
                subs = self.topics.get(name, [])
                if websocket in subs:
                    subs.remove(websocket)
                if not subs:
                    self.topics.pop(name, None)
        logger.info("❌ WebSocket unsubscribed from %s", topic or "all topics")

    async def _safe_send(self, ws: WebSocket, message: dict) -> bool:
        if ws.client_state != WebSocketState.CONNECTED:
            return False
        try:
            await ws.send_json(message)
            return True
        except Exception as e:
            logger.warning("⚠️ send_json failed; removing socket: %s", e)
            await self.disconnect(ws)
            return False

    def has_subscribers(self, topic: str) -> bool:
        return bool(self.topics.get(topic))

    async def broadcast(self, topic: str, message: dict) -> int:
        async with self._lock:
            sockets = list(self.topics.get(topic, []))
        sent = 0
        for ws in sockets:
            if await self._safe_send(ws, message):
                sent += 1
        return sent


def release_topic(jtc: str) -> str:
    return f"release:{jtc}"


# 全域單例
ws_manager = ConnectionManager()

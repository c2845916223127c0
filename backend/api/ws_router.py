# backend/api/ws_router.py
"""
WebSocket 路由：release session 的即時 checklist

- /ws/release/{jtc} 訂閱單一 JTC 的 bin / checklist 更新
- UI 只讀；所有變更都走 REST，由 REST 端呼叫 publish_release_update 廣播
"""
from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from typing import Any, Dict, Iterable, List, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from core.db import db_manager
from core.ws_manager import release_topic, ws_manager
from models.bin_models import ChecklistIn, normalize_jtc_id
from services.errors import EngineError
from services.policy import EnginePolicy
from services.release import build_checklist

logger = logging.getLogger("api.ws_router")
router = APIRouter()


# ------------------ 安全 send 工具 ------------------
def _is_connected(ws: WebSocket) -> bool:
    return (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    )


async def safe_send_text(ws: WebSocket, text: str) -> bool:
    try:
        if not _is_connected(ws):
            return False
        await asyncio.wait_for(ws.send_text(text), timeout=5.0)
        return True
    except Exception:
        return False


async def safe_send_json(ws: WebSocket, data: dict) -> bool:
    try:
        if not _is_connected(ws):
            return False
        await asyncio.wait_for(ws.send_json(data), timeout=5.0)
        return True
    except Exception:
        return False


# ------------------ checklist payload ------------------
def _checklist_payload(
    db: sqlite3.Connection, jtc: str, session_bins: Iterable[str] = ()
) -> Dict[str, Any]:
    try:
        checklist = build_checklist(db, jtc, session_bins, EnginePolicy.from_settings())
        return {"type": "checklist", "checklist": checklist.model_dump()}
    except EngineError as e:
        return {"type": "error", "error": e.to_dict()}


async def publish_release_update(
    db: sqlite3.Connection, jtc: Optional[str], event: str, bins: List[str]
) -> None:
    """Push a bin event plus the refreshed checklist to the JTC's subscribers."""
    if not jtc:
        return
    topic = release_topic(jtc)
    if not ws_manager.has_subscribers(topic):
        return
    await ws_manager.broadcast(topic, {"type": "bin_update", "event": event, "jtc": jtc, "bins": bins})
    await ws_manager.broadcast(topic, _checklist_payload(db, jtc))


# ------------------ Release WS ------------------
@router.websocket("/ws/release/{jtc}")
async def websocket_release(websocket: WebSocket, jtc: str):
    jtc = normalize_jtc_id(jtc)
    topic = release_topic(jtc)

    # 一定先 accept，再做其他事
    try:
        await websocket.accept()
    except RuntimeError as e:
        if "accept" not in str(e).lower():
            logger.exception("release accept() failed")
            return

    if not await ws_manager.connect(websocket, topic):
        return

    try:
        with db_manager.get_connection() as conn:
            await safe_send_json(websocket, _checklist_payload(conn, jtc))

        while _is_connected(websocket):
            try:
                raw = await asyncio.wait_for(websocket.receive_text(), timeout=30.0)
                if raw == "ping":
                    await safe_send_text(websocket, "pong")
                    continue

                try:
                    msg = json.loads(raw)
                except json.JSONDecodeError:
                    await safe_send_json(websocket, {"type": "error", "message": "Invalid JSON"})
                    continue

                if not isinstance(msg, dict):
                    await safe_send_json(websocket, {"type": "error", "message": "Expected a JSON object"})
                    continue

                # session bins are client state; the checklist is recomputed for them on request
                if msg.get("type") == "request_checklist":
                    try:
                        req = ChecklistIn.model_validate({"bins": msg.get("bins") or []})
                    except ValidationError:
                        await safe_send_json(websocket, {"type": "error", "message": "bins must be a list of bin ids"})
                        continue
                    with db_manager.get_connection() as conn:
                        await safe_send_json(websocket, _checklist_payload(conn, jtc, req.bins))
                else:
                    await safe_send_json(
                        websocket, {"type": "error", "message": f"Unknown message type: {msg.get('type')}"}
                    )

            except asyncio.TimeoutError:
                await safe_send_text(websocket, "heartbeat")
            except WebSocketDisconnect:
                break
    finally:
        await ws_manager.disconnect(websocket, topic)

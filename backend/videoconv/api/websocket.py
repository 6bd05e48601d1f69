import json
import logging
import uuid
from datetime import datetime
from typing import Dict, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

websocket_router = APIRouter()


class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}
        self.subscriptions: Dict[str, Set[str]] = {}

    async def connect(self, websocket: WebSocket, client_id: str):
        await websocket.accept()
        self.active_connections[client_id] = websocket
        self.subscriptions[client_id] = {"*"}
        logger.info(f"WebSocket client connected: {client_id}")

    def disconnect(self, client_id: str):
        self.active_connections.pop(client_id, None)
        self.subscriptions.pop(client_id, None)
        logger.info(f"WebSocket client disconnected: {client_id}")

    @staticmethod
    def _wants(subs: Set[str], event: str) -> bool:
        return "*" in subs or event in subs or event.split(".")[0] + ".*" in subs

    async def broadcast(self, event: str, data: dict):
        message = json.dumps({
            "event": event,
            "timestamp": datetime.utcnow().isoformat(),
            "data": data,
        })
        disconnected = []
        for client_id, ws in list(self.active_connections.items()):
            if self._wants(self.subscriptions.get(client_id, set()), event):
                try:
                    await ws.send_text(message)
                except Exception:
                    disconnected.append(client_id)
        for cid in disconnected:
            self.disconnect(cid)

    async def send_to(self, client_id: str, event: str, data: dict):
        ws = self.active_connections.get(client_id)
        if ws:
            message = json.dumps({
                "event": event,
                "timestamp": datetime.utcnow().isoformat(),
                "data": data,
            })
            try:
                await ws.send_text(message)
            except Exception:
                self.disconnect(client_id)


manager = ConnectionManager()


async def forward_events(subscription):
    """Relay orchestrator events to every websocket client, in publish order."""
    async for event in subscription:
        try:
            await manager.broadcast(event.event, event.data)
        except Exception as e:
            logger.error(f"Event relay error for job {event.job_id}: {e}")


@websocket_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    client_id = str(uuid.uuid4())[:8]
    await manager.connect(websocket, client_id)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            action = msg.get("action") if isinstance(msg, dict) else None
            if action == "subscribe":
                manager.subscriptions.setdefault(client_id, set()).update(msg.get("events", []))
            elif action == "unsubscribe":
                manager.subscriptions.get(client_id, set()).difference_update(msg.get("events", []))
            elif action == "ping":
                await manager.send_to(client_id, "pong", {})
    except WebSocketDisconnect:
        manager.disconnect(client_id)

"""WebSocket connection manager for real-time status updates."""
import asyncio
import json
import logging
from typing import Set, Dict, Any

from fastapi import WebSocket

from ..domain import CheckResult, Target

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections and broadcasts check results to all connected clients."""

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self.active_connections.add(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")

    async def disconnect(self, websocket: WebSocket):
        """Remove a disconnected WebSocket."""
        async with self._lock:
            self.active_connections.discard(websocket)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def broadcast(self, message: Dict[str, Any]):
        """Broadcast a message to all connected clients."""
        if not self.active_connections:
            return

        message_json = json.dumps(message, default=str)

        # Copy the set to avoid modification during iteration
        async with self._lock:
            connections = list(self.active_connections)

        # Send to all connections, removing any that fail
        disconnected = []
        for websocket in connections:
            try:
                await websocket.send_text(message_json)
            except Exception as e:
                logger.debug(f"Failed to send to WebSocket: {e}")
                disconnected.append(websocket)

        if disconnected:
            async with self._lock:
                for ws in disconnected:
                    self.active_connections.discard(ws)

    async def broadcast_check_result(self, target: Target, result: CheckResult):
        """Scheduler listener: push every applied check to clients."""
        await self.broadcast({
            "type": "status_update",
            "target_id": target.id,
            "target_name": target.name,
            "status": result.status.value,
            "response_time_ms": result.response_time_ms,
            "uptime": round(result.uptime, 2),
            "status_code": result.status_code,
            "details": result.detail,
            "ssl_expiry_days": target.ssl_expiry_days,
            "checked_at": result.checked_at.isoformat(),
        })

    @property
    def connection_count(self) -> int:
        """Return the number of active connections."""
        return len(self.active_connections)


# Global instance
websocket_manager = ConnectionManager()

"""
WebSocket connection manager for voice clients
"""
import asyncio
import logging
from typing import Dict, Optional
from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ClientConnection:
    """
    One connected browser

    Messages are queued without waiting and written in order by a single
    sender task, so session callbacks can send from synchronous code.
    """

    def __init__(self, websocket: WebSocket, client_id: str):
        self.websocket = websocket
        self.client_id = client_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._sender_task: Optional[asyncio.Task] = None
        self.closed = False

    def start(self):
        self._sender_task = asyncio.create_task(self._sender())

    def send_nowait(self, message: dict):
        """Queue a JSON message; dropped once the connection is closed"""
        if self.closed:
            return
        self._queue.put_nowait(message)

    async def _sender(self):
        while True:
            message = await self._queue.get()
            if message is None:
                return
            try:
                await self.websocket.send_json(message)
            except Exception as e:
                logger.warning(f"Failed to send message to client {self.client_id}: {e}")
                self.closed = True
                return

    async def close(self):
        """Flush queued messages and stop the sender"""
        if self._sender_task is None:
            self.closed = True
            return
        self._queue.put_nowait(None)
        self.closed = True
        try:
            await asyncio.wait_for(self._sender_task, timeout=5.0)
        except asyncio.TimeoutError:
            self._sender_task.cancel()
            logger.warning(f"Sender for client {self.client_id} did not drain in time")


class WebSocketManager:
    """Manages WebSocket connections of voice clients"""
    def __init__(self):
        # Map client_id to its connection
        self.active_connections: Dict[str, ClientConnection] = {}

    async def connect(self, websocket: WebSocket, client_id: str) -> ClientConnection:
        """Accept a WebSocket and register it under client_id"""
        await websocket.accept()
        connection = ClientConnection(websocket, client_id)
        connection.start()
        self.active_connections[client_id] = connection
        logger.info(f"WebSocket connected for client {client_id} (total connections: {len(self.active_connections)})")
        return connection

    async def disconnect(self, client_id: str):
        """Unregister a client and flush its pending messages"""
        connection = self.active_connections.pop(client_id, None)
        if connection is not None:
            await connection.close()
        logger.info(f"WebSocket disconnected for client {client_id}")


# Global WebSocket manager instance
websocket_manager = WebSocketManager()

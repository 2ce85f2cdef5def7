"""
Connection registry for live chat relay WebSockets.

Maps the connection id handed out by the WebSocket endpoint to the socket
used to push frames to that client. Entries exist from connect until
disconnect, or until a send fails, which counts as an implicit disconnect.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
import logging

from fastapi import WebSocket

from velora.database import utcnow
from velora.errors import ErrorKind, RelayError
from velora.schemas.frames import OutboundFrame, encode_frame

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """Routing information for one live relay session."""
    connection_id: str
    websocket: WebSocket
    client: Optional[str] = None
    connected_at: datetime = field(default_factory=utcnow)


class ConnectionRegistry:
    """Tracks live relay connections by connection id."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def on_connect(self, connection_id: str, websocket: WebSocket) -> Connection:
        """Register a connection. Registering the same id again replaces the entry."""
        client = None
        if websocket.client is not None:
            client = f"{websocket.client.host}:{websocket.client.port}"

        connection = Connection(connection_id=connection_id, websocket=websocket, client=client)
        self._connections[connection_id] = connection
        logger.info(f"🔌 WebSocket connection established: {connection_id} ({client})")
        return connection

    def on_disconnect(self, connection_id: str) -> None:
        """Forget a connection. Unknown ids are ignored."""
        connection = self._connections.pop(connection_id, None)
        if connection is not None:
            logger.info(f"🔌 WebSocket disconnected: {connection_id}")
        else:
            logger.debug(f"Disconnect for unregistered connection {connection_id}, nothing to remove")

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connection_ids(self) -> List[str]:
        return list(self._connections)

    def __len__(self) -> int:
        return len(self._connections)

    async def send(self, connection_id: str, frame: OutboundFrame) -> None:
        """
        Push one frame to a connection.

        Raises:
            RelayError: DELIVERY_FAILURE if the connection is unknown or the
                send fails. A failed send also unregisters the connection.
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            raise RelayError(ErrorKind.DELIVERY_FAILURE, f"Connection {connection_id} is not registered")

        try:
            await connection.websocket.send_text(encode_frame(frame))
        except Exception as e:
            logger.warning(f"⚠️ Failed to send to {connection_id}, treating as disconnected: {str(e)}")
            self._connections.pop(connection_id, None)
            raise RelayError(ErrorKind.DELIVERY_FAILURE, f"Failed to send to connection {connection_id}") from e

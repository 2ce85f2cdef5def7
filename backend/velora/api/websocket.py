"""
WebSocket endpoint for the chat relay.
"""
from fastapi import APIRouter, WebSocket
import logging
import uuid

logger = logging.getLogger(__name__)

router = APIRouter(tags=["relay"])


@router.websocket("/ws/chat")
async def chat_relay(websocket: WebSocket):
    """
    Relay connection: every text or binary frame received starts one chat exchange;
    token/done/error frames for it are pushed back on the same socket.
    """
    registry = websocket.app.state.registry
    dispatcher = websocket.app.state.dispatcher
    connection_id = str(uuid.uuid4())

    await websocket.accept()
    try:
        registry.on_connect(connection_id, websocket)
    except Exception as e:
        logger.error(f"❌ WebSocket connection failed: {str(e)}", exc_info=True)
        await websocket.close(code=1011, reason="Connection failed")
        return

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info(f"Client closed connection {connection_id} (code={message.get('code')})")
                break

            # Frames may arrive as text or as UTF-8 JSON in a binary message
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            dispatcher.dispatch(connection_id, raw)
    finally:
        registry.on_disconnect(connection_id)
        dispatcher.connection_closed(connection_id)

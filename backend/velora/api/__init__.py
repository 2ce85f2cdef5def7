"""
API routes package.
"""
from .characters import router as characters_router
from .chat import router as chat_router
from .websocket import router as websocket_router

__all__ = ["characters_router", "chat_router", "websocket_router"]

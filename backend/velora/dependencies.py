"""
Dependency providers for services built in the application lifespan.
"""
from fastapi import Request

from .services.conversation_store import ConversationStore


def get_store(request: Request) -> ConversationStore:
    """Conversation store stored on app.state at startup."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise RuntimeError("ConversationStore not found in app.state - ensure it is created in the lifespan")
    return store

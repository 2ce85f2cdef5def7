"""
FastAPI application entry point for the Velora chat backend.
"""
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import Base, SessionLocal, engine
from .api import characters_router, chat_router, websocket_router
from .services.completion_provider import CompletionProvider
from .services.connection_registry import ConnectionRegistry
from .services.conversation_store import ConversationStore
from .services.relay_dispatcher import RelayDispatcher
from .services.relay_engine import RelayEngine
from .utils.background_task_manager import BackgroundTaskManager

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Disable verbose SQLAlchemy logging
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
logging.getLogger('sqlalchemy.pool').setLevel(logging.WARNING)
logging.getLogger('httpx').setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_app(
    store: Optional[ConversationStore] = None,
    provider: Optional[CompletionProvider] = None
) -> FastAPI:
    """
    Build the application. Services are created in the lifespan and kept on
    app.state; pass store/provider to replace the configured ones.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        conversation_store = store
        if conversation_store is None:
            # Create database tables
            Base.metadata.create_all(bind=engine)
            conversation_store = ConversationStore(SessionLocal, retention_days=settings.MESSAGE_RETENTION_DAYS)
            await conversation_store.purge_expired_messages()

        completion_provider = provider or CompletionProvider.from_settings(settings)
        registry = ConnectionRegistry()
        task_manager = BackgroundTaskManager()
        relay_engine = RelayEngine(
            conversation_store,
            completion_provider,
            registry,
            history_limit=settings.CHAT_HISTORY_LIMIT
        )

        app.state.store = conversation_store
        app.state.registry = registry
        app.state.task_manager = task_manager
        dispatcher = RelayDispatcher(
            relay_engine,
            task_manager,
            serialize_per_conversation=settings.CHAT_SERIALIZE_PER_CONVERSATION,
            cancel_on_disconnect=settings.CHAT_CANCEL_ON_DISCONNECT,
        )
        app.state.dispatcher = dispatcher
        logger.info(f"🚀 {settings.APP_NAME} started ({settings.APP_ENV})")

        yield

        logger.info("🛑 Application shutdown initiated")
        await dispatcher.drain(timeout=settings.SHUTDOWN_TIMEOUT)
        task_manager.initiate_shutdown()
        await task_manager.wait_for_shutdown(timeout=settings.SHUTDOWN_TIMEOUT)
        logger.info("✅ Application shutdown complete")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Backend API and chat relay for Velora AI companions",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            settings.FRONTEND_URL,
            "http://localhost:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(characters_router)
    app.include_router(chat_router)
    app.include_router(websocket_router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": "Velora API",
            "version": "1.0.0",
            "status": "running"
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "environment": settings.APP_ENV,
            "connections": len(app.state.registry),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "velora.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.DEBUG
    )

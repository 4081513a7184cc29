"""Marketchat Backend Application.

This is the main entry point for the marketplace messaging service: the
real-time conversation core behind the marketplace's inbox.

Modules:
    - chat: WebSocket messaging (presence, fan-out, typing, read receipts)
    - conversations: DuckDB conversation/message store and REST endpoints
    - auth: bearer token verification
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from marketchat.chat.router import router as chat_router
from marketchat.config import get_config
from marketchat.conversations.router import router as conversations_router
from marketchat.conversations.service import ConversationStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "httpx",
    "httpcore",
    "websockets",
    "uvicorn.access",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in marketchat.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    if config.secrets.jwt.secret_key == "change-me-in-production":
        logger.warning("JWT secret is the built-in default; set it in marketchat.secrets.yaml")

    ConversationStore.get_instance(config.database.path)
    logger.info(
        f"Messaging service ready on http://{config.server.host}:{config.server.port} "
        f"(database={config.database.path})"
    )

    yield  # Application runs here

    # Shutdown
    ConversationStore.reset_instance()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Marketchat API",
    description="Real-time messaging core for the marketplace",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)

# Register all routers
app.include_router(chat_router)
app.include_router(conversations_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    config = get_config()
    uvicorn.run(
        "marketchat.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level,
    )

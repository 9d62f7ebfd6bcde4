"""HappyTalk Backend Application.

Entry point for the HappyTalk chat backend.

Modules:
    - messages: message history, send, and privileged edit/delete
    - broadcast: broker negotiate, room group join/leave, and fan-out
    - rooms: canonical room identifiers
    - sync: client-side synchronization engine (not mounted here)
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from happytalk.broadcast import BroadcastConfigError, BroadcastGateway, get_gateway, set_gateway
from happytalk.broadcast.router import router as broadcast_router
from happytalk.config import get_config
from happytalk.messages.router import router as messages_router
from happytalk.messages.store import DuckDBMessageStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# httpx/httpcore log every request to the broker REST API; websockets logs
# every frame at DEBUG.
for _noisy in (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "websockets",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    store = DuckDBMessageStore.get_instance(
        config.store.db_path, config.store.default_ttl_seconds
    )
    purged = store.purge_expired()
    if purged:
        logger.info("Purged %d expired messages", purged)

    connection_string = config.secrets.broadcast.connection_string
    if connection_string:
        try:
            set_gateway(BroadcastGateway(
                connection_string,
                hub_name=config.broadcast.hub_name,
                token_ttl_minutes=config.broadcast.token_ttl_minutes,
                timeout=config.broadcast.request_timeout_seconds,
            ))
            logger.info("[Broadcast] Gateway ready (hub=%s)", config.broadcast.hub_name)
        except BroadcastConfigError as exc:
            logger.warning("[Broadcast] Invalid connection string, push disabled: %s", exc)
    else:
        logger.info("[Broadcast] No connection string configured; clients must poll")

    logger.info(
        f"Server running on http://{config.server.host}:{config.server.port}"
    )

    yield  # Application runs here

    # Shutdown
    gateway = get_gateway()
    if gateway is not None:
        await gateway.aclose()
        set_gateway(None)
    DuckDBMessageStore.reset_instance()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="HappyTalk API",
    description="Backend service for HappyTalk - real-time room chat",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(messages_router)
app.include_router(broadcast_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object, plus whether push delivery is available.
    """
    return {"status": "ok", "push": get_gateway() is not None}

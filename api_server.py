"""
FastAPI Backend Server

Exposes the bidirectional voice sessions over a WebSocket for the browser UI,
plus a health endpoint.
"""

import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from shuttle_voice.config import AgentType, settings
from shuttle_voice.logger import get_logger, init_logging
from shuttle_voice.messages import msg
from shuttle_voice.realtime.client import BidirectionalStreamClient
from shuttle_voice.realtime.connection import VoiceConnectionHandler

logger = get_logger(__name__)


# Global stream client
stream_client: Optional[BidirectionalStreamClient] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup resources."""
    global stream_client

    init_logging()
    settings.validate_all()

    stream_client = BidirectionalStreamClient()
    stream_client.start_cleanup_task()
    logger.info(f"Voice server ready (model: {settings.aws.model_id}, region: {settings.aws.region})")

    yield

    logger.info("Shutting down, closing all sessions")
    await stream_client.shutdown()
    stream_client = None


# Create FastAPI app
app = FastAPI(
    title="Shuttle Voice Assistant API",
    description="Bidirectional speech-to-speech sessions for shuttle booking",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware - uses configurable origins from settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.server.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.websocket("/ws/voice")
async def voice_socket(websocket: WebSocket, agent_type: str = AgentType.RETRIEVAL.value):
    """Run one voice session for the lifetime of the socket."""
    await websocket.accept()

    if stream_client is None:
        await websocket.send_json({"type": "error", "data": {"message": msg("error.session_init_failed")}})
        await websocket.close(code=1011)
        return

    handler = VoiceConnectionHandler(
        websocket,
        stream_client,
        agent_type=AgentType.parse(agent_type, default=AgentType.RETRIEVAL),
    )
    try:
        await handler.start()
    except Exception as e:
        logger.error(f"Failed to start voice session: {e}")
        await handler.send_error(msg("error.session_init_failed"), str(e))
        await websocket.close(code=1011)
        return

    await handler.run()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api_server:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.is_development,
    )

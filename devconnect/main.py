from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from devconnect.core.config import settings
from devconnect.core.logger import configure_logging, get_logger

# Configure logging
configure_logging()
logger = get_logger(__name__)

from devconnect.core.db import init_models
from devconnect.api.chat_router import ChatRouter
from devconnect.services.chat_service import ChatService
from devconnect.services.directory import GroupDirectory, UserDirectory
from devconnect.services.presence import PresenceRegistry
from devconnect.websocket.dispatcher import MessageDispatcher
from devconnect.websocket.lifecycle import ConnectionLifecycle
from devconnect.websocket.rooms import RoomRouter


users = UserDirectory()
groups = GroupDirectory()
chat_service = ChatService()

presence = PresenceRegistry(users)
rooms = RoomRouter(groups)
dispatcher = MessageDispatcher(chat_service, rooms, groups, users)
lifecycle = ConnectionLifecycle(presence, rooms, dispatcher)

chat_router = ChatRouter(chat_service, users, groups)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Creating database tables (startup)")
    await init_models()
    yield
    logger.info("Realtime server shutting down")
    await presence.flush(timeout=5)


app = FastAPI(
    title=settings.PROJECT_NAME,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat_router.router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.websocket("/ws/chat")
async def websocket_chat(websocket: WebSocket):
    """
    Realtime channel for direct and group chat.

    Frames are JSON objects `{"event": ..., "data": {...}}`; the user
    identity arrives with the first joinChat / joinGroup event.
    """
    await lifecycle.run(websocket)

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from petchat.config import get_settings
from petchat.database.connection import close_mongo_connection, connect_to_mongo, get_database
from petchat.exceptions import ChatError
from petchat.routers.chat import router as chat_router
from petchat.routers.conversations import router as conversations_router
from petchat.routers.presence import router as presence_router
from petchat.services.gateway import build_gateway, ensure_indexes
from petchat.utils.logging_utils import RequestLoggingMiddleware, setup_logging


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    await connect_to_mongo()
    try:
        db = get_database()
        await ensure_indexes(db)
        app.state.gateway = build_gateway(db, settings)
        logger.info("Chat gateway ready")
        yield
    finally:
        await close_mongo_connection()


app = FastAPI(title="PetChat", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.detail})


app.include_router(chat_router)
app.include_router(conversations_router)
app.include_router(presence_router)


@app.get("/")
async def root():

    return {"status": "ok", "service": "petchat"}

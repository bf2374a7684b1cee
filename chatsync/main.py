from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError

from chatsync.config import get_settings
from chatsync.database.connection import close_mongo_connection, connect_to_mongo, get_database, mongo_db_dependency
from chatsync.errors import ApiError
from chatsync.logging import configure_logging, get_logger
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.responses import api_error_handler, unhandled_exception_handler, validation_error_handler
from chatsync.routers.chat import router as chat_router
from chatsync.routers.conversations import router as conversations_router
from chatsync.utils.realtime_bus import close_bus


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    await connect_to_mongo()
    db = get_database()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    try:
        yield
    finally:
        await close_bus()
        await close_mongo_connection()


def create_app() -> FastAPI:
    configure_logging(json_format=get_settings().log_json)

    app = FastAPI(title="chatsync", lifespan=lifespan)

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(conversations_router)
    app.include_router(chat_router)

    @app.get("/health")
    async def health(db = Depends(mongo_db_dependency)):
        await db.command("ping")
        return {"status": "ok"}

    return app


app = create_app()

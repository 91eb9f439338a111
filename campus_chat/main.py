from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from campus_chat.config import get_settings
from campus_chat.database.connection import close_mongo_connection, connect_to_mongo, get_database
from campus_chat.logging_config import configure_logging
from campus_chat.repositories.conversation_repository import ConversationRepository
from campus_chat.repositories.message_repository import MessageRepository
from campus_chat.routers.chat import router as chat_router
from campus_chat.routers.conversations import router as conversations_router
from campus_chat.routers.presence import router as presence_router
from campus_chat.utils.realtime_bus import close_bus, get_bus


logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):

    settings = get_settings()
    configure_logging(settings.log_level)
    await connect_to_mongo()
    db = get_database()
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    await get_bus()
    logger.info("application_startup_complete")
    try:
        yield
    finally:
        await close_bus()
        await close_mongo_connection()
        logger.info("application_shutdown_complete")


def create_app(lifespan_handler=lifespan) -> FastAPI:
    app = FastAPI(title="Campus Lost & Found Chat", lifespan=lifespan_handler)

    app.include_router(conversations_router)
    app.include_router(chat_router)
    app.include_router(presence_router)

    @app.get("/")
    async def root():

        db = get_database()
        collections = await db.list_collection_names()
        return {"message": "Connected to MongoDB!", "collections": collections}

    return app


app = create_app()

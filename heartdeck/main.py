from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager

from heartdeck.db import engine
from heartdeck.load_secrets import abandoned_session_hours
from heartdeck.models.schemas import Base
from heartdeck.routers import card_game
from heartdeck.routers.card_game import turn_coordinator

scheduler = AsyncIOScheduler()
logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app):
    """Create the tables and start the housekeeping job.
    This function is called to start the server.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Sessions nobody touched for a day are closed as abandoned
    scheduler.add_job(
        turn_coordinator.complete_abandoned_sessions,
        "interval",
        hours=1,
        kwargs={"max_idle_hours": abandoned_session_hours},
    )
    scheduler.start()
    try:
        yield
    finally:
        scheduler.shutdown()
        await card_game.redis.aclose()
        await engine.dispose()
        logging.info("Stop Server")


app = FastAPI(lifespan=lifespan)
app.include_router(card_game.card_game_router)

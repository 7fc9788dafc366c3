# healpoints/services/sweeper.py
import asyncio
import logging

from fastapi import FastAPI

from healpoints.db.crud.appointment import complete_elapsed_appointments
from healpoints.db.session import background_db_session

logger = logging.getLogger(__name__)


async def sweep_once(app: FastAPI) -> int:
    async with background_db_session(app.state.session_factory) as db:
        return await complete_elapsed_appointments(db, app.state.dispatcher)


async def run_status_sweeper(app: FastAPI, interval_seconds: int) -> None:
    """Complete Confirmed appointments whose slot has ended, every `interval_seconds`."""
    logger.info(f"Status sweeper started (every {interval_seconds}s)")
    while True:
        try:
            completed = await sweep_once(app)
            if completed:
                logger.info(f"Status sweeper completed {completed} appointments")
        except asyncio.CancelledError:
            raise
        except Exception:
            # keep the loop alive; the next round retries the same rows
            logger.exception("Status sweep failed")
        await asyncio.sleep(interval_seconds)

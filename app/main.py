from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.logging import setup_logging
from routers import automation, health, metrics, reservations, vehicles
from routers.errors import register_exception_handlers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Fleet reservations API starting")
    yield
    logger.info("Fleet reservations API stopped")


def create_app() -> FastAPI:
    app = FastAPI(title="Fleet Reservations API", lifespan=lifespan)

    register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],   # Allows POST, GET, OPTIONS, etc
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(metrics.router)
    app.include_router(vehicles.router)
    app.include_router(reservations.router)
    app.include_router(automation.router)
    return app


app = create_app()

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

# Internal imports
from config import config # initialize logging
from data.database import create_tables
from api.depends import DB_DEPENDENCY
from api.ab_test_routes import ab_test_router
from api.session_routes import session_router

import contextlib
import logging
import middleware

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles startup and shutdown events for the application.
    Code before 'yield' runs on startup.
    Code after 'yield' runs on shutdown.
    """
    try:
        logger.info("Application starting up: initializing database schema...")
        create_tables()
        logger.info("Database tables initialized successfully.")
    except Exception as e:
        logger.error("Failed to initialize database tables: %s", e)

    yield

    logger.info("Application shutting down: closing resources...")


app = FastAPI(
    lifespan=lifespan,
    title="A/B Testing API",
    version="1.0.0",
    description="A/B tests for marketing pages: lifecycle, sticky session assignment, conversions, and results."
)

app.add_middleware(middleware.RequestIDMiddleware)

app.include_router(ab_test_router)
app.include_router(session_router)


@app.get("/health")
def health_check(db: Session = DB_DEPENDENCY):
    """Unauthenticated liveness check that also confirms the database answers."""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable.")
        return JSONResponse(content={"status": "unhealthy", "database": "unreachable"}, status_code=503)
    return JSONResponse(content={"status": "healthy", "database": "ok"}, status_code=200)

"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from app.config import settings
from app.database import engine, get_db
from app.models import Base
from app.services.file_storage import file_storage

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, start the daily Drive sync scheduler."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    scheduler_task = None
    if not settings.SYNC_SCHEDULER_ENABLED:
        logger.info("Drive sync scheduler disabled")
    elif not settings.drive_configured:
        logger.warning("Google Drive credentials not set, Drive sync scheduler not started")
    else:
        from app.services.sync_scheduler import sync_scheduler_loop
        scheduler_task = asyncio.create_task(sync_scheduler_loop())

    yield

    # Cleanup
    if scheduler_task is not None:
        scheduler_task.cancel()
    await engine.dispose()


app = FastAPI(
    title="Drive Sync API",
    version="1.0.0",
    description="Local file store kept in sync with Google Drive.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health_check():
    """Verify API and database connectivity."""
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
    except Exception as e:
        return {"status": "error", "database": str(e)}


# Public URLs of stored blobs
app.mount("/uploads", StaticFiles(directory=file_storage.base_path), name="uploads")

# Register routers
from app.routes.files import router as files_router
app.include_router(files_router)

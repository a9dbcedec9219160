import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.rules import router as rules_router
from api.alerts import router as alerts_router
from core import get_settings, setup_logging
from db import SQLiteStorage, get_storage
from services import EvaluationScheduler, get_scheduler, start_if_configured

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(settings.log_level)
    scheduler = get_scheduler()
    start_if_configured(scheduler, settings)
    yield
    if scheduler.is_running:
        scheduler.stop(timeout=settings.tick_interval_seconds)

app = FastAPI(
    title="Portfolio Rule Monitor API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rules_router, prefix="/api")
app.include_router(alerts_router, prefix="/api")

@app.get("/")
async def root():
    return {
        "name": "Portfolio Rule Monitor API",
        "version": "1.0.0",
        "docs": "/docs",
    }

@app.get("/health")
async def health(
    scheduler: EvaluationScheduler = Depends(get_scheduler),
    storage: SQLiteStorage = Depends(get_storage),
):
    return {
        "status": "healthy",
        "scheduler": scheduler.stats.to_dict(),
        "storage": storage.get_stats(),
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from markpress.api.posts import router as posts_router
from markpress.api.routes import router
from markpress.cleaner import start_cleaner
from markpress.config import CLEANER_INTERVAL_MINUTES, CORS_ORIGINS, ENABLE_CLEANER, TEMP_MAX_AGE_HOURS
from markpress.core.exceptions import register_exception_handlers
from markpress.core.metrics import metrics
from markpress.db import engine, init_db
from markpress.storage import get_store

app = FastAPI(title="markpress", version="1.0.0")

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("markpress")

origins = [origin.strip() for origin in CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

init_db()

app.include_router(router)
app.include_router(posts_router)
register_exception_handlers(app)

if ENABLE_CLEANER:
    start_cleaner(get_store(), engine, metrics, TEMP_MAX_AGE_HOURS, CLEANER_INTERVAL_MINUTES)
    logger.info("Temp sweep scheduled every %s minutes (max age %sh)", CLEANER_INTERVAL_MINUTES, TEMP_MAX_AGE_HOURS)

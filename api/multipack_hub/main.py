# multipack_hub/main.py
# Multipack Hub - derived multipack inventory for Shopify
from __future__ import annotations
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from multipack_hub.settings import settings
from multipack_hub.database import init_db, close_db, check_db_health

from multipack_hub.routers.webhooks import router as webhooks_router
from multipack_hub.routers.rules import router as rules_router
from multipack_hub.routers.sync import router as sync_router

# ---------------------------------------------------------
# Logging setup
# ---------------------------------------------------------
from multipack_hub.logging_setup import setup_logging
setup_logging(settings)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------
# Lifespan: Database init/cleanup
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    await init_db()
    logger.info("Database engine initialised")
    yield
    # Shutdown
    await close_db()
    logger.info("Database engine disposed")

# ---------------------------------------------------------
# FastAPI app + CORS
# ---------------------------------------------------------
app = FastAPI(
    title="Multipack Hub API",
    version="1.0.0",
    description="Multipack / variety pack inventory derived from source variants",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "https://admin.shopify.com",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhooks_router)
app.include_router(rules_router)
app.include_router(sync_router)


@app.get("/health")
async def health():
    db = await check_db_health()
    return {"status": "ok" if db.get("status") == "healthy" else "degraded", "db": db}

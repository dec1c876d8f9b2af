"""QualiPilot Regulatory Assistant - FastAPI Application"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import get_settings
from routers import chat, regulations, threads
from services.database import close_database, init_database, is_database_ready
from services.pinecone_client import init_pinecone
from services.regulatory_sources import close_regulatory_service

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup, release them on shutdown."""
    await init_database()
    await init_pinecone()
    logger.info("QualiPilot backend started")
    yield
    await close_regulatory_service()
    await close_database()


app = FastAPI(
    title="QualiPilot Regulatory Assistant",
    description="RAG-based assistant for FDA medical device regulatory questions",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(chat.router, prefix="/api", tags=["Chat"])
app.include_router(threads.router, prefix="/api/threads", tags=["Threads"])
app.include_router(regulations.router, prefix="/api/regulations", tags=["Regulations"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "qualipilot-regulatory-assistant",
        "database": "connected" if await is_database_ready() else "unavailable",
    }


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "QualiPilot Regulatory Assistant",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }

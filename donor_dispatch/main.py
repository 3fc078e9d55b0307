import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from donor_dispatch.config import get_settings
from donor_dispatch.database import init_db
from donor_dispatch.routers import blood_requests_router, notifications_router

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Create database tables
    await init_db()
    yield


app = FastAPI(
    title=settings.app_name,
    description="Blood request matching and donor push dispatch",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware - production-aware
CORS_ORIGINS = ["*"] if not settings.is_production() else []

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(blood_requests_router)
app.include_router(notifications_router)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "description": "Blood request matching and donor push dispatch",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}

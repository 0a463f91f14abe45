"""
Main FastAPI application for creditgate.
Serves health, verification callbacks, admin API and metrics.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from creditgate.core.config import settings
from creditgate.core.logging import configure_logging
from creditgate.api.routes import admin, health, verification
from creditgate.utils.metrics import router as metrics_router


configure_logging()

app = FastAPI(
    title="creditgate API",
    description="Verification callbacks and admin API for the creditgate bot",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(health.router, tags=["health"])
app.include_router(verification.router)
app.include_router(admin.router)
app.include_router(metrics_router)

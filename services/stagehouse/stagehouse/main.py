"""
    Stagehouse Service API

    This module builds the FastAPI application for a home-staging business:
    a catalog of staging items, the projects they are loaned to, and the
    allocation ledger that keeps every item's in-use count within what is owned.

    The service exposes:
    - /inventory: catalog reads, admin catalog edits, ordering and images
    - /projects: projects, project images, priority order and allocations
    - /users: the caller's profile and admin role management
    - Health endpoint: Provides service health status for monitoring and orchestration
"""
import logging
import os
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config, models
from .database import engine
from .exceptions import StagehouseError, Unauthenticated
from .routers import inventory, projects, users

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Configure the root logger
logging.basicConfig(level=config.LOG_LEVEL, format=LOG_FORMAT)

# Optional: also write to a timestamped file
if config.LOG_DIR:
    os.makedirs(config.LOG_DIR, exist_ok=True)
    current_time_str = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    file_handler = logging.FileHandler(os.path.join(config.LOG_DIR, f"stagehouse_{current_time_str}.log"))
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)

logger = logging.getLogger(__name__)

# Create database tables
models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="stagehouse-service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StagehouseError)
async def stagehouse_error_handler(request: Request, exc: StagehouseError):
    """Render domain errors as JSON with their HTTP status."""
    logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the stagehouse service.

    Returns:
        dict: A dictionary containing the health status of the service.
            - status (str): "healthy" if the service is operational.

    Example:
        GET /healthz
        Response: {"status": "healthy"}
    """
    return {"status": "healthy"}


app.include_router(inventory.router)
app.include_router(projects.router)
app.include_router(users.router)

logger.info("Stagehouse service starting up...")

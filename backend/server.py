from fastapi import FastAPI, APIRouter
from fastapi.exceptions import RequestValidationError
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
import os
import logging
from pathlib import Path
import sys

# Add backend to path for imports
sys.path.insert(0, str(Path(__file__).parent))

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from services.logging_service import setup_logging, RequestLoggingMiddleware  # noqa: E402
from services.rate_limit import limiter, rate_limit_exceeded_handler  # noqa: E402
from routes.integrations.shared import validation_error_handler  # noqa: E402
from db import init_db  # noqa: E402

setup_logging(
    level=os.environ.get('LOG_LEVEL', 'INFO'),
    json_format=os.environ.get('LOG_FORMAT', 'json') == 'json'
)
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(
    title="Backlog Sync API",
    description="Generated epic → task → subtask backlogs kept in sync with Jira Cloud",
    version="1.0.0"
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")

# Import and include route modules
from routes.auth import router as auth_router  # noqa: E402
from routes.projects import router as projects_router  # noqa: E402
from routes.integrations import router as integrations_router  # noqa: E402

api_router.include_router(auth_router)
api_router.include_router(projects_router)
api_router.include_router(integrations_router)


# Health check endpoint
@api_router.get("/")
async def root():
    return {"message": "Backlog Sync API", "status": "healthy"}


@api_router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "backlog-sync"}

# Include the router in the main app
app.include_router(api_router)

app.add_middleware(RequestLoggingMiddleware)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Create tables if they do not exist yet"""
    logger.info("Starting Backlog Sync API...")
    await init_db()
    logger.info("Backlog Sync API started successfully")


@app.on_event("shutdown")
async def shutdown_event():
    from db import engine
    if engine:
        await engine.dispose()
    logger.info("Backlog Sync API shutdown complete")

from routes.accounts import accounts_router
from routes.payments import payments_router
from routes.library import library_router
from routes.deps import install_error_handlers
from utils.environment import ENVIRONMENT, allow_mock_data
from entitlements import __version__
from fastapi import FastAPI, APIRouter
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import os
import logging
from pathlib import Path
from datetime import datetime, timezone

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Create the main app
app = FastAPI(title="EchoTune Licensing API", version=__version__)

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")


@api_router.get("/health")
async def health():
    from database import check_db_connection
    db_ok, db_error = await check_db_connection()
    body = {
        "status": "healthy" if db_ok else "degraded",
        "database": "ok" if db_ok else db_error,
        "environment": ENVIRONMENT,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    return JSONResponse(status_code=200 if db_ok else 503, content=body)


api_router.include_router(accounts_router, prefix="/accounts")
api_router.include_router(payments_router, prefix="/payments")
api_router.include_router(library_router)

app.include_router(api_router)
install_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=[origin.strip() for origin in os.environ.get(
        'CORS_ORIGINS', 'http://localhost:3000').split(',')],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@app.on_event("startup")
async def startup():
    # Fail fast if the database is unavailable
    from database import check_db_connection, db
    db_ok, db_error = await check_db_connection()
    if not db_ok:
        logger.critical(f"Database connection failed on startup: {db_error}")
        raise RuntimeError(
            f"Cannot start application - database connection failed: {db_error}")

    # Unique indexes back the purchase and account invariants
    from entitlements.db_init import ensure_schema
    for line in await ensure_schema(db):
        logger.debug(line)

    if allow_mock_data():
        logger.warning(f"ENVIRONMENT={ENVIRONMENT}: mock payment confirmation is enabled")
    logger.info(f"EchoTune Licensing API {__version__} started")


@app.on_event("shutdown")
async def shutdown_db_client():
    from database import client
    client.close()

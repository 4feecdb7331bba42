from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from pymongo.errors import PyMongoError
from database import Database
from toolbox.errors import CreditError
from toolbox.routes import credits_router, admin_router
from toolbox.services.credit_service import CreditService
from toolbox.services.credit_store import MongoCreditStore

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting DaCapo Toolbox Credits API")
    database = Database()
    await database.connect()

    app.state.database = database
    app.state.credit_service = CreditService(MongoCreditStore(database.client, database.db))
    logger.info("Credit service ready")

    yield

    # Shutdown
    logger.info("Shutting down DaCapo Toolbox Credits API")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="DaCapo Toolbox Credits API",
    description="Per-app credit balances and ledger for the DaCapo tool directory",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(credits_router)  # Caller's own credits
app.include_router(admin_router)  # Supervisor/admin credit management

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "DaCapo Toolbox Credits",
        "version": "1.0.0",
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }

# Typed credit failures: kind + message, never alongside a success body
@app.exception_handler(CreditError)
async def credit_error_handler(request: Request, exc: CreditError):
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )

# Store failures. Transient transaction errors are safe for the caller to retry.
@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    if exc.has_error_label("TransientTransactionError"):
        logger.warning(f"Transient store failure on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content={"detail": "Temporarily unavailable, retry the request", "kind": "unavailable"}
        )
    logger.error(f"Store failure on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )

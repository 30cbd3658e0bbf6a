"""
MFS Quote Engine - FastAPI Application

Main entry point for the MFS quote lifecycle backend.

Architecture:
- Quote request → QuoteStore → BTL or Bridging table pair
- Result rows → ResultSetWriter → quote_results / bridge_quote_results
- DIP issued → DipReconciler → single DIP-stage result row
- Rate tables → RateHealthAnalyzer / RateService (audited patch)
"""
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import CORS_ORIGINS, LOG_LEVEL, is_production
from .database import init_db
from .errors import QuoteEngineError
from .routers import admin_router, quotes_router, rates_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="MFS Quote Engine",
    description="""
    MFS Quote Engine - Mortgage Quote Lifecycle Service

    Persists BTL and Bridging quotes with their calculated result sets,
    tracks quote and DIP issuance, and exposes rate maintenance tools.

    ## Lifecycle
    1. **Create**: quote + reference number + QUOTE-stage result rows
    2. **Update**: status changes, monotonic issue timestamps, result replacement
    3. **Issue DIP**: the best result row is copied into the DIP stage
    4. **Delete**: quote, result rows and UW checklist state

    ## Key Principles
    - A quote lives in exactly one product family's table pair
    - Lookups by id fall back to the other family
    - Side effects after a committed write never fail the request
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(quotes_router)
app.include_router(rates_router)
app.include_router(admin_router)


@app.exception_handler(QuoteEngineError)
async def quote_engine_error_handler(request: Request, exc: QuoteEngineError):
    """Render service errors as {"success": false, "error": {...}}."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict()},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    """Last resort: 500 with the trace only outside production."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    error = {"code": "INTERNAL_ERROR", "message": "Internal server error"}
    if not is_production():
        error["details"] = {"trace": traceback.format_exception(type(exc), exc, exc.__traceback__)}
    return JSONResponse(status_code=500, content={"success": False, "error": error})


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "MFS Quote Engine",
        "version": "1.0.0",
        "description": "Mortgage Quote Lifecycle Service",
        "docs": "/docs",
        "product_families": {
            "BTL": "quotes / quote_results",
            "BRIDGING": "bridge_quotes / bridge_quote_results",
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m quote_engine.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)

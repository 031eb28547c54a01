from fastapi import FastAPI, Request, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from contextlib import asynccontextmanager
import os
import logging
import traceback

from app.config import Capabilities, get_env_presence, get_arachne_api_url, get_ai_backend_url, is_dev
from app.jobs import router as jobs_router
from app.summarize import router as summarize_router
from app.rate_limit import limiter
from core.net import HTTPClient
from monitor import __version__
from slowapi.errors import RateLimitExceeded
from slowapi import _rate_limit_exceeded_handler

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application lifecycle events."""
    arachne_env = os.getenv("ARACHNE_ENV", "production").lower()
    logger.info(f"[arachne] env: ARACHNE_ENV={arachne_env}")
    logger.info(f"[arachne] scrape engine: {get_arachne_api_url()}")
    logger.info(f"[arachne] AI backend: {get_ai_backend_url()}")

    yield

    logger.info("[arachne] Relay shutting down")


app = FastAPI(title="Arachne Relay API", version=__version__, lifespan=lifespan)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies get the same {error} shape as every other relay failure."""
    details = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', 'invalid')}"
        for error in exc.errors()
    ]
    logger.warning(f"[relay] Rejected {request.method} {request.url.path}: {details}")
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "details": details},
    )


def _unhandled_error_body(request: Request, error: Exception) -> dict:
    # Relay callers only ever see {error}; the traceback is a dev convenience
    if not is_dev():
        return {"error": "Relay error. Please try again later."}
    return {
        "error": str(error) or type(error).__name__,
        "path": request.url.path,
        "traceback": traceback.format_exc(),
    }


@app.middleware("http")
async def error_masking_middleware(request: Request, call_next):
    """Turn unexpected exceptions into a 500 JSON body instead of a bare status."""
    try:
        return await call_next(request)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"[relay] Unhandled error on {request.method} {request.url.path}: {e}", exc_info=is_dev())
        return JSONResponse(status_code=500, content=_unhandled_error_body(request, e))


app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.getenv("ARACHNE_CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(jobs_router)
app.include_router(summarize_router)


def require_dev_mode():
    """Dependency to gate dev-only routes."""
    if not is_dev():
        raise HTTPException(status_code=403, detail="Admin routes only available in dev mode")


@app.get("/api/healthz")
async def healthz():
    return Capabilities.get_status()


@app.get("/api/arachne-health")
async def arachne_health():
    ok, status_code = await HTTPClient(get_arachne_api_url()).check_health()
    return JSONResponse(status_code=200 if ok else (status_code or 503), content={"ok": ok})


@app.get("/api/ai-health")
async def ai_health():
    ok, status_code = await HTTPClient(get_ai_backend_url()).check_health()
    return JSONResponse(status_code=200 if ok else (status_code or 503), content={"ok": ok})


@app.get("/admin/config/env")
async def config_env(_: None = Depends(require_dev_mode)):
    return get_env_presence()

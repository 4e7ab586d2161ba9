import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import funnels, tracking
from app.core.config import settings
from app.core.exceptions import FunnelRuntimeError
from app.core.logging import setup_logging

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Funnel Runtime API", version="1.0.0")

ALLOWED_ORIGINS = settings.get_allowed_origins()

# Note: CORS headers are added even on errors via exception handlers
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)


def _with_cors(request: Request, response: JSONResponse) -> JSONResponse:
    origin = request.headers.get("origin")
    if origin and origin in ALLOWED_ORIGINS:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = "*"
        response.headers["Access-Control-Allow-Headers"] = "*"
    return response


@app.exception_handler(FunnelRuntimeError)
async def funnel_runtime_exception_handler(request: Request, exc: FunnelRuntimeError):
    """Map runtime errors (not found, invalid state, ...) to their HTTP status"""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.error_code, exc.message)
    return _with_cors(request, JSONResponse(status_code=exc.status_code, content=exc.to_dict()))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Ensure CORS headers are included even on unhandled exceptions"""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    response = JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error: {str(exc)}"}
    )
    return _with_cors(request, response)


# Admin routes are tenant-scoped by X-Org-Id; tracking routes are public
app.include_router(funnels.router, prefix="/funnels", tags=["funnels"])
app.include_router(tracking.router, prefix="/track", tags=["tracking"])


@app.get("/")
async def root():
    return {"message": "Funnel Runtime API", "version": "1.0.0"}


@app.get("/health")
async def health():
    return {"status": "healthy"}

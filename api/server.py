"""FastAPI server for the Sparkwatch management API."""

import asyncio
import logging
import secrets
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from api.deps import close_clients, get_flow, init_clients
from api.routes import flow_router, holders_router, stats_router, tokens_router
from config.settings import settings

API_PREFIX = "/api"
MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")


class APITokenMiddleware(BaseHTTPMiddleware):
    """Require `X-API-Token` on mutating /api requests when a token is configured."""

    async def dispatch(self, request: Request, call_next):
        expected = settings.api_token
        if not expected:
            return await call_next(request)

        if request.method in MUTATING_METHODS and request.url.path.startswith(API_PREFIX):
            supplied = request.headers.get("X-API-Token") or ""
            if not secrets.compare_digest(supplied, expected):
                logger.warning(f"Rejected {request.method} {request.url.path}: bad API token")
                return JSONResponse(
                    status_code=401,
                    content={"detail": "Invalid or missing API token"},
                    headers={"WWW-Authenticate": "API-Key"},
                )

        return await call_next(request)


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Bind shared components, or build standalone ones, for the app's lifetime."""
    logger.info("Starting Sparkwatch API...")
    await init_clients()
    logger.info("API server ready")
    yield

    logger.info("Shutting down API server...")
    await close_clients()


app = FastAPI(
    title="Sparkwatch API",
    description="Token lists, flow reports and holder sweeps for Sparkwatch",
    version="0.1.0",
    lifespan=lifespan,
)

# Token check runs inside CORS so preflight requests are answered first
app.add_middleware(APITokenMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.api_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router in (tokens_router, flow_router, holders_router, stats_router):
    app.include_router(router, prefix=API_PREFIX)


@app.get("/")
async def root():
    """Service info and the tickers reports are available for."""
    try:
        tickers = sorted(get_flow().tickers)
    except RuntimeError:
        tickers = []

    return {
        "name": "Sparkwatch API",
        "version": app.version,
        "tracked_tickers": tickers,
        "docs": "/docs",
    }


async def run_server(host: Optional[str] = None, port: Optional[int] = None, log_level: str = "info"):
    """Serve the API until cancelled."""
    bind_host = host or settings.api_host
    bind_port = port or settings.api_port

    logger.info(f"Starting API server on {bind_host}:{bind_port}")
    if settings.api_token:
        logger.info("API token required for mutating requests")
    else:
        logger.warning("API_TOKEN not set, mutating endpoints are open")

    config = uvicorn.Config(app, host=bind_host, port=bind_port, log_level=log_level)
    await uvicorn.Server(config).serve()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Sparkwatch management API")
    parser.add_argument("--host", default=None, help=f"Bind host (default: {settings.api_host})")
    parser.add_argument("--port", type=int, default=None, help=f"Bind port (default: {settings.api_port})")
    parser.add_argument("--log-level", default="info", help="uvicorn log level")

    args = parser.parse_args()

    asyncio.run(run_server(host=args.host, port=args.port, log_level=args.log_level))

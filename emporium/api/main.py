"""
emporium.api.main — FastAPI application entry point
====================================================

Run with::

    uvicorn emporium.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from emporium.api.deps import get_config, get_engine  # noqa: E402
from emporium.api.routes.admin import router as admin_router  # noqa: E402
from emporium.api.routes.rewards import router as rewards_router  # noqa: E402
from emporium.errors import RedemptionError, StoreUnavailable  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine."""
    cfg = get_config()
    engine = get_engine()
    logger.info(
        "Emporium API started for %s — engine ready (%s)",
        cfg.community_name, engine.url.database,
    )
    yield
    logger.info("Emporium API shutting down")


app = FastAPI(
    title="Emporium Rewards API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RedemptionError)
async def redemption_error_handler(request: Request, exc: RedemptionError):
    """Surface typed engine failures as ``{"error": KIND, "message": ...}``."""
    if isinstance(exc, StoreUnavailable):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Mount routers
app.include_router(rewards_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    uvicorn.run("emporium.api.main:app", host="0.0.0.0", port=get_config().dashboard_port)

"""
rogrouper.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn rogrouper.api.main:app --reload --port 8000

or ``python -m rogrouper.api``.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from rogrouper.api.auth import router as auth_router  # noqa: E402
from rogrouper.api.deps import get_config, get_engine  # noqa: E402
from rogrouper.api.errors import install_error_handlers  # noqa: E402
from rogrouper.api.rate_limit import configure_rate_limiter  # noqa: E402
from rogrouper.api.routes.admin import router as admin_router  # noqa: E402
from rogrouper.api.routes.awards import router as awards_router  # noqa: E402
from rogrouper.api.routes.bot import router as bot_router  # noqa: E402
from rogrouper.api.routes.cron import router as cron_router  # noqa: E402
from rogrouper.api.routes.groups import router as groups_router  # noqa: E402
from rogrouper.api.routes.organizations import router as organizations_router  # noqa: E402
from rogrouper.api.routes.roblox import router as roblox_router  # noqa: E402
from rogrouper.database.engine import init_db  # noqa: E402
from rogrouper.services.bot_info import BotInfoCache  # noqa: E402
from rogrouper.services.roblox_client import RobloxClient  # noqa: E402
from rogrouper.services.suspension_service import SuspensionSweeper  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env.

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
    """Startup/shutdown lifecycle.

    Builds the shared Roblox client, bot profile cache and suspension
    sweeper, and starts the sweep loop.
    """
    cfg = get_config()
    engine = get_engine()
    init_db(engine, cfg.bootstrap_admin_ids)
    configure_rate_limiter(engine=engine)

    bot_token = os.getenv("ROBLOX_BOT_TOKEN", "").strip() or None
    if bot_token is None:
        logger.warning("ROBLOX_BOT_TOKEN is not set; bot actions and auto-unsuspend are disabled")

    roblox = RobloxClient(bot_token=bot_token, timeout=cfg.http_timeout_seconds)
    app.state.roblox = roblox
    app.state.bot_info = BotInfoCache(ttl_seconds=cfg.bot_info_ttl_seconds)
    app.state.sweeper = SuspensionSweeper(
        engine, roblox, interval_seconds=cfg.suspension_sweep_interval_seconds,
    )
    app.state.sweeper.start()

    logger.info("Rogrouper API started — engine ready (%s)", engine.url.database)
    yield

    await app.state.sweeper.stop()
    await roblox.aclose()
    logger.info("Rogrouper API shutting down")


app = FastAPI(
    title="Rogrouper Dashboard API",
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

install_error_handlers(app)

# Mount routers
app.include_router(auth_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
app.include_router(bot_router, prefix="/api")
app.include_router(groups_router, prefix="/api")
app.include_router(organizations_router, prefix="/api")
app.include_router(awards_router, prefix="/api")
app.include_router(roblox_router, prefix="/api")
app.include_router(cron_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}

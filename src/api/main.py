import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.adapters.sqlite.migrator import SQLiteMigrator
from src.api.deps import get_rules, get_settings
from src.app_shell.config import validate_ops_rules

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    logging.basicConfig(level=logging.INFO)
    settings = get_settings()

    # Load rules, validate the environment and migrate on startup (fail-fast)
    try:
        rules = get_rules()
        validate_ops_rules(rules, settings.data_dir)
        SQLiteMigrator(settings.db_path(rules), str(settings.migrations_dir)).run_migrations()
        logger.info("Rules loaded from %s", settings.rules_path)
    except (OSError, ValueError, RuntimeError) as e:
        logger.critical("Startup failed: %s", e)
        sys.exit(1)

    yield


app = FastAPI(
    title="Creator Paywall API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# --- Routers ---
from src.api.routes import payments, posts  # noqa: E402

app.include_router(payments.router, prefix="/api/payments", tags=["Payments"])
app.include_router(posts.router, prefix="/api/posts", tags=["Posts"])


# CORS (Allow Frontend)
_cors = get_rules().cors

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors.allow_origins,
    allow_credentials=_cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {"status": "ok", "service": "api"}

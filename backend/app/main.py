import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.auth.permissions import ROLE_DEFAULTS, validate_role_defaults
from app.config import settings
from app.database import engine
from app.middleware.exceptions import register_exception_handlers
from app.middleware.rate_limit import RateLimitMiddleware
from app.middleware.tenant import TenantMiddleware
from app.routers import health, permissions

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    validate_role_defaults(ROLE_DEFAULTS)
    logger.info(f"Mostrador starting ({settings.environment})")
    yield
    await engine.dispose()


app = FastAPI(
    title="Mostrador",
    description="Multi-tenant authorization: role defaults, per-user overrides, location scoping",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware (innermost first; each add wraps the previous) ─
# Tenant context (innermost - binds the request context for handlers)
app.add_middleware(TenantMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate limiting (outermost - decision comes from the external limiter, if configured)
app.add_middleware(
    RateLimitMiddleware,
    exempt_paths=["/health", "/health/ready", "/docs", "/openapi.json"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(permissions.router, prefix="/api", tags=["permissions"])

# vipledger/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi

from vipledger.core.config import settings
from vipledger.core.logging import get_logger, setup_logging
from vipledger.core.metrics import export_metrics
from vipledger.api.error_handlers import register_exception_handlers
from vipledger.api.routers import auth, nfc, pos, vip, webhooks
from vipledger.initial_data import bootstrap
from vipledger.middleware import ObservabilityMiddleware, SecurityHeadersMiddleware

# --- Model and task registration (Alembic and Celery discover through these) ---
import vipledger.models.user  # noqa: F401
import vipledger.models.vip  # noqa: F401
import vipledger.models.pos  # noqa: F401
import vipledger.models.nfc  # noqa: F401
import vipledger.tasks  # noqa: F401

logger = get_logger(__name__)

TAGS_METADATA = [
    {"name": "auth", "description": "Login and token refresh."},
    {"name": "vip", "description": "Memberships, point rules, points log and manual adjustments."},
    {"name": "pos", "description": "Point-of-sale orders and their loyalty settlement."},
    {"name": "nfc", "description": "NFC cards and check-ins."},
    {"name": "webhooks", "description": "Stripe payment events."},
]


@asynccontextmanager
async def lifespan(_: FastAPI):
    setup_logging()
    await bootstrap()
    logger.info("Service started", extra={"api_prefix": settings.API_V1_STR})
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    version="0.1.0",
    description=(
        "VIP loyalty ledger.\n\n"
        "- **VIP**: memberships, tiers and the append-only points log.\n"
        "- **POS**: orders settle points when paid and reverse them when refunded.\n"
        "- **NFC**: check-ins earn flat points for VIPs and artists.\n\n"
        "Use **Authorize** to call the protected endpoints."
    ),
    openapi_tags=TAGS_METADATA,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
    },
)

# --- Middlewares ---
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(ObservabilityMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials="*" not in settings.CORS_ALLOW_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# --- Routers ---
app.include_router(auth.router, prefix=settings.API_V1_STR)
app.include_router(vip.router, prefix=settings.API_V1_STR)
app.include_router(pos.router, prefix=settings.API_V1_STR)
app.include_router(nfc.router, prefix=settings.API_V1_STR)
app.include_router(webhooks.router, prefix=settings.API_V1_STR)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
        tags=TAGS_METADATA,
    )

    comps = openapi_schema.setdefault("components", {}).setdefault("securitySchemes", {})
    comps["BearerAuth"] = {
        "type": "http",
        "scheme": "bearer",
        "bearerFormat": "JWT",
        "description": "Paste an access token. Format: `Bearer <token>`",
    }
    openapi_schema["security"] = [{"BearerAuth": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


@app.get("/metrics", include_in_schema=False)
def metrics():
    body, content_type = export_metrics()
    return Response(content=body, media_type=content_type)


@app.get("/", include_in_schema=False)
def root():
    return {"status": "ok", "docs_url": "/docs", "redoc_url": "/redoc"}

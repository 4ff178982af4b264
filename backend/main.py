import logging
import logging.config

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
import uvicorn

# ------------------------------------------------------------
# 1. CONFIG & LOGGING
# ------------------------------------------------------------
from miprojet.core.config import settings

LOG_LEVEL = "INFO" if settings.ENVIRONMENT == "production" else "DEBUG"

logging_config = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "loggers": {
        "uvicorn": {"handlers": ["console"], "level": LOG_LEVEL},
        "uvicorn.error": {"handlers": ["console"], "level": LOG_LEVEL},
        "uvicorn.access": {"handlers": ["console"], "level": LOG_LEVEL},
        "miprojet": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

logging.config.dictConfig(logging_config)
logger = logging.getLogger("miprojet")


class CustomProxyHeadersMiddleware(BaseHTTPMiddleware):
    """
    Trust X-Forwarded-For / X-Forwarded-Proto from the load balancer so
    audit entries carry the provider's address, not the proxy's.
    Only peers listed in TRUSTED_PROXIES may set them.
    """
    async def dispatch(self, request, call_next):
        peer = request.client.host if request.client else None
        if peer not in settings.TRUSTED_PROXIES:
            return await call_next(request)

        x_forwarded_for = request.headers.get("x-forwarded-for")
        if x_forwarded_for:
            # Take the first IP in the list
            request.scope["client"] = (x_forwarded_for.split(",")[0].strip(), 0)

        x_forwarded_proto = request.headers.get("x-forwarded-proto")
        if x_forwarded_proto:
            request.scope["scheme"] = x_forwarded_proto

        return await call_next(request)


# ------------------------------------------------------------
# 2. FASTAPI APP
# ------------------------------------------------------------
app = FastAPI(
    title="MIPROJET Payments API",
    description="Payment initiation and webhook reconciliation for MIPROJET crowdfunding and services.",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# ------------------------------------------------------------
# 3. MIDDLEWARE
# ------------------------------------------------------------
app.add_middleware(CustomProxyHeadersMiddleware)

if settings.ENVIRONMENT == "production":
    app.add_middleware(HTTPSRedirectMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=[
        "authorization",
        "x-client-info",
        "apikey",
        "content-type",
        "x-fedapay-signature",
    ],
)

# ------------------------------------------------------------
# 4. ROUTERS
# ------------------------------------------------------------
from miprojet.routers import payment_router, webhooks  # noqa: E402

app.include_router(payment_router.router)
app.include_router(webhooks.router)


@app.get("/health", include_in_schema=False)
async def health():
    return {"status": "ok", "service": settings.PROJECT_NAME}


# ------------------------------------------------------------
# 5. GLOBAL EXCEPTION HANDLER
# ------------------------------------------------------------
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc) if settings.DEBUG else "Something went wrong",
        },
    )


# ------------------------------------------------------------
# 6. STARTUP
# ------------------------------------------------------------
@app.on_event("startup")
async def startup_event():
    logger.info(f"🚀 MIPROJET payments API started | Env: {settings.ENVIRONMENT} | Debug: {settings.DEBUG}")
    logger.info(f"🔗 Money Fusion webhook: {settings.BACKEND_URL}/functions/money-fusion-webhook")
    if not settings.MONEY_FUSION_WEBHOOK_SECRET:
        logger.warning("⚠️ MONEY_FUSION_WEBHOOK_SECRET not set: Money Fusion webhooks will be rejected")
    if not settings.FEDAPAY_ENFORCE_SIGNATURE:
        logger.warning("⚠️ FedaPay webhook signatures are checked but not enforced")


# ------------------------------------------------------------
# 7. REQUEST LOGGING MIDDLEWARE
# ------------------------------------------------------------
@app.middleware("http")
async def log_requests(request: Request, call_next):
    client = request.client.host if request.client else "-"
    logger.info(f"➡️ {client} {request.method} {request.url.path}")
    try:
        response = await call_next(request)
    except Exception as e:
        logger.exception(f"💥 Exception during {request.method} {request.url.path}: {e}")
        raise
    logger.info(f"⬅️ {request.method} {request.url.path} → {response.status_code}")
    return response


# ------------------------------------------------------------
# 8. RUN LOCALLY
# ------------------------------------------------------------
if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug",
        access_log=True
    )

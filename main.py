import sys

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

# Configure loguru: drop the default sink, log INFO and up to stderr
logger.remove()
logger.add(sys.stderr, level="INFO")

from api import auth, companies, invitations, notifications, permissions, tradies
from config import get_settings
from services.errors import AccessError

settings = get_settings()
cors_origins = [
    origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()
]
if "*" in cors_origins:
    cors_origins = ["*"]


app = FastAPI(
    title=settings.APP_TITLE,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
    openapi_url="/api/openapi.json" if settings.DEBUG else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins or ["*"],
    allow_credentials="*" not in cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AccessError)
async def access_error_handler(request: Request, exc: AccessError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code} {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc}")
    return await http_exception_handler(request, exc)


# API routes
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(permissions.router, prefix="/api/user", tags=["permissions"])
app.include_router(permissions.guard_router, prefix="/api/access", tags=["permissions"])
app.include_router(invitations.pm_router, prefix="/api/pm/invitations", tags=["invitations"])
app.include_router(tradies.router, prefix="/api/pm/tradies", tags=["memberships"])
app.include_router(invitations.tradie_router, prefix="/api/tradie/invitations", tags=["invitations"])
app.include_router(invitations.router, prefix="/api/invitations", tags=["invitations"])
app.include_router(companies.router, prefix="/api/companies", tags=["companies"])
app.include_router(companies.tradie_router, prefix="/api/tradie/company", tags=["companies"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["notifications"])


@app.get("/api/health")
async def health():
    return {"status": "ok"}

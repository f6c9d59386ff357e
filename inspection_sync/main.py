from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from inspection_sync.core.config import settings
from inspection_sync.core.database import SessionLocal, create_tables
from inspection_sync.routers import auth, inspections, sessions, templates
from inspection_sync.seeds.seed_data import seed_initial_data
from inspection_sync.services.clock import AsyncioScheduler
from inspection_sync.services.sessions import build_registry

logger = logging.getLogger("inspection_sync")
logging.basicConfig(level=logging.INFO)

app = FastAPI(title="Inspection Draft Sync API", version="0.1.0")

cors_origins = settings.cors_allow_origins or ["*"]
allow_credentials = "*" not in cors_origins
if "*" in cors_origins:
    logger.warning("CORS_ALLOW_ORIGINS includes '*'; do not use this in production")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_origin_regex=settings.cors_allow_origin_regex,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.session_registry = build_registry(settings, SessionLocal)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "camera=(), microphone=(), geolocation=()")
    return response


@app.on_event("startup")
async def startup_event() -> None:
    create_tables()
    if settings.seed_initial_data:
        seed_initial_data()


@app.on_event("shutdown")
async def shutdown_event() -> None:
    registry = app.state.session_registry
    # Open sessions flush unsaved work to the local cache before exit.
    registry.close_all()
    if isinstance(registry.scheduler, AsyncioScheduler):
        await registry.scheduler.drain()


app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(templates.router, prefix="/templates", tags=["templates"])
app.include_router(inspections.router, prefix="/inspections", tags=["inspections"])
app.include_router(sessions.router, prefix="/sessions", tags=["sessions"])


@app.get("/health")
def health_check() -> dict[str, str]:
    return {"status": "ok"}

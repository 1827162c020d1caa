import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from credisphere.core.config import get_settings
from credisphere.core.database import engine, Base
from credisphere.core.session import AuthEvent, AuthEventChannel, Session
from credisphere.api.v1 import router as api_router
# Import all models to register them with Base
from credisphere import models  # noqa: F401

settings = get_settings()

_log_level = os.getenv("LOG_LEVEL", "DEBUG" if settings.debug else "INFO").upper()
logging.basicConfig(
    level=_log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)

audit_logger = logging.getLogger("credisphere.audit")


def log_auth_event(event: AuthEvent, session: Session | None) -> None:
    audit_logger.info("auth event=%s user=%s", event.value, session.email if session else "-")


@asynccontextmanager
async def lifespan(app: FastAPI):
    unsubscribe = app.state.auth_events.subscribe(log_auth_event)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield
    finally:
        unsubscribe()
        await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Credit risk analysis reports",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)
app.state.auth_events = AuthEventChannel()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With"],
)

app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": "1.0.0"}

# Application entrypoint: configures middleware, startup routines, and API routers.
import asyncio
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .db import Base, engine
from .realtime import start_redis_subscriber
from .routes.account import router as account_router
from .routes.admin import router as admin_router
from .routes.auth import router as auth_router
from .routes.blocks import router as blocks_router
from .routes.chat_ws import router as chat_ws_router
from .routes.contact import router as contact_router
from .routes.messages import router as messages_router
from .routes.projects import router as projects_router
from .routes.properties import router as properties_router
from .routes.reports import router as reports_router
from .routes.seller import router as seller_router
from .routes.support import router as support_router
from .routes.users import router as users_router


# Parse CORS origins from a comma-separated env var.
# Note: '*' cannot be used with allow_credentials=True; we fall back to explicit localhost origins for dev.
def _parse_cors_origins(env_value: str | None) -> list[str]:
    default_dev_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    if not env_value:
        return default_dev_origins

    origins = [o.strip() for o in env_value.split(",") if o.strip()]
    # Map '*' to explicit localhost origins so credentialed requests remain allowed
    if "*" in origins:
        return default_dev_origins

    return origins


app = FastAPI(title="Vendra API", version="0.1.0")
allow_list = _parse_cors_origins(os.getenv("CORS_ORIGINS"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup() -> None:
    # For local SQLite, auto-create tables; production DBs rely on Alembic migrations.
    if os.getenv("DATABASE_URL", "sqlite:///./data.db").startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
    # Relay chat events published by other processes; a no-op when Redis is disabled
    start_redis_subscriber(asyncio.get_running_loop())


# Simple liveness endpoint for container orchestrators and uptime checks
@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


# Local storage serves uploaded media itself; S3 URLs point at the bucket
if os.getenv("STORAGE_TYPE", "local") == "local":
    upload_dir = os.getenv("UPLOAD_DIR", "uploads")
    os.makedirs(upload_dir, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=upload_dir), name="uploads")


# Mount application routers (authentication, domain APIs, admin tables, and WebSocket chat)
app.include_router(auth_router, prefix="", tags=["auth"])
app.include_router(users_router, prefix="/api/v1", tags=["profiles"])
app.include_router(properties_router, prefix="/api/v1", tags=["properties"])
app.include_router(projects_router, prefix="/api/v1", tags=["projects"])
app.include_router(seller_router, prefix="/api/v1", tags=["seller"])
app.include_router(messages_router, prefix="/api/v1", tags=["messages"])
app.include_router(blocks_router, prefix="/api/v1", tags=["blocks"])
app.include_router(reports_router, prefix="/api/v1", tags=["reports"])
app.include_router(support_router, prefix="/api/v1", tags=["support"])
app.include_router(account_router, prefix="/api/v1", tags=["account"])
app.include_router(contact_router, prefix="/api/v1", tags=["contact"])
app.include_router(admin_router, prefix="/api/v1", tags=["admin"])
app.include_router(chat_ws_router, prefix="/ws", tags=["chat"])

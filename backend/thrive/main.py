"""FastAPI application entrypoint.

Routers are thin: they validate input, delegate to services and return
JSON. Every resource lives under `/api`:

- /api/auth, /api/payment, /api/subscriptions
- /api/courses, /api/community, /api/dashboard
- /api/calendar, /api/bookings, /api/sessions
- /api/profile, /api/public/profile, /api/users
- /api/admin
"""

import json
import logging
import os
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles

from .config import settings
from .database import create_db_and_tables
from .errors import setup_exception_handlers
from .routers import (
    admin,
    auth,
    bookings,
    calendar,
    community,
    courses,
    dashboard,
    payment,
    profile,
    sessions,
    subscriptions,
    users,
)
from .services.storage import PUBLIC_PREFIX

app = FastAPI(title="Thrive in Japan API")
logger = logging.getLogger("thrive.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
setup_exception_handlers(app)

settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
app.mount(PUBLIC_PREFIX, StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

for module in (auth, courses, community, calendar, bookings, sessions, payment,
               subscriptions, profile, users, dashboard, admin):
    app.include_router(module.router, prefix="/api")
app.include_router(profile.public_router, prefix="/api")

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/api"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.get("/")
def home():
    return {"service": "Thrive in Japan API", "docs": "/docs"}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}

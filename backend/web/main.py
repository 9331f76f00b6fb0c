"Ganztag user context API"
from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.web import config as _cfg
from backend.web.routes.usercontext import usercontext_router


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via APP_ENABLE_DOTENV (default true outside pytest).
    """
    import sys
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("APP_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    load_dotenv()

logging.basicConfig(
    level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

# Minimal production safety checks (fail-fast on insecure config)
_cfg.ensure_secure_config_on_startup()

logger = logging.getLogger("ganztag.web")
SESSION_COOKIE_NAME = "ganztag_session"
SESSION_STORE = _cfg.build_session_store()

app = FastAPI(title="Ganztag user context", version="0.1.0")
app.include_router(usercontext_router)


def _is_public_path(path: str) -> bool:
    return path in ("/health", "/docs", "/openapi.json")


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    if _is_public_path(path):
        return await call_next(request)

    sid = request.cookies.get(SESSION_COOKIE_NAME)
    rec = None
    if sid:
        try:
            rec = SESSION_STORE.get(sid)
        except Exception as exc:
            logger.warning("Session store get failed: %s", exc.__class__.__name__)

    if not rec:
        headers = {"Cache-Control": "private, no-store", "Vary": "Origin"}
        return JSONResponse({"error": "unauthenticated", "detail": "user not authenticated"}, status_code=401, headers=headers)

    # Expose minimal, read-only actor context for downstream handlers.
    request.state.user = {"account_id": rec.account_id}
    return await call_next(request)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


@app.get("/health")
async def health():
    return {"status": "healthy"}

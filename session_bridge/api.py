"""
HTTP API
========
FastAPI surface over a ``SessionBridge``.

Routes:
    GET  /api/health                        - liveness, counts, last cycles
    POST /api/auth/start-login              - {username[, mode]} → sessionId
    GET  /api/auth/status/{session_id}      - pending-login status
    POST /api/auth/complete-login           - {sessionId, cookies}
    POST /api/auth/cancel/{session_id}      - tear down an in-flight login
    GET  /api/auth/validate/{user_id}       - session info or 401
    GET  /api/auth/cookies/{user_id}        - the cookie jar for consumers
    POST /api/auth/logout/{user_id}         - drop the session
    GET  /api/auth/sessions                 - debug listing (opt-in)

Every ``SessionBridgeError`` becomes ``{"success": false, "error": code,
"message": ...}`` with the error's HTTP status.

Running::

    python -m session_bridge serve
    uvicorn session_bridge.api:build_app --factory --port 3000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Union

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .bridge import SessionBridge
from .errors import ForbiddenError, InvalidRequestError, SessionBridgeError, status_for
from .run_config import BridgeConfig

logger = logging.getLogger(__name__)


class StartLoginRequest(BaseModel):
    username: Optional[str] = None
    mode: str = "browser"       # "browser" | "external"


class CompleteLoginRequest(BaseModel):
    sessionId: str
    cookies: Union[str, List[Dict[str, Any]], None] = None


def create_app(bridge: Optional[SessionBridge] = None) -> FastAPI:
    """Build the app; the bridge is started and stopped by the lifespan."""
    if bridge is None:
        bridge = SessionBridge(BridgeConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await bridge.start()
        try:
            yield
        finally:
            await bridge.stop()

    app = FastAPI(title="Session Bridge", lifespan=lifespan)
    app.state.bridge = bridge

    @app.exception_handler(SessionBridgeError)
    async def _bridge_error(request: Request, exc: SessionBridgeError):
        status = status_for(exc)
        log = logger.error if status >= 500 else logger.info
        log(f"[API] {request.method} {request.url.path} → {status} {exc.code}: {exc}")
        return JSONResponse(
            status_code=status,
            content={"success": False, "error": exc.code, "message": str(exc)},
        )

    # ── Health ────────────────────────────────────────────────────

    @app.get("/api/health")
    async def health():
        return bridge.health()

    # ── Login ─────────────────────────────────────────────────────

    @app.post("/api/auth/start-login")
    async def start_login(body: StartLoginRequest):
        if body.mode == "external":
            result = bridge.logins.open_external(body.username)
        elif body.mode == "browser":
            result = await bridge.logins.begin(body.username)
        else:
            raise InvalidRequestError(f"Unknown login mode {body.mode!r}")
        logger.info(f"[API] Login started for {result['userId']} ({body.mode})")
        return {"success": True, **result}

    @app.get("/api/auth/status/{session_id}")
    async def login_status(session_id: str):
        return {"success": True, **bridge.logins.status(session_id)}

    @app.post("/api/auth/complete-login")
    async def complete_login(body: CompleteLoginRequest):
        entry = await bridge.logins.complete_with_cookies(body.sessionId, body.cookies)
        return {
            "success": True,
            "userId": entry.user_id,
            "userInfo": entry.user_info,
            "cookieCount": len(entry.cookie_jar),
        }

    @app.post("/api/auth/cancel/{session_id}")
    async def cancel_login(session_id: str):
        await bridge.logins.cancel(session_id)
        return {"success": True, "sessionId": session_id}

    # ── Sessions ──────────────────────────────────────────────────

    @app.get("/api/auth/validate/{user_id}")
    async def validate_session(user_id: str):
        entry = bridge.store.require(user_id)
        return {"success": True, "valid": True, **entry.summary(), "userInfo": entry.user_info}

    @app.get("/api/auth/cookies/{user_id}")
    async def session_cookies(user_id: str):
        entry = bridge.store.require(user_id)
        return {
            "success": True,
            "userId": user_id,
            "cookies": entry.cookie_jar.to_dicts(),
            "cookieHeader": entry.cookie_jar.to_header(),
        }

    @app.post("/api/auth/logout/{user_id}")
    async def logout(user_id: str):
        removed = bridge.store.remove(user_id)
        return {"success": True, "userId": user_id, "removed": removed}

    @app.get("/api/auth/sessions")
    async def list_sessions():
        if not bridge.config.expose_session_list:
            raise ForbiddenError("Session listing is disabled")
        sessions = bridge.store.list_sessions()
        return {"success": True, "count": len(sessions), "sessions": sessions}

    return app


def build_app() -> FastAPI:
    """uvicorn factory: config from the environment."""
    return create_app()

# geoguard/api/http/server.py
from __future__ import annotations

import hmac
import time
import uuid
from typing import Any, Callable, Dict, Optional

import structlog
from fastapi import Body, Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ...context import RequestContext, client_ip_from_headers
from ...errors import ConfigError
from ...geo import GeoLookup, NoopGeoLookup
from ...observability.logging import bind_request, clear_request
from ...observability.metrics import CONTENT_TYPE_LATEST, render_latest
from ...policy.audit import AuditSink, DecisionAuditEmitter
from ...policy.config import PolicyConfig, PolicyStore
from ...policy.evaluator import PolicyEvaluator
from ...policy.guard import SessionLocationGuard
from ...policy.responses import SESSION_TERMINATED, deny_headers, deny_payload
from ...session import MemorySessionManager, SessionManager
from ...settings import AppSettings, get_settings
from .errors import (
    ErrorCode,
    NotFoundError,
    UnauthorizedError,
    UnprocessableEntityError,
    register_exception_handlers,
)

__all__ = ["create_app"]

log = structlog.get_logger("geoguard.http")


# --- Models --------------------------------------------------------------------

class LocationCheckRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # защищаемый ресурс; по умолчанию сам эндпоинт
    path: Optional[str] = Field(default=None, max_length=2048)
    method: Optional[str] = Field(default=None, max_length=16)
    email: Optional[str] = Field(default=None, max_length=320)
    auth_type: Optional[str] = Field(default=None, max_length=64)


class SessionVerifyRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str = Field(..., min_length=1, max_length=256)
    path: Optional[str] = Field(default=None, max_length=2048)
    method: Optional[str] = Field(default=None, max_length=16)


# --- Helpers -------------------------------------------------------------------

def _request_context(
    request: Request,
    *,
    path: Optional[str] = None,
    method: Optional[str] = None,
    email: Optional[str] = None,
    auth_type: Optional[str] = None,
) -> RequestContext:
    return RequestContext.from_headers(
        request.headers,
        peer=request.client.host if request.client else None,
        path=path or request.url.path,
        method=method or request.method,
        user_email=email,
        auth_type=auth_type,
    )


def _deny_response(payload: Dict[str, Any], headers: Dict[str, str]) -> JSONResponse:
    return JSONResponse(status_code=403, content=payload, headers=headers)


def _admin_guard(settings: AppSettings) -> Callable[[Request], Any]:
    keys = settings.admin.key_values()
    header_name = settings.admin.api_key_header

    async def require_admin(request: Request) -> str:
        if not settings.admin.enabled:
            raise NotFoundError("admin API is disabled")
        provided = request.headers.get(header_name)
        # без настроенных ключей admin API закрыт
        if not keys or not provided:
            raise UnauthorizedError("Invalid API key")
        if not any(hmac.compare_digest(provided, k) for k in keys):
            raise UnauthorizedError("Invalid API key")
        return provided

    return require_admin


# --- App factory ---------------------------------------------------------------

def create_app(
    settings: Optional[AppSettings] = None,
    *,
    lookup: Optional[GeoLookup] = None,
    sessions: Optional[SessionManager] = None,
    audit_sink: Optional[AuditSink] = None,
    store: Optional[PolicyStore] = None,
) -> FastAPI:
    cfg = settings or get_settings()
    store = store or PolicyStore(cfg.policy.to_policy())
    sessions = sessions if sessions is not None else MemorySessionManager()
    evaluator = PolicyEvaluator(
        store,
        lookup or NoopGeoLookup(),
        emitter=DecisionAuditEmitter(audit_sink),
        lookup_timeout=cfg.lookup.timeout_seconds,
    )
    guard = SessionLocationGuard(evaluator, sessions)
    require_admin = _admin_guard(cfg)

    app = FastAPI(
        title=f"{cfg.app_name} HTTP API",
        version=cfg.version,
        docs_url=None if cfg.is_prod else "/docs",
        redoc_url=None if cfg.is_prod else "/redoc",
        openapi_url=None if cfg.is_prod else "/openapi.json",
    )
    app.state.settings = cfg
    app.state.store = store
    app.state.evaluator = evaluator
    app.state.guard = guard
    app.state.sessions = sessions
    register_exception_handlers(app, debug=cfg.debug)

    # --- Middleware: request context, timing, security headers ---------------

    @app.middleware("http")
    async def request_context_mw(request: Request, call_next: Callable) -> Response:
        req_id = request.headers.get(cfg.request_id_header) or str(uuid.uuid4())
        peer = request.client.host if request.client else None
        bind_request(req_id, client_ip_from_headers(request.headers, peer), request.url.path)
        start = time.perf_counter()
        try:
            response: Response = await call_next(request)
            response.headers.setdefault("X-Content-Type-Options", "nosniff")
            response.headers.setdefault("X-Frame-Options", "DENY")
            response.headers.setdefault("Referrer-Policy", "no-referrer")
            response.headers.setdefault("Cache-Control", "no-store")
            response.headers[cfg.request_id_header] = req_id
            elapsed = time.perf_counter() - start
            response.headers["X-Response-Time"] = f"{int(elapsed * 1000)}ms"
            log.info(
                "request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                ms=int(elapsed * 1000),
            )
            return response
        finally:
            clear_request()

    # --- Routes: Health / Metrics --------------------------------------------

    @app.get("/healthz", tags=["health"])
    async def healthz() -> Dict[str, Any]:
        snap = store.snapshot()
        return {
            "status": "ok",
            "name": cfg.app_name,
            "env": cfg.environment.value,
            "policy_enabled": snap.enabled,
            "policy_version": snap.version,
        }

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=render_latest(), media_type=CONTENT_TYPE_LATEST)

    # --- Routes: Location ----------------------------------------------------

    @app.post("/v1/location/check", tags=["location"])
    async def location_check(request: Request, body: Optional[LocationCheckRequest] = None) -> Any:
        body = body or LocationCheckRequest()
        ctx = _request_context(
            request,
            path=body.path,
            method=body.method,
            email=body.email,
            auth_type=body.auth_type,
        )
        decision = await evaluator.evaluate(ctx)
        if decision.blocked:
            return _deny_response(
                deny_payload(decision, support_contact=cfg.support_email),
                deny_headers(decision),
            )
        return {"allowed": True, "ip": ctx.ip, "decision": decision.to_dict()}

    @app.post("/v1/session/verify", tags=["location"])
    async def session_verify(request: Request, body: SessionVerifyRequest) -> Any:
        ctx = _request_context(request, path=body.path, method=body.method)
        result = await guard.check_continued_access(body.session_id, ctx)
        if result.decision is None:
            raise NotFoundError("unknown session")
        if not result.allowed:
            payload = deny_payload(
                result.decision,
                support_contact=cfg.support_email,
                error=SESSION_TERMINATED[0],
                message=SESSION_TERMINATED[1],
            )
            payload["terminated"] = result.terminated
            return _deny_response(payload, deny_headers(result.decision))
        return {"allowed": True, "session_id": body.session_id, "decision": result.decision.to_dict()}

    # --- Routes: Admin policy ------------------------------------------------

    @app.get("/v1/admin/policy", tags=["admin"])
    async def get_policy(_: str = Depends(require_admin)) -> Dict[str, Any]:
        return store.snapshot().to_dict()

    @app.put("/v1/admin/policy", tags=["admin"])
    async def replace_policy(
        payload: Dict[str, Any] = Body(...),
        _: str = Depends(require_admin),
    ) -> Dict[str, Any]:
        try:
            new = store.replace(PolicyConfig.from_mapping(payload))
        except ConfigError as e:
            raise UnprocessableEntityError(str(e), code=ErrorCode.INVALID_POLICY) from e
        log.info("policy_replaced", policy_version=new.version)
        return new.to_dict()

    @app.patch("/v1/admin/policy", tags=["admin"])
    async def patch_policy(
        payload: Dict[str, Any] = Body(...),
        _: str = Depends(require_admin),
    ) -> Dict[str, Any]:
        try:
            new = store.update(payload)
        except ConfigError as e:
            raise UnprocessableEntityError(str(e), code=ErrorCode.INVALID_POLICY) from e
        log.info("policy_patched", policy_version=new.version, keys=sorted(payload))
        return new.to_dict()

    return app

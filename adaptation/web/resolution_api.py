from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBasic, HTTPBasicCredentials, HTTPBearer
from pydantic import BaseModel, Field

from adaptation.resolution.engine import ResolutionEngine
from adaptation.resolution.errors import NotFoundError, ResolutionError, ValidationError
from adaptation.services.manifest_loader import apply_manifest

_logger = logging.getLogger("resolution.api")


class VariantPayload(BaseModel):
    trigger: dict[str, Any] | None = None
    payload: Any = None


class SubjectPayload(BaseModel):
    default: str = ""
    variants: dict[str, VariantPayload] = Field(default_factory=dict)


class ContextPayload(BaseModel):
    context: dict[str, Any] = Field(default_factory=dict)


basic = HTTPBasic(auto_error=False)
bearer = HTTPBearer(auto_error=False)


def _is_loopback(host: str | None) -> bool:
    return host in {"127.0.0.1", "::1", "localhost"}


def _auth_guard(
    request: Request,
    basic_cred: HTTPBasicCredentials | None = Depends(basic),
    bearer_cred: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> dict[str, str]:
    admin_token = os.environ.get("ADMIN_TOKEN", "").strip()
    admin_user = os.environ.get("ADMIN_USER", "").strip()
    admin_pass = os.environ.get("ADMIN_PASS", "").strip()

    if admin_token:
        if bearer_cred and bearer_cred.scheme.lower() == "bearer" and bearer_cred.credentials == admin_token:
            return {"auth": "bearer", "principal": "token-user"}
        raise HTTPException(
            status_code=401,
            detail="unauthorized: bearer token required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if admin_user and admin_pass:
        if basic_cred and basic_cred.username == admin_user and basic_cred.password == admin_pass:
            return {"auth": "basic", "principal": basic_cred.username}
        raise HTTPException(
            status_code=401,
            detail="unauthorized: basic auth required",
            headers={"WWW-Authenticate": 'Basic realm="ResolutionAPI"'},
        )

    # No explicit credentials: only allow local requests.
    host = request.client.host if request.client else None
    if _is_loopback(host):
        return {"auth": "local", "principal": "localhost"}
    raise HTTPException(
        status_code=401,
        detail="unauthorized: configure ADMIN_TOKEN or ADMIN_USER/ADMIN_PASS",
        headers={"WWW-Authenticate": 'Basic realm="ResolutionAPI"'},
    )


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": {"code": code, "message": message}})


def create_app(engine: ResolutionEngine | None = None, manifest_path: str | None = None) -> FastAPI:
    engine = engine or ResolutionEngine()
    manifest_path = manifest_path or engine.settings.manifest_path
    if manifest_path:
        entries = apply_manifest(engine, manifest_path)
        _logger.info("loaded manifest=%s subjects=%d", manifest_path, len(entries))

    app = FastAPI(title="Variant Resolution API", version="1.0.0")
    app.state.engine = engine

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:  # type: ignore[override]
        payload = {"ok": False, "error": {"code": f"HTTP_{exc.status_code}", "message": str(exc.detail)}}
        return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)

    @app.exception_handler(NotFoundError)
    async def _not_found_handler(_: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, exc.err.code, str(exc))

    @app.exception_handler(ValidationError)
    async def _validation_handler(_: Request, exc: ValidationError) -> JSONResponse:
        return _error(422, exc.err.code, str(exc))

    @app.exception_handler(ResolutionError)
    async def _resolution_handler(_: Request, exc: ResolutionError) -> JSONResponse:
        return _error(400, exc.err.code, str(exc))

    @app.get("/healthz")
    def healthz() -> dict[str, Any]:
        # No auth: used by container healthchecks.
        return {
            "ok": True,
            "service": "resolution-api",
            "subjects": len(engine.registry),
            "fingerprint": engine.cache.fingerprint_name,
            "ts": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/api/subjects")
    def list_subjects() -> dict[str, Any]:
        return {"ok": True, "subjects": engine.registry.subjects()}

    @app.get("/api/subjects/{subject_id}")
    def get_subject(subject_id: str) -> dict[str, Any]:
        entry = engine.get_subject(subject_id)
        if entry is None:
            raise NotFoundError(f"subject={subject_id}")
        return {"ok": True, "subject": entry.to_dict()}

    @app.put("/api/subjects/{subject_id}")
    def put_subject(
        subject_id: str,
        body: SubjectPayload,
        _auth: dict[str, str] = Depends(_auth_guard),
    ) -> dict[str, Any]:
        variants = {name: v.model_dump() for name, v in body.variants.items()}
        entry = engine.register_subject(subject_id, variants, body.default)
        return {"ok": True, "subject": entry.to_dict()}

    @app.delete("/api/subjects/{subject_id}")
    def delete_subject(subject_id: str, _auth: dict[str, str] = Depends(_auth_guard)) -> dict[str, Any]:
        return {"ok": True, "removed": engine.unregister(subject_id)}

    @app.post("/api/subjects/{subject_id}/invalidate")
    def invalidate_subject(subject_id: str, _auth: dict[str, str] = Depends(_auth_guard)) -> dict[str, Any]:
        return {"ok": True, "purged": engine.invalidate_cache(subject_id)}

    @app.post("/api/resolve/{subject_id}")
    def resolve(subject_id: str, body: ContextPayload) -> dict[str, Any]:
        result = engine.resolve(subject_id, body.context)
        return {"ok": True, "result": result.to_dict()}

    @app.post("/api/explain/{subject_id}")
    def explain(subject_id: str, body: ContextPayload) -> dict[str, Any]:
        return {"ok": True, "explain": engine.explain(subject_id, body.context)}

    @app.get("/api/metrics")
    def metrics() -> dict[str, Any]:
        return {"ok": True, "metrics": engine.metrics().to_dict()}

    return app


def run_server(manifest_path: str | None = None) -> None:
    host = os.environ.get("RESOLVER_API_HOST", "127.0.0.1")
    port = int(os.environ.get("RESOLVER_API_PORT", "8790"))
    uvicorn.run(create_app(manifest_path=manifest_path), host=host, port=port, reload=False)


if __name__ == "__main__":
    run_server()

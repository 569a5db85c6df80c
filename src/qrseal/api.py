"""HTTP API — thin FastAPI layer over SealService.

Routes map one-to-one onto service operations. Status codes:
- 200 on success, and on a flagged fallback draw the caller asked for
- 400 with the rejection reason (bad request, token rejections)
- 422 on request validation failures (pydantic)
- 500 ``master_secret_missing``
- 503 ``rng_fetch_failed`` (envelopes) / ``qrng_unavailable`` (bytes, probe)

Serve with:
    uvicorn "qrseal.api:create_app_from_env" --factory
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from qrseal import __version__
from qrseal.persistence.event_log import AuditLog
from qrseal.policy.resolver import PolicyResolver
from qrseal.policy.secrets import Secrets
from qrseal.service import (
    MASTER_SECRET_MISSING,
    RANDOMNESS_UNAVAILABLE,
    RNG_SHORT,
    SealService,
    ServiceResult,
)


class CommitRequest(BaseModel):
    session_id: str = Field(min_length=1)
    block: str = Field(min_length=1)


class DeriveRequest(BaseModel):
    session_id: str = Field(min_length=1)
    block: str = Field(min_length=1)
    trial_index: int = Field(ge=1)
    commit_token: str
    selected_index: int = Field(ge=0, le=4)
    options: list[str] = Field(min_length=5, max_length=5)
    raw_byte: int = Field(ge=0, le=255)
    press_bucket_ms: int


class RevealRequest(BaseModel):
    session_id: str = Field(min_length=1)
    block: str = Field(min_length=1)
    commit_token: str


class EnvelopesRequest(BaseModel):
    block: str = Field(min_length=1)
    total: Optional[int] = None
    session_id: Optional[str] = None
    allow_fallback: bool = False


def _respond(result: ServiceResult, unavailable_error: str = "qrng_unavailable") -> Any:
    if result.success:
        return {"success": True, **result.data}
    if result.data.get("fallback"):
        return {"success": False, **result.data}

    reason = result.reason or "error"
    if reason == MASTER_SECRET_MISSING:
        status = 500
    elif reason in (RANDOMNESS_UNAVAILABLE, RNG_SHORT):
        status = 503
        reason = unavailable_error if reason == RANDOMNESS_UNAVAILABLE else reason
    else:
        status = 400
    body: dict[str, Any] = {"success": False, "error": reason}
    if "detail" in result.data:
        body["detail"] = result.data["detail"]
    return JSONResponse(status_code=status, content=body)


def create_app(service: SealService) -> FastAPI:
    """Build the API around an already-configured service."""
    app = FastAPI(title="qrseal", version=__version__)

    @app.post("/commit")
    def commit(req: CommitRequest) -> Any:
        return _respond(service.issue_commit(req.session_id, req.block))

    @app.post("/derive")
    def derive(req: DeriveRequest) -> Any:
        return _respond(service.derive_outcome(
            session_id=req.session_id,
            block_id=req.block,
            trial_index=req.trial_index,
            commit_token=req.commit_token,
            selected_index=req.selected_index,
            options=req.options,
            raw_byte=req.raw_byte,
            press_bucket_ms=req.press_bucket_ms,
        ))

    @app.post("/reveal")
    def reveal(req: RevealRequest) -> Any:
        return _respond(service.reveal_key(req.session_id, req.block, req.commit_token))

    @app.post("/envelopes")
    def envelopes(req: EnvelopesRequest) -> Any:
        result = service.build_block(
            req.block,
            total_trials=req.total,
            session_id=req.session_id,
            allow_fallback=req.allow_fallback,
        )
        return _respond(result, unavailable_error="rng_fetch_failed")

    @app.get("/bytes")
    def raw_bytes(
        n: int = Query(2),
        validation: bool = Query(False),
        profile: Optional[str] = Query(None),
        fallback: bool = Query(False),
    ) -> Any:
        return _respond(service.acquire_bytes(
            n, profile=profile, validation=validation, allow_fallback=fallback,
        ))

    @app.get("/probe")
    def probe(pairs: Optional[int] = Query(None), profile: Optional[str] = Query(None)) -> Any:
        return _respond(service.probe(pairs, profile=profile))

    @app.get("/status")
    def status() -> Any:
        return _respond(service.status())

    return app


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn: config from QRSEAL_CONFIG_DIR, secrets from env."""
    config_dir = Path(os.environ.get("QRSEAL_CONFIG_DIR", "config"))
    env_file = os.environ.get("QRSEAL_ENV_FILE")
    audit_path = os.environ.get("QRSEAL_AUDIT_LOG")
    service = SealService(
        PolicyResolver.from_config_dir(config_dir),
        Secrets.from_environment(Path(env_file) if env_file else Path(".env")),
        audit_log=AuditLog(Path(audit_path)) if audit_path else None,
    )
    return create_app(service)

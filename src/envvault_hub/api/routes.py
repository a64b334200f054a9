from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import RedirectResponse


def _request_origin(request: Request) -> str:
    return f"{request.url.scheme}://{request.url.netloc}"


async def _json_object(request: Request) -> dict[str, Any]:
    raw_body = await request.body()
    if not raw_body:
        return {}
    try:
        payload = json.loads(raw_body.decode("utf-8", errors="ignore"))
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload.") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload.")
    return payload


def register_hub_routes(
    app: FastAPI,
    *,
    state: Any,
    logger: logging.Logger,
) -> None:
    @app.get("/api/health")
    def api_health() -> dict[str, Any]:
        return {"status": "ok"}

    @app.get("/api/auth/github")
    def api_github_authorize(request: Request) -> dict[str, Any]:
        return state.auth_service.github_authorize_payload(origin=_request_origin(request))

    @app.get("/api/auth/github/cli")
    def api_github_cli_authorize(request: Request) -> RedirectResponse:
        url = state.auth_service.cli_authorize_url(
            origin=_request_origin(request),
            redirect_uri=request.query_params.get("redirect_uri"),
        )
        return RedirectResponse(url, status_code=307)

    @app.get("/api/auth/github/callback")
    def api_github_callback(request: Request) -> RedirectResponse:
        target = state.auth_service.complete_callback(
            origin=_request_origin(request),
            code=request.query_params.get("code"),
            state_value=request.query_params.get("state"),
            error=request.query_params.get("error"),
        )
        return RedirectResponse(target, status_code=302)

    @app.get("/api/user")
    def api_user(request: Request) -> dict[str, Any]:
        token = state.auth_service.resolve_token(request.headers)
        return state.auth_service.user_payload(token=token)

    @app.get("/api/repositories")
    def api_repositories(request: Request) -> dict[str, Any]:
        token = state.auth_service.resolve_token(request.headers)
        return state.auth_service.repositories_payload(token=token)

    @app.get("/api/encryption-key")
    def api_encryption_key() -> dict[str, Any]:
        return state.env_service.encryption_key_payload()

    @app.post("/api/env/push")
    async def api_env_push(request: Request) -> dict[str, Any]:
        token = state.auth_service.resolve_token(request.headers)
        payload = await _json_object(request)
        return await asyncio.to_thread(state.env_service.push, token=token, payload=payload)

    @app.post("/api/env/pull")
    async def api_env_pull(request: Request) -> dict[str, Any]:
        token = state.auth_service.resolve_token(request.headers)
        payload = await _json_object(request)
        return await asyncio.to_thread(state.env_service.pull, token=token, payload=payload)

    @app.post("/api/env/list")
    async def api_env_list(request: Request) -> dict[str, Any]:
        token = state.auth_service.resolve_token(request.headers)
        payload = await _json_object(request)
        return await asyncio.to_thread(state.env_service.list, token=token, payload=payload)

    @app.patch("/api/env/records/{record_id}")
    async def api_env_update(record_id: str, request: Request) -> dict[str, Any]:
        token = state.auth_service.resolve_token(request.headers)
        payload = await _json_object(request)
        return await asyncio.to_thread(
            state.env_service.update_content,
            token=token,
            record_id=record_id,
            payload=payload,
        )

    @app.delete("/api/env/records/{record_id}")
    def api_env_delete(record_id: str, request: Request) -> dict[str, Any]:
        token = state.auth_service.resolve_token(request.headers)
        logger.debug("Deleting env record id=%s", record_id, extra={"component": "env", "operation": "delete"})
        return state.env_service.delete(token=token, record_id=record_id)

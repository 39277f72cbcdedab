from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from ...config import Settings, load_settings
from ...domain.chat_models import (
    EndpointRequest,
    ErrorResponse,
    ListFilesResponse,
    ReadFileResponse,
    WriteFileRequest,
    WriteFileResponse,
)
from ...services.chat_context import build_chat_context
from ...services.gateway import GatewayClient, GatewayError
from ...services.github_client import GitHubClient, GitHubError

LOG = logging.getLogger("codeai.api")

router = APIRouter(tags=["chat"])

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def get_github_client(req: EndpointRequest, settings: Settings) -> GitHubClient:
    return GitHubClient(req.github_token, req.repo_owner, req.repo_name, api_url=settings.github_api_url)


def get_gateway_client(settings: Settings) -> GatewayClient:
    if not settings.gateway_api_key:
        raise GatewayError(500, "AI_GATEWAY_API_KEY is not configured")
    return GatewayClient(
        settings.gateway_url,
        settings.gateway_api_key,
        settings.gateway_model,
        max_tokens=settings.gateway_max_tokens,
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


def _list_files(req: EndpointRequest, settings: Settings) -> Any:
    path = req.messages if isinstance(req.messages, str) else ""
    github = get_github_client(req, settings)
    return ListFilesResponse(files=github.list_directory(path.strip("/")))


def _read_file(req: EndpointRequest, settings: Settings) -> Any:
    if not isinstance(req.messages, str) or not req.messages.strip():
        return _error(400, "read-file expects a file path")
    github = get_github_client(req, settings)
    return ReadFileResponse(**github.read_file(req.messages.strip()))


def _write_file(req: EndpointRequest, settings: Settings) -> Any:
    try:
        body = WriteFileRequest.model_validate(req.messages)
    except ValidationError as exc:
        return _error(400, f"write-file expects {{path, content, sha?}}: {exc.errors()[0]['msg']}")
    github = get_github_client(req, settings)
    result = github.write_file(body.path, body.content, sha=body.sha, message=body.commit_message)
    LOG.info("file_written", extra={"path": body.path, "new_file": not body.sha})
    return WriteFileResponse(success=True, commit=result.get("commit"))


def _chat(req: EndpointRequest, settings: Settings) -> Any:
    messages: List[Dict[str, Any]] = req.messages if isinstance(req.messages, list) else []
    gateway = get_gateway_client(settings)
    github = get_github_client(req, settings)
    system_prompt = build_chat_context(
        github,
        branch=settings.default_branch,
        limit=settings.context_file_limit,
        max_chars=settings.context_file_max_chars,
        language=settings.response_language,
    )
    stream = gateway.stream_chat(system_prompt, messages)
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache, no-transform", "X-Accel-Buffering": "no"},
    )


_ACTIONS = {
    "list-files": _list_files,
    "read-file": _read_file,
    "write-file": _write_file,
    "chat": _chat,
}


_ERROR_RESPONSES = {
    code: {"model": ErrorResponse} for code in (400, 402, 404, 409, 429, 500, 502)
}


@router.post("/chat", response_model=None, responses=_ERROR_RESPONSES)
def chat_endpoint(req: EndpointRequest, settings: Settings = Depends(get_settings)) -> Any:
    action = req.action or "chat"
    handler = _ACTIONS.get(action)
    if handler is None:
        return _error(400, f"Unknown action: {action}")
    try:
        return handler(req, settings)
    except GitHubError as exc:
        LOG.warning("github_action_failed", extra={"action": action, "status": exc.status_code})
        return _error(exc.status_code, exc.message)
    except GatewayError as exc:
        return _error(exc.status_code, exc.message)
    except requests.RequestException as exc:
        LOG.exception("upstream_request_failed", extra={"action": action})
        return _error(502, f"Upstream request failed: {exc}")

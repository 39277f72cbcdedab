"""Runtime settings for the assistant client and the collaborator endpoint.

Everything is read from environment variables (optionally seeded from a
``.env`` file). ``load_settings`` accepts an explicit mapping so tests can
build settings without touching ``os.environ``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_GATEWAY_URL = "https://ai.gateway.lovable.dev/v1/chat/completions"
DEFAULT_GATEWAY_MODEL = "google/gemini-2.5-pro"
DEFAULT_GITHUB_API_URL = "https://api.github.com"


@dataclass(frozen=True)
class Settings:
    # Client side: the endpoint that multiplexes chat and file-store actions.
    function_url: str = "http://127.0.0.1:8000/functions/v1/chat"
    function_key: str = ""
    storage_url: str = ""
    storage_key: str = ""
    storage_bucket: str = "chat-images"
    locale: str = "en"
    request_timeout: float = 60.0

    # Retry and timing policy.
    write_attempts: int = 3
    upload_retries: int = 2
    retry_backoff_seconds: float = 1.0
    reset_delay_seconds: float = 2.0
    preview_reload_delay_seconds: float = 3.0

    # Server side: AI gateway and GitHub.
    gateway_url: str = DEFAULT_GATEWAY_URL
    gateway_api_key: Optional[str] = None
    gateway_model: str = DEFAULT_GATEWAY_MODEL
    gateway_max_tokens: int = 16000
    github_api_url: str = DEFAULT_GITHUB_API_URL
    default_branch: str = "main"
    response_language: str = "English"
    context_file_limit: int = 15
    context_file_max_chars: int = 15000


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
        return value if value > 0 else default
    except ValueError:
        return default


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        value = float(raw)
        return value if value >= 0 else default
    except ValueError:
        return default


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    if env is None:
        load_dotenv()
        env = os.environ
    defaults = Settings()
    return Settings(
        function_url=env.get("CODEAI_FUNCTION_URL", defaults.function_url),
        function_key=env.get("CODEAI_FUNCTION_KEY", defaults.function_key),
        storage_url=(env.get("CODEAI_STORAGE_URL") or defaults.storage_url).rstrip("/"),
        storage_key=env.get("CODEAI_STORAGE_KEY", defaults.storage_key),
        storage_bucket=env.get("CODEAI_STORAGE_BUCKET", defaults.storage_bucket),
        locale=env.get("CODEAI_LOCALE", defaults.locale),
        request_timeout=_env_float(env, "CODEAI_REQUEST_TIMEOUT", defaults.request_timeout),
        write_attempts=_env_int(env, "CODEAI_WRITE_ATTEMPTS", defaults.write_attempts),
        upload_retries=_env_int(env, "CODEAI_UPLOAD_RETRIES", defaults.upload_retries),
        retry_backoff_seconds=_env_float(env, "CODEAI_RETRY_BACKOFF", defaults.retry_backoff_seconds),
        reset_delay_seconds=_env_float(env, "CODEAI_RESET_DELAY", defaults.reset_delay_seconds),
        preview_reload_delay_seconds=_env_float(
            env, "CODEAI_PREVIEW_RELOAD_DELAY", defaults.preview_reload_delay_seconds
        ),
        gateway_url=env.get("CODEAI_GATEWAY_URL", defaults.gateway_url),
        gateway_api_key=env.get("AI_GATEWAY_API_KEY") or None,
        gateway_model=env.get("CODEAI_GATEWAY_MODEL", defaults.gateway_model),
        gateway_max_tokens=_env_int(env, "CODEAI_GATEWAY_MAX_TOKENS", defaults.gateway_max_tokens),
        github_api_url=(env.get("GITHUB_API_URL") or defaults.github_api_url).rstrip("/"),
        default_branch=env.get("CODEAI_DEFAULT_BRANCH", defaults.default_branch),
        response_language=env.get("CODEAI_RESPONSE_LANGUAGE", defaults.response_language),
        context_file_limit=_env_int(env, "CODEAI_CONTEXT_FILE_LIMIT", defaults.context_file_limit),
        context_file_max_chars=_env_int(env, "CODEAI_CONTEXT_FILE_MAX_CHARS", defaults.context_file_max_chars),
    )

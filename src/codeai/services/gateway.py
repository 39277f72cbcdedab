"""Streaming proxy to the OpenAI-compatible AI gateway."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional

import requests

from ..observability.metrics import GATEWAY_REQUESTS

LOG = logging.getLogger("codeai.gateway")

_STREAM_TIMEOUT = (5, 300)

RATE_LIMITED_MESSAGE = "Rate limit exceeded. Wait a few minutes and try again."
NO_CREDITS_MESSAGE = "Insufficient credits. Add credits to your workspace."
GENERIC_MESSAGE = "AI service error"


class GatewayError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class GatewayClient:
    def __init__(
        self,
        url: str,
        api_key: str,
        model: str,
        max_tokens: int = 16000,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.model = model
        self.max_tokens = max_tokens
        self._headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        self._session = session or requests.Session()

    def stream_chat(self, system_prompt: str, messages: List[Dict[str, Any]]) -> Iterator[bytes]:
        """Open the completion stream and return its raw SSE bytes.

        Errors are raised before the first byte is yielded so the caller can
        still answer with a JSON error body and a proper status code.
        """
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "stream": True,
        }
        resp = self._session.post(self.url, json=payload, headers=self._headers, timeout=_STREAM_TIMEOUT, stream=True)
        GATEWAY_REQUESTS.labels(status=str(resp.status_code)).inc()
        if not resp.ok:
            body = resp.text
            resp.close()
            if resp.status_code == 429:
                raise GatewayError(429, RATE_LIMITED_MESSAGE)
            if resp.status_code == 402:
                raise GatewayError(402, NO_CREDITS_MESSAGE)
            LOG.error("gateway_error", extra={"status": resp.status_code, "body": body[:500]})
            raise GatewayError(500, GENERIC_MESSAGE)
        return self._relay(resp)

    @staticmethod
    def _relay(resp: requests.Response) -> Iterator[bytes]:
        try:
            for chunk in resp.iter_content(chunk_size=None):
                if chunk:
                    yield chunk
        finally:
            resp.close()

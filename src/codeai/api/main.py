from __future__ import annotations

import os
from datetime import UTC, datetime

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from ..observability.metrics import metrics_middleware_factory
from .routers.chat import router as chat_router

load_dotenv()  # AI_GATEWAY_API_KEY, CODEAI_* overrides

app = FastAPI(title="CodeAI Assistant API", version="0.1.0")

app.middleware("http")(metrics_middleware_factory())

app.include_router(chat_router)
# Same route under the path the browser client was built against.
app.include_router(chat_router, prefix="/functions/v1")

_origins = [o.strip() for o in (os.getenv("CODEAI_CORS_ORIGINS") or "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"name": "CodeAI Assistant API", "version": "0.1.0"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
    }


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)

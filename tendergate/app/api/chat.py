"""Chat API endpoints.

``POST /api/chat`` runs one protected generation, ``GET /api/chat`` is a
gated health probe and ``OPTIONS /api/chat`` answers CORS preflights for
the configured origins.
"""

import json
import math
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from tendergate.app.api.deps import GateDep, SettingsDep, get_pipeline
from tendergate.app.api.schemas import ChatRequest
from tendergate.app.core.logging import get_log_context, get_logger
from tendergate.app.middleware.request_id import get_request_id
from tendergate.app.services.security_gate import SECURITY_HEADERS, sanitize_input

router = APIRouter()
logger = get_logger(__name__)


def cors_headers(origin: Optional[str], allowed_origins: List[str]) -> Dict[str, str]:
    """CORS headers for ``origin``; Allow-Origin only for allowed prefixes."""
    headers = {
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
        "Access-Control-Max-Age": "86400",
    }
    if origin and any(origin.startswith(allowed) for allowed in allowed_origins):
        headers["Access-Control-Allow-Origin"] = origin
    return headers


async def parse_chat_request(request: Request) -> ChatRequest:
    """Parse and validate the chat body.

    Raises:
        HTTPException: 400 for invalid JSON, invalid fields or missing content
    """
    try:
        body = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    try:
        chat_request = ChatRequest.model_validate(body)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise HTTPException(status_code=400, detail=f"Invalid request fields: {fields}")

    if not chat_request.prompt and not chat_request.contents:
        raise HTTPException(status_code=400, detail="Prompt or contents required")
    return chat_request


@router.post("/api/chat", response_model=None)
async def chat(request: Request, gate: GateDep, settings: SettingsDep) -> JSONResponse:
    """Handle a generation request through the protection pipeline.

    Steps:
    1. Security gate (validation, bot flag, per-IP window and burst limits)
    2. Body parsing and input sanitization
    3. Pipeline: circuit breaker, cache, queue, rate limiter, retries

    Returns:
        JSON response ``{success, data, metadata}`` with rate limit headers

    Raises:
        HTTPException: 400 for malformed bodies
        GatewayException: Pipeline and upstream errors, rendered by the
            app-level handler
    """
    headers = {
        **cors_headers(request.headers.get("origin"), settings.allowed_origins),
        "X-RateLimit-Remaining": str(gate.remaining),
        "X-RateLimit-Reset": str(math.ceil(gate.reset_at)),
    }

    chat_request = await parse_chat_request(request)
    prompt = sanitize_input(chat_request.prompt) if chat_request.prompt else None
    pipeline = get_pipeline(request)

    generation = chat_request.to_generation_request(prompt=prompt)
    result = await pipeline.generate(generation)

    logger.info(
        "Chat request served",
        extra=get_log_context(
            request_id=get_request_id(request),
            client_ip=gate.ip,
            model=result.model,
            cached=result.cached,
        ),
    )

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "data": result.text,
            "metadata": {
                "model": result.model,
                "timestamp": result.timestamp,
                "cached": result.cached,
            },
        },
        headers=headers,
    )


@router.get("/api/chat")
async def chat_health(gate: GateDep) -> dict:
    """Health probe, subject to the same security gate as generation."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.options("/api/chat")
async def chat_preflight(request: Request, settings: SettingsDep) -> Response:
    """Answer a CORS preflight for allowed origins."""
    return Response(
        status_code=200,
        headers={
            **cors_headers(request.headers.get("origin"), settings.allowed_origins),
            **SECURITY_HEADERS,
        },
    )

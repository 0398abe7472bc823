"""LLM pass-through proxy, image placeholder and health check.

The proxy keeps the upstream API key on the server: the browser and the
generation client post Messages-API bodies here and the key is attached on
the way out. Bodies are forwarded and relayed verbatim; errors use the
{error, status?, message?, code?} shape the client expects rather than
FastAPI's {detail} envelope.
"""

import logging
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from tnes.config import Settings

logger = logging.getLogger(__name__)

SERVICE_NAME = "tnes-backend-proxy"

router = APIRouter()
health_router = APIRouter()


@health_router.get("/health")
async def health():
    """Service health."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": SERVICE_NAME,
    }


@router.post("/claude/messages")
async def claude_messages(request: Request):
    """Forward a Messages-API body upstream with the server-side API key."""
    settings: Settings = request.app.state.settings
    if not settings.api_key:
        logger.error("Claude API key not configured")
        return JSONResponse(
            status_code=500,
            content={"error": "Claude API key not configured", "code": "MISSING_API_KEY"},
        )

    try:
        body = await request.json()
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body", "message": str(e)})
    if isinstance(body, dict):
        first = (body.get("messages") or [{}])[0]
        logger.info(
            "proxying model=%s max_tokens=%s prompt_len=%d",
            body.get("model"), body.get("max_tokens"),
            len(str(first.get("content", ""))) if isinstance(first, dict) else 0,
        )

    headers = {
        "Content-Type": "application/json",
        "x-api-key": settings.api_key,
        "anthropic-version": settings.anthropic_version,
    }
    try:
        async with httpx.AsyncClient(timeout=settings.upstream_timeout) as client:
            resp = await client.post(settings.upstream_url, json=body, headers=headers)
    except httpx.HTTPError as e:
        logger.error("Backend proxy error: %s", e)
        return JSONResponse(
            status_code=500,
            content={"error": "Backend proxy error", "message": str(e) or type(e).__name__},
        )

    if not resp.is_success:
        logger.warning("Claude API error status=%d", resp.status_code)
        return JSONResponse(
            status_code=resp.status_code,
            content={
                "error": "Claude API request failed",
                "status": resp.status_code,
                "message": resp.text,
            },
        )

    try:
        data = resp.json()
    except ValueError as e:
        return JSONResponse(
            status_code=500,
            content={"error": "Backend proxy error", "message": f"Upstream returned non-JSON body: {e}"},
        )
    logger.info("Claude API response received usage=%s", data.get("usage") if isinstance(data, dict) else None)
    return data


@router.post("/images/generate")
async def images_generate():
    """Image generation is not wired to a provider yet."""
    return JSONResponse(status_code=501, content={"error": "Image generation not implemented yet"})

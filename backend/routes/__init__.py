"""FastAPI API endpoints under /api.

Endpoint groups: the LLM proxy (claude/messages), the image placeholder
(images/generate), character helpers (backstories, portraits) and save-slot
campaigns (campaigns/{slot}, with choice, roll and summary). The health check
lives at the root, outside /api.
"""

from fastapi import APIRouter

from .campaigns import router as campaigns_router
from .proxy import health_router
from .proxy import router as proxy_router

router = APIRouter()
router.include_router(proxy_router)
router.include_router(campaigns_router)

__all__ = ["router", "health_router"]

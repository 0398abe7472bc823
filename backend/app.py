import asyncio
import logging
from collections import defaultdict
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.routes import health_router, router
from tnes.config import Settings, load_settings
from tnes.dice import DiceEngine
from tnes.llm import LLM
from tnes.portraits import PlaceholderPortraits, PortraitGenerator, ProxyPortraits
from tnes.storage import Storage

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)


def create_app(
    data_dir: Path | None = None,
    *,
    settings: Settings | None = None,
    llm: LLM | None = None,
    portraits: PortraitGenerator | None = None,
    dice: DiceEngine | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    resolved = data_dir or settings.data_dir

    app = FastAPI(title="TNES Backend Proxy")
    app.state.settings = settings
    app.state.storage = Storage(resolved)
    app.state.llm = llm or settings.build_llm()
    if portraits is None:
        portraits = PlaceholderPortraits() if settings.mock else ProxyPortraits(settings.proxy_url)
    app.state.portraits = portraits
    app.state.dice = dice or DiceEngine()
    app.state.slot_locks = defaultdict(asyncio.Lock)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(health_router)
    app.include_router(router, prefix="/api")

    logger.info(
        "app ready data_dir=%s mock=%s api_key=%s",
        resolved, settings.mock, "loaded" if settings.api_key else "missing",
    )
    return app


# Default app instance for uvicorn (uses env vars / .env)
app = create_app()

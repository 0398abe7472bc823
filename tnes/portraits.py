"""Character portraits.

Portraits are cosmetic: a failure never blocks character or campaign
creation. generate_portrait() always returns something displayable, and a
failed attempt comes back as a placeholder with retry and skip affordances
set.
"""

from __future__ import annotations

import base64
import logging
import time
from typing import Literal, Protocol

import httpx

from tnes.models import CamelModel

logger = logging.getLogger(__name__)

AspectRatio = Literal["1:1", "16:9", "4:3"]
Quality = Literal["standard", "hd"]

CLASS_VISUALS: dict[str, str] = {
    "Fighter": "wearing armor, holding weapon, battle-scarred, determined expression, martial bearing",
    "Rogue": "dark clothing, hood or cloak, daggers, cunning expression, shadowy atmosphere",
    "Wizard": "robes, staff or spellbook, arcane symbols, wise expression, magical aura",
    "Cleric": "holy symbol, divine light, serene expression, blessed aura, religious vestments",
}

# (colour, icon) per class for the placeholder.
_PLACEHOLDER_STYLE: dict[str, tuple[str, str]] = {
    "Fighter": ("#8B0000", "⚔️"),
    "Rogue": ("#2F4F4F", "🗡️"),
    "Wizard": ("#4B0082", "🔮"),
    "Cleric": ("#FFD700", "✨"),
}

_PLACEHOLDER_SVG = """\
<svg width="256" height="256" viewBox="0 0 256 256" xmlns="http://www.w3.org/2000/svg">
  <rect width="256" height="256" fill="{color}" opacity="0.1"/>
  <circle cx="128" cy="100" r="40" fill="{color}" opacity="0.3"/>
  <rect x="88" y="140" width="80" height="80" rx="10" fill="{color}" opacity="0.3"/>
  <text x="128" y="200" text-anchor="middle" font-size="32">{icon}</text>
  <text x="128" y="235" text-anchor="middle" font-size="14" fill="{color}">{label}</text>
</svg>"""

BACKSTORY_EXCERPT = 200


class PortraitRequest(CamelModel):
    prompt: str
    character_class: str
    aspect_ratio: AspectRatio = "1:1"
    quality: Quality = "standard"


class PortraitResult(CamelModel):
    url: str
    generation_time_ms: int = 0
    provider: str = "placeholder"


class PortraitOutcome(CamelModel):
    """What the UI shows after an attempt, with its retry/skip affordances."""

    result: PortraitResult
    failed: bool = False
    can_retry: bool = False
    can_skip: bool = True
    error: str | None = None


class PortraitError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PortraitGenerator(Protocol):
    async def __call__(self, request: PortraitRequest) -> PortraitResult: ...


def build_portrait_prompt(
    character_class: str, backstory: str = "", race: str = "human"
) -> str:
    visuals = CLASS_VISUALS.get(character_class, CLASS_VISUALS["Fighter"])
    prompt = (
        f"Fantasy D&D character portrait, {race} {character_class}, {visuals}, "
        "digital art, detailed face and upper body, epic fantasy setting, "
        "dramatic lighting, high quality"
    )
    excerpt = backstory[:BACKSTORY_EXCERPT].strip()
    if excerpt:
        prompt += f", character inspired by: {excerpt}"
    return prompt


def placeholder_url(character_class: str) -> str:
    """Class-coloured SVG silhouette as a base64 data URL."""
    color, icon = _PLACEHOLDER_STYLE.get(character_class, _PLACEHOLDER_STYLE["Fighter"])
    svg = _PLACEHOLDER_SVG.format(color=color, icon=icon, label=character_class)
    encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------

class PlaceholderPortraits:
    """No network: always the class placeholder."""

    async def __call__(self, request: PortraitRequest) -> PortraitResult:
        return PortraitResult(url=placeholder_url(request.character_class))


class ProxyPortraits:
    """Posts portrait requests to the proxy's /api/images/generate endpoint.

    Expects {"url", "generationTimeMs"?, "provider"?} back. The bundled proxy
    answers 501 until an image provider is wired in.
    """

    def __init__(self, proxy_url: str, timeout: float = 60.0) -> None:
        self._base_url = proxy_url.rstrip("/")
        self._timeout = timeout

    @property
    def url(self) -> str:
        return f"{self._base_url}/api/images/generate"

    async def __call__(self, request: PortraitRequest) -> PortraitResult:
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.url, json=request.model_dump(by_alias=True))
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PortraitError(
                f"Image proxy returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise PortraitError(f"Image proxy unreachable: {e}") from e

        try:
            data = resp.json()
            url = data["url"]
        except (ValueError, KeyError, TypeError) as e:
            raise PortraitError("Unexpected response format from image proxy") from e
        elapsed_ms = int((time.monotonic() - started) * 1000)
        return PortraitResult(
            url=url,
            generation_time_ms=int(data.get("generationTimeMs", elapsed_ms)),
            provider=str(data.get("provider", "proxy")),
        )


async def generate_portrait(
    generator: PortraitGenerator, request: PortraitRequest
) -> PortraitOutcome:
    """Try the generator; on any PortraitError fall back to the placeholder."""
    try:
        result = await generator(request)
    except PortraitError as e:
        logger.warning(
            "event=portrait_failed class=%s status=%s error=%s",
            request.character_class, e.status_code, e,
        )
        return PortraitOutcome(
            result=PortraitResult(url=placeholder_url(request.character_class)),
            failed=True,
            can_retry=e.status_code != 501,
            can_skip=True,
            error=str(e),
        )
    logger.info("event=portrait_generated provider=%s ms=%d", result.provider, result.generation_time_ms)
    return PortraitOutcome(result=result)

"""Pydantic request/response models for API endpoints."""

from typing import Literal

from pydantic import Field

from tnes.models import CamelModel, Character
from tnes.portraits import AspectRatio, Quality
from tnes.prompts import MAX_KEYWORDS


class BackstoryBody(CamelModel):
    method: Literal["full", "keywords", "class-based"] = "full"
    character_name: str
    character_class: str
    keywords: list[str] = Field(default_factory=list, max_length=MAX_KEYWORDS)


class PortraitBody(CamelModel):
    character_class: str
    backstory: str = ""
    race: str = "human"
    aspect_ratio: AspectRatio = "1:1"
    quality: Quality = "standard"


class StartCampaignBody(CamelModel):
    character: Character
    type: Literal["keywords", "random"] = "random"
    keywords: list[str] = Field(default_factory=list, max_length=MAX_KEYWORDS)


class ChoiceBody(CamelModel):
    choice_id: str


class RollBody(CamelModel):
    total: int | None = None

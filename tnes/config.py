"""Settings from the environment.

`.env` at the project root is loaded by the app and the launcher; this module
only reads os.environ. Every value has a default so a bare checkout runs in
mock mode without any configuration.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field

from tnes.llm import DEFAULT_MAX_TOKENS, DEFAULT_MODEL, DEFAULT_TIMEOUT, LLM, MockLLM, ProxyLLM
from tnes.prompts import PromptSettings

DEFAULT_UPSTREAM_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

_TRUE = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    # Generation client
    proxy_url: str = "http://localhost:13013"
    model: str = DEFAULT_MODEL
    temperature: float = Field(default=0.8, ge=0.0, le=1.0)
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    max_tokens: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_MAX_TOKENS))
    mock: bool = False
    dynamic_decisions: bool = True

    # Prompts
    word_limit: int = Field(default=200, ge=20)
    tone: str | None = None

    # Proxy (server side)
    upstream_url: str = DEFAULT_UPSTREAM_URL
    api_key: str = ""
    anthropic_version: str = ANTHROPIC_VERSION
    upstream_timeout: float = Field(default=120.0, gt=0)
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173"])

    # Storage
    data_dir: Path = Path("data")

    def prompt_settings(self) -> PromptSettings:
        return PromptSettings(word_limit=self.word_limit, tone=self.tone)

    def build_llm(self) -> LLM:
        if self.mock:
            return MockLLM()
        return ProxyLLM(
            self.proxy_url,
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
        )


def _flag(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from environment variables.

    Variables: TNES_PROXY_URL, TNES_MODEL, TNES_TEMPERATURE, TNES_TIMEOUT,
    TNES_MAX_TOKENS_<STAGE>, TNES_MOCK, TNES_DYNAMIC_DECISIONS,
    TNES_WORD_LIMIT, TNES_TONE, CLAUDE_API_URL, CLAUDE_API_KEY (or
    VITE_CLAUDE_API_KEY), TNES_CORS_ORIGINS (comma-separated), DATA_DIR.
    """
    env = os.environ if env is None else env
    fields: dict = {}

    for key, name in (
        ("TNES_PROXY_URL", "proxy_url"),
        ("TNES_MODEL", "model"),
        ("TNES_TEMPERATURE", "temperature"),
        ("TNES_TIMEOUT", "timeout"),
        ("TNES_WORD_LIMIT", "word_limit"),
        ("CLAUDE_API_URL", "upstream_url"),
        ("DATA_DIR", "data_dir"),
    ):
        if env.get(key):
            fields[name] = env[key]

    if env.get("TNES_CORS_ORIGINS"):
        fields["cors_origins"] = [o.strip() for o in env["TNES_CORS_ORIGINS"].split(",") if o.strip()]
    if env.get("TNES_TONE"):
        fields["tone"] = env["TNES_TONE"]
    fields["api_key"] = env.get("CLAUDE_API_KEY") or env.get("VITE_CLAUDE_API_KEY") or ""
    fields["mock"] = _flag(env.get("TNES_MOCK"), False)
    fields["dynamic_decisions"] = _flag(env.get("TNES_DYNAMIC_DECISIONS"), True)

    max_tokens = dict(DEFAULT_MAX_TOKENS)
    for stage in DEFAULT_MAX_TOKENS:
        value = env.get(f"TNES_MAX_TOKENS_{stage.upper()}")
        if value:
            max_tokens[stage] = int(value)
    fields["max_tokens"] = max_tokens

    return Settings.model_validate(fields)

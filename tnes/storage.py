"""JSON file storage for campaign save slots.

All state is stored in flat JSON files under a configurable base directory.
There is no database or ORM; reads and writes go through plain helper
methods that load and dump JSON.

Directory layout:

    {base}/
      slots/
        {slot_id}.json        ← one SaveBundle per campaign slot

The surrounding app allows at most MAX_SLOTS concurrent campaigns; saving a
new slot beyond that raises SlotLimitReached. Overwriting an existing slot is
always allowed.
"""

from __future__ import annotations

import json
import re
import secrets
import unicodedata
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import Field

from tnes.models import (
    CamelModel,
    CampaignDecision,
    CampaignDecisionResult,
    CampaignGenerationResult,
    CampaignPlayState,
    Character,
    CharacterStatus,
    ChoiceId,
    GenerationSource,
    StoryContext,
)

MAX_SLOTS = 2


def slugify(title: str) -> str:
    """Convert a title to a filesystem-safe slug.

    "The Drowned Crown" → "the-drowned-crown"
    """
    text = unicodedata.normalize("NFKD", title)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"['\"]", "", text)  # strip apostrophes/quotes before hyphenation
    text = re.sub(r"[^a-z0-9]+", "-", text)
    text = text.strip("-")
    return text or "untitled"


def campaign_id(title: str) -> str:
    """Title slug plus a short random suffix, unique per generated arc."""
    return f"{slugify(title)}-{secrets.token_hex(3)}"


class SlotLimitReached(RuntimeError):
    """Raised when saving a new slot would exceed MAX_SLOTS."""


class SaveData(CamelModel):
    """Campaign state beside the history: enough to rebuild the play state."""

    campaign: CampaignGenerationResult | None = None
    story_context: StoryContext | None = None
    campaign_id: str = ""
    current_decision: int = 1
    is_complete: bool = False
    character_status: CharacterStatus | None = None
    pending_choice: ChoiceId | None = None
    campaign_source: GenerationSource | None = None
    started_at: datetime | None = None
    saved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SaveBundle(CamelModel):
    """Serialized {character, currentScene, storyHistory, ui, saveData} bundle."""

    character: Character | None = None
    current_scene: CampaignDecision | None = None
    story_history: list[CampaignDecisionResult] = Field(default_factory=list)
    ui: dict[str, Any] = Field(default_factory=dict)
    save_data: SaveData = Field(default_factory=SaveData)

    def play_state(self) -> CampaignPlayState | None:
        """Rebuild the play state, or None if no campaign was running."""
        data = self.save_data
        if not data.campaign_id or data.character_status is None:
            return None
        return CampaignPlayState(
            campaign_id=data.campaign_id,
            current_decision=data.current_decision,
            decision_history=list(self.story_history),
            is_complete=data.is_complete,
            character_status=data.character_status,
        )


class Storage:
    def __init__(self, base_path: Path, max_slots: int = MAX_SLOTS) -> None:
        self._base = base_path
        self._slots_root = base_path / "slots"
        self._slots_root.mkdir(parents=True, exist_ok=True)
        self._max_slots = max_slots

    @property
    def max_slots(self) -> int:
        return self._max_slots

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _slot_file(self, slot_id: str) -> Path:
        return self._slots_root / f"{slugify(slot_id)}.json"

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2))

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------

    def list_slots(self) -> list[str]:
        return sorted(p.stem for p in self._slots_root.glob("*.json"))

    def load(self, slot_id: str) -> SaveBundle | None:
        path = self._slot_file(slot_id)
        if not path.exists():
            return None
        return SaveBundle.model_validate(self._read_json(path))

    def save(self, slot_id: str, bundle: SaveBundle) -> None:
        path = self._slot_file(slot_id)
        if not path.exists() and len(self.list_slots()) >= self._max_slots:
            raise SlotLimitReached(
                f"All {self._max_slots} campaign slots are in use, delete one first"
            )
        self._write_json(path, bundle.model_dump(mode="json", by_alias=True))

    def delete(self, slot_id: str) -> bool:
        path = self._slot_file(slot_id)
        if not path.exists():
            return False
        path.unlink()
        return True

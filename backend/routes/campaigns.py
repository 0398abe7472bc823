"""Campaign play endpoints: backstories, portraits and save-slot campaigns.

Each request restores a CampaignSession from its save slot, applies one
operation and saves the snapshot back. Requests for the same slot are
serialised with a per-slot lock, so at most one resolution is in flight.
"""

from fastapi import APIRouter, HTTPException, Request

from tnes.generation import PreconditionViolation, generate_backstory
from tnes.models import CharacterIntegration, dump
from tnes.play import InvalidTransition
from tnes.portraits import PortraitRequest, build_portrait_prompt, generate_portrait
from tnes.prompts import CampaignRequest, ClassArchetypeBackstory, KeywordBackstory, OpenEndedBackstory
from tnes.session import CampaignSession
from tnes.storage import SaveBundle, SlotLimitReached, Storage, slugify

from .models import BackstoryBody, ChoiceBody, PortraitBody, RollBody, StartCampaignBody

router = APIRouter()


def _storage(request: Request) -> Storage:
    return request.app.state.storage


def _session(request: Request, bundle: SaveBundle | None = None) -> CampaignSession:
    state = request.app.state
    session = CampaignSession(
        state.llm,
        dice=state.dice,
        prompt_settings=state.settings.prompt_settings(),
        dynamic_decisions=state.settings.dynamic_decisions,
    )
    if bundle is not None:
        session.restore(bundle)
    return session


def _load(request: Request, slot: str) -> SaveBundle:
    bundle = _storage(request).load(slot)
    if bundle is None:
        raise HTTPException(404, "Campaign slot not found")
    return bundle


def _view(slot: str, bundle: SaveBundle) -> dict:
    return {"slotId": slugify(slot), "bundle": dump(bundle)}


# ---------------------------------------------------------------------------
# Character creation helpers
# ---------------------------------------------------------------------------

@router.post("/backstories")
async def create_backstory(request: Request, body: BackstoryBody):
    """Generate a backstory. Falls back to a class backstory on any failure."""
    if body.method == "keywords":
        if not body.keywords:
            raise HTTPException(422, "Keyword backstories need at least one keyword")
        req = KeywordBackstory(
            character_name=body.character_name,
            character_class=body.character_class,
            keywords=body.keywords,
        )
    elif body.method == "class-based":
        req = ClassArchetypeBackstory(
            character_name=body.character_name, character_class=body.character_class
        )
    else:
        req = OpenEndedBackstory(
            character_name=body.character_name, character_class=body.character_class
        )
    settings = request.app.state.settings
    try:
        generated = await generate_backstory(request.app.state.llm, req, settings.prompt_settings())
    except PreconditionViolation as e:
        raise HTTPException(409, str(e))
    return generated.model_dump(mode="json")


@router.post("/portraits")
async def create_portrait(request: Request, body: PortraitBody):
    """Generate a portrait; failures come back as a placeholder with retry/skip flags."""
    portrait_request = PortraitRequest(
        prompt=build_portrait_prompt(body.character_class, body.backstory, body.race),
        character_class=body.character_class,
        aspect_ratio=body.aspect_ratio,
        quality=body.quality,
    )
    outcome = await generate_portrait(request.app.state.portraits, portrait_request)
    return dump(outcome)


# ---------------------------------------------------------------------------
# Campaign slots
# ---------------------------------------------------------------------------

@router.get("/campaigns")
async def list_campaigns(request: Request):
    """List save slots in use."""
    return _storage(request).list_slots()


@router.post("/campaigns/{slot}", status_code=201)
async def start_campaign(request: Request, slot: str, body: StartCampaignBody):
    """Generate a campaign for the character and save it into an empty slot."""
    storage = _storage(request)
    slot_id = slugify(slot)
    async with request.app.state.slot_locks[slot_id]:
        slots = storage.list_slots()
        if slot_id in slots:
            raise HTTPException(409, "Campaign slot already in use")
        if len(slots) >= storage.max_slots:
            raise HTTPException(409, f"All {storage.max_slots} campaign slots are in use")

        session = _session(request)
        session.character = body.character
        campaign_request = CampaignRequest(
            type=body.type,
            keywords=body.keywords,
            character_integration=CharacterIntegration.from_character(body.character),
        )
        generated = await session.start_campaign(campaign_request)
        bundle = session.snapshot()
        try:
            storage.save(slot_id, bundle)
        except SlotLimitReached as e:
            raise HTTPException(409, str(e))
    return {**_view(slot_id, bundle), "source": generated.source}


@router.get("/campaigns/{slot}")
async def get_campaign(request: Request, slot: str):
    """Get a saved campaign bundle."""
    return _view(slot, _load(request, slot))


@router.delete("/campaigns/{slot}")
async def delete_campaign(request: Request, slot: str):
    """Delete a save slot."""
    if not _storage(request).delete(slot):
        raise HTTPException(404, "Campaign slot not found")
    return {"ok": True}


@router.post("/campaigns/{slot}/choice")
async def select_choice(request: Request, slot: str, body: ChoiceBody):
    """Select a choice of the current decision (or a completion action)."""
    slot_id = slugify(slot)
    async with request.app.state.slot_locks[slot_id]:
        session = _session(request, _load(request, slot_id))
        try:
            step = await session.handle_choice_select(body.choice_id)
        except InvalidTransition as e:
            raise HTTPException(400, str(e))
        except PreconditionViolation as e:
            raise HTTPException(409, str(e))
        if step.kind == "main_menu":
            bundle = _load(request, slot_id)
        else:
            bundle = session.snapshot()
            _storage(request).save(slot_id, bundle)
    return {**_view(slot_id, bundle), "step": dump(step)}


@router.post("/campaigns/{slot}/roll")
async def roll_dice(request: Request, slot: str, body: RollBody):
    """Resolve the pending checked choice with a reported total, or roll server-side."""
    slot_id = slugify(slot)
    async with request.app.state.slot_locks[slot_id]:
        session = _session(request, _load(request, slot_id))
        try:
            step = await session.handle_dice_roll(body.total)
        except InvalidTransition as e:
            raise HTTPException(400, str(e))
        except PreconditionViolation as e:
            raise HTTPException(409, str(e))
        bundle = session.snapshot()
        _storage(request).save(slot_id, bundle)
    return {**_view(slot_id, bundle), "step": dump(step)}


@router.get("/campaigns/{slot}/summary")
async def campaign_summary(request: Request, slot: str):
    """Read-only summary of a campaign; never changes the slot."""
    session = _session(request, _load(request, slot))
    try:
        return dump(session.view_summary())
    except PreconditionViolation as e:
        raise HTTPException(409, str(e))

"""
FastAPI routes for the studio.

Creator Endpoints (one wizard session per id):
  POST   /creator/sessions                        — Open a session (step 1)
  GET    /creator/sessions/{id}                   — Current state, poll during step 5
  DELETE /creator/sessions/{id}                   — Close a session
  PUT    /creator/sessions/{id}/product           — Edit product fields
  POST   /creator/sessions/{id}/product/submit    — Validate, go to step 2
  PUT    /creator/sessions/{id}/character         — Edit character fields
  POST   /creator/sessions/{id}/assets            — Script + 3 images (15 credits)
  POST   /creator/sessions/{id}/selection/toggle  — Select / deselect an image
  POST   /creator/sessions/{id}/selection/confirm — Go to step 4
  PUT    /creator/sessions/{id}/video-length      — 8 / 16 / 24 seconds
  PUT    /creator/sessions/{id}/script            — Edit the script
  POST   /creator/sessions/{id}/video-access      — Grant the billed video key
  POST   /creator/sessions/{id}/video             — Start clip generation (background)
  POST   /creator/sessions/{id}/back              — Previous step
  POST   /creator/sessions/{id}/reset             — New project, same character

Asset Endpoints:
  GET    /assets            — List the caller's assets
  GET    /assets/stats      — Counts per type
  DELETE /assets/{id}       — Delete one asset

Tool Endpoints:
  POST   /tools/image         — Quick image
  POST   /tools/video         — Quick video
  POST   /tools/analyze       — Image analysis
  POST   /tools/comic/panels  — Split a story into panel descriptions
  POST   /tools/comic         — One multi-panel comic strip

Admin Endpoints:
  GET    /admin/profiles                 — All profiles
  POST   /admin/profiles/{id}/credits    — Top up a user's balance
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel

from ..auth import current_user, require_admin
from ..errors import (
    AuthorizationRequired,
    InsufficientCredits,
    ValidationError,
)
from ..models import (
    AnalyzeRequest,
    AssetType,
    CharacterInfo,
    ComicRequest,
    GeneratedAsset,
    PanelBreakdownRequest,
    ProductInfo,
    QuickImageRequest,
    QuickVideoRequest,
    ScriptRequest,
    SessionUser,
    ToggleImageRequest,
    TopUpRequest,
    UserProfile,
    VideoAccessRequest,
    VideoLengthRequest,
)
from ..services import CreatorSession, Services, get_services
from .state import CreatorState

logger = logging.getLogger(__name__)


class SessionResponse(BaseModel):
    session_id: str
    credits: float
    state: CreatorState
    video_cost: float


class AnalysisResponse(BaseModel):
    text: str
    credits: float


class PanelBreakdownResponse(BaseModel):
    panels: list[str]


class ComicResponse(BaseModel):
    panels: list[str]
    asset: GeneratedAsset
    credits: float


def _session_response(session: CreatorSession) -> SessionResponse:
    pipeline = session.pipeline
    return SessionResponse(
        session_id=session.id,
        credits=pipeline.ledger.balance,
        state=pipeline.state,
        video_cost=pipeline.video_cost(),
    )


def _raise_http(e: Exception, action: str):
    """Map a studio failure onto the HTTP status the frontend expects."""
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, InsufficientCredits):
        raise HTTPException(status_code=402, detail=str(e))
    if isinstance(e, ValidationError):
        raise HTTPException(status_code=400, detail=str(e))
    if isinstance(e, AuthorizationRequired):
        raise HTTPException(status_code=403, detail="video_authorization_required")
    if isinstance(e, KeyError):
        raise HTTPException(status_code=404, detail="Session not found")
    if isinstance(e, PermissionError):
        raise HTTPException(status_code=403, detail=str(e))
    logger.error(f"{action} failed: {e}", exc_info=True)
    raise HTTPException(status_code=500, detail=str(e))


def _owned_session(session_id: str, user: SessionUser, services: Services) -> CreatorSession:
    try:
        return services.get_session(session_id, user.id)
    except (KeyError, PermissionError) as e:
        _raise_http(e, "Session lookup")


# ═════════════════════════════════════════════════════════════════════════════
# Creator Router
# ═════════════════════════════════════════════════════════════════════════════

creator_router = APIRouter(prefix="/creator/sessions", tags=["creator"])


@creator_router.post("", response_model=SessionResponse)
async def open_session(
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    try:
        session = await services.open_session(user.id)
    except Exception as e:
        _raise_http(e, "Open session")
    return _session_response(session)


@creator_router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    """
    Current wizard state.

    Frontend Instructions:
      - step 5 → poll until step is 6 (result_video set) or 4 (error set)
      - authorization_required → show the key dialog, then POST video-access
    """
    return _session_response(_owned_session(session_id, user, services))


@creator_router.delete("/{session_id}")
async def close_session(
    session_id: str,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    session = _owned_session(session_id, user, services)
    services.close_session(session.id)
    return {"status": "ok", "session_id": session.id}


# ── A. Inputs (steps 1–2) ───────────────────────────────────────────────────

@creator_router.put("/{session_id}/product", response_model=SessionResponse)
async def update_product(
    session_id: str,
    product: ProductInfo,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    session = _owned_session(session_id, user, services)
    session.pipeline.update_product(product)
    return _session_response(session)


@creator_router.post("/{session_id}/product/submit", response_model=SessionResponse)
async def submit_product(
    session_id: str,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    session = _owned_session(session_id, user, services)
    session.pipeline.submit_product()
    return _session_response(session)


@creator_router.put("/{session_id}/character", response_model=SessionResponse)
async def update_character(
    session_id: str,
    character: CharacterInfo,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    session = _owned_session(session_id, user, services)
    session.pipeline.update_character(character)
    return _session_response(session)


# ── B. Batch generate (step 2 → 3) ──────────────────────────────────────────

@creator_router.post("/{session_id}/assets", response_model=SessionResponse)
async def generate_assets(
    session_id: str,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    """
    Script + 3 candidate images. Failures land in `state.error`; the
    request itself still succeeds so the wizard stays interactive.

    Errors:
      - 409: A generation is already running for this session
    """
    session = _owned_session(session_id, user, services)
    if session.busy:
        raise HTTPException(status_code=409, detail="Generation already in progress")

    session.busy = True
    try:
        await session.pipeline.generate_assets()
    except Exception as e:
        _raise_http(e, "Asset generation")
    finally:
        session.busy = False
    return _session_response(session)


# ── C. Selection and settings (steps 3–4) ───────────────────────────────────

@creator_router.post("/{session_id}/selection/toggle", response_model=SessionResponse)
async def toggle_image(
    session_id: str,
    request: ToggleImageRequest,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    session = _owned_session(session_id, user, services)
    session.pipeline.toggle_image(request.image_id, request.multiple)
    return _session_response(session)


@creator_router.post("/{session_id}/selection/confirm", response_model=SessionResponse)
async def confirm_selection(
    session_id: str,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    session = _owned_session(session_id, user, services)
    session.pipeline.confirm_selection()
    return _session_response(session)


@creator_router.put("/{session_id}/video-length", response_model=SessionResponse)
async def choose_video_length(
    session_id: str,
    request: VideoLengthRequest,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    session = _owned_session(session_id, user, services)
    session.pipeline.choose_video_length(request.video_length)
    return _session_response(session)


@creator_router.put("/{session_id}/script", response_model=SessionResponse)
async def edit_script(
    session_id: str,
    request: ScriptRequest,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    session = _owned_session(session_id, user, services)
    session.pipeline.edit_script(request.script)
    return _session_response(session)


@creator_router.post("/{session_id}/video-access", response_model=SessionResponse)
async def grant_video_access(
    session_id: str,
    request: VideoAccessRequest,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    session = _owned_session(session_id, user, services)
    try:
        session.pipeline.grant_video_access(request.api_key)
    except Exception as e:
        _raise_http(e, "Video access")
    return _session_response(session)


# ── D. Final generate (step 4 → 5 → 6) ──────────────────────────────────────

@creator_router.post("/{session_id}/video", response_model=SessionResponse)
async def generate_video(
    session_id: str,
    background_tasks: BackgroundTasks,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    """
    Start clip generation. Returns at step 5; poll GET for progress.

    Errors:
      - 409: Generation already running for this session
    """
    session = _owned_session(session_id, user, services)
    if session.busy:
        raise HTTPException(status_code=409, detail="Generation already in progress")

    pipeline = session.pipeline
    if await pipeline.begin_video():
        session.busy = True
        background_tasks.add_task(_render_clips, session)
    return _session_response(session)


async def _render_clips(session: CreatorSession) -> None:
    try:
        await session.pipeline.render_clips()
    except Exception as e:
        logger.error(f"[{session.id}] clip rendering crashed: {e}", exc_info=True)
    finally:
        session.busy = False


# ── E. Navigation ───────────────────────────────────────────────────────────

@creator_router.post("/{session_id}/back", response_model=SessionResponse)
async def go_back(
    session_id: str,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    session = _owned_session(session_id, user, services)
    session.pipeline.go_back()
    return _session_response(session)


@creator_router.post("/{session_id}/reset", response_model=SessionResponse)
async def reset(
    session_id: str,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    session = _owned_session(session_id, user, services)
    if session.busy:
        raise HTTPException(status_code=409, detail="Generation in progress")
    session.pipeline.reset()
    return _session_response(session)


# ═════════════════════════════════════════════════════════════════════════════
# Asset Router
# ═════════════════════════════════════════════════════════════════════════════

assets_router = APIRouter(prefix="/assets", tags=["assets"])


@assets_router.get("", response_model=list[GeneratedAsset])
async def list_assets(
    asset_type: Optional[AssetType] = Query(default=None, alias="type"),
    limit: Optional[int] = None,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    """The caller's assets, newest first."""
    try:
        return await services.assets.list_user_assets(user.id, asset_type, limit)
    except Exception as e:
        _raise_http(e, "List assets")


@assets_router.get("/stats")
async def asset_stats(
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    try:
        return await services.assets.get_user_asset_stats(user.id)
    except Exception as e:
        _raise_http(e, "Asset stats")


@assets_router.delete("/{asset_id}")
async def delete_asset(
    asset_id: str,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    try:
        await services.assets.delete_user_asset(user.id, asset_id)
    except ValidationError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        _raise_http(e, "Delete asset")
    return {"status": "ok", "asset_id": asset_id}


# ═════════════════════════════════════════════════════════════════════════════
# Tools Router
# ═════════════════════════════════════════════════════════════════════════════

tools_router = APIRouter(prefix="/tools", tags=["tools"])


@tools_router.post("/image", response_model=GeneratedAsset)
async def quick_image(
    request: QuickImageRequest,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    try:
        tools = await services.tools_for(user.id)
        return await tools.quick_image(request.prompt, request.aspect_ratio, request.reference)
    except Exception as e:
        _raise_http(e, "Quick image")


@tools_router.post("/video", response_model=GeneratedAsset)
async def quick_video(
    request: QuickVideoRequest,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    """
    Errors:
      - 403 `video_authorization_required`: grant a billed key first
      - 402: Insufficient credits
    """
    try:
        tools = await services.tools_for(user.id)
        return await tools.quick_video(request.prompt, request.aspect_ratio, request.image)
    except Exception as e:
        _raise_http(e, "Quick video")


@tools_router.post("/video-access")
async def grant_tool_video_access(
    request: VideoAccessRequest,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    try:
        services.gate_for(user.id).grant(request.api_key)
    except Exception as e:
        _raise_http(e, "Video access")
    return {"status": "ok"}


@tools_router.post("/analyze", response_model=AnalysisResponse)
async def analyze_image(
    request: AnalyzeRequest,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    try:
        tools = await services.tools_for(user.id)
        text = await tools.analyze(request.prompt, request.image)
    except Exception as e:
        _raise_http(e, "Image analysis")
    return AnalysisResponse(text=text, credits=tools.ledger.balance)


@tools_router.post("/comic/panels", response_model=PanelBreakdownResponse)
async def comic_panels(
    request: PanelBreakdownRequest,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    """Story → one editable description per panel. Not billed."""
    try:
        tools = await services.tools_for(user.id)
        panels = await tools.comic_panels(request.story, request.layout, request.characters)
    except Exception as e:
        _raise_http(e, "Panel breakdown")
    return PanelBreakdownResponse(panels=panels)


@tools_router.post("/comic", response_model=ComicResponse)
async def generate_comic(
    request: ComicRequest,
    user: SessionUser = Depends(current_user),
    services: Services = Depends(get_services),
):
    """
    Errors:
      - 400: Empty story, or panel count does not match the layout
      - 402: Insufficient credits
    """
    try:
        tools = await services.tools_for(user.id)
        strip = await tools.comic(
            request.story,
            request.layout,
            request.art_style,
            request.color_mode,
            request.characters,
            request.panels,
        )
    except Exception as e:
        _raise_http(e, "Comic generation")
    return ComicResponse(panels=strip.panels, asset=strip.asset, credits=tools.ledger.balance)


# ═════════════════════════════════════════════════════════════════════════════
# Admin Router
# ═════════════════════════════════════════════════════════════════════════════

admin_router = APIRouter(prefix="/admin", tags=["admin"])


@admin_router.get("/profiles", response_model=list[UserProfile])
async def list_profiles(
    admin: SessionUser = Depends(require_admin),
    services: Services = Depends(get_services),
):
    try:
        return await asyncio.to_thread(services.store.list_profiles)
    except Exception as e:
        _raise_http(e, "List profiles")


@admin_router.post("/profiles/{user_id}/credits")
async def top_up_credits(
    user_id: str,
    request: TopUpRequest,
    admin: SessionUser = Depends(require_admin),
    services: Services = Depends(get_services),
):
    try:
        ledger = await services.ledger_for(user_id)
        await ledger.refresh()
        balance = await ledger.credit(request.amount)
    except ValidationError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        _raise_http(e, "Top up")

    logger.info(f"Admin {admin.id} added {request.amount:g} credits to {user_id}")
    return {"status": "ok", "user_id": user_id, "credits": balance}

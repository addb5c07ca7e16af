"""
Creator wizard state container and reducer.

`reduce(state, event)` is pure: it never performs I/O and never mutates its
input. The pipeline performs the side effects and feeds their outcomes back
in as events.

Steps:
  1 Product Info → 2 Character Info → 3 Image/Script Review
  → 4 Video Settings → 5 Generating → 6 Result
"""

from dataclasses import dataclass
from typing import Optional, Union

from pydantic import BaseModel, Field

from ..models import (
    CharacterInfo,
    CreatorProject,
    CreatorStep,
    GeneratedAsset,
    ProductInfo,
    VideoLength,
)


class ClipProgress(BaseModel):
    current: int = 0
    total: int = 0


class CreatorState(BaseModel):
    project: CreatorProject = Field(default_factory=CreatorProject)
    loading: bool = False
    error: Optional[str] = None
    field_errors: dict[str, str] = Field(default_factory=dict)
    authorization_required: bool = False
    result_video: Optional[GeneratedAsset] = None
    clips: list[GeneratedAsset] = Field(default_factory=list)
    progress: Optional[ClipProgress] = None

    @property
    def step(self) -> CreatorStep:
        return self.project.step

    def selected_images(self) -> list[GeneratedAsset]:
        by_id = {img.id: img for img in self.project.generated_images}
        return [by_id[i] for i in self.project.selected_image_ids if i in by_id]


# ── Events ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProductChanged:
    product: ProductInfo


@dataclass(frozen=True)
class CharacterChanged:
    character: CharacterInfo


@dataclass(frozen=True)
class ProductSubmitted:
    pass


@dataclass(frozen=True)
class BatchStarted:
    pass


@dataclass(frozen=True)
class BatchSucceeded:
    script: str
    images: tuple[GeneratedAsset, ...]


@dataclass(frozen=True)
class BatchFailed:
    message: str


@dataclass(frozen=True)
class ImageToggled:
    image_id: str
    multiple: bool = False


@dataclass(frozen=True)
class SelectionConfirmed:
    pass


@dataclass(frozen=True)
class VideoLengthChosen:
    length: VideoLength


@dataclass(frozen=True)
class ScriptEdited:
    script: str


@dataclass(frozen=True)
class AuthorizationNeeded:
    message: str


@dataclass(frozen=True)
class AuthorizationGranted:
    pass


@dataclass(frozen=True)
class GenerationStarted:
    total_clips: int


@dataclass(frozen=True)
class ClipStarted:
    index: int


@dataclass(frozen=True)
class ClipSaved:
    asset: GeneratedAsset


@dataclass(frozen=True)
class GenerationSucceeded:
    pass


@dataclass(frozen=True)
class GenerationFailed:
    message: str


@dataclass(frozen=True)
class StepBack:
    pass


@dataclass(frozen=True)
class FailureReported:
    message: str


@dataclass(frozen=True)
class Reset:
    pass


Event = Union[
    ProductChanged, CharacterChanged, ProductSubmitted, BatchStarted, BatchSucceeded,
    BatchFailed, ImageToggled, SelectionConfirmed, VideoLengthChosen, ScriptEdited,
    AuthorizationNeeded, AuthorizationGranted, GenerationStarted, ClipStarted, ClipSaved,
    GenerationSucceeded, GenerationFailed, StepBack, FailureReported, Reset,
]

# Steps at which each event is accepted.
ALLOWED_STEPS = {
    ProductChanged: {CreatorStep.PRODUCT},
    CharacterChanged: {CreatorStep.CHARACTER},
    ProductSubmitted: {CreatorStep.PRODUCT},
    BatchStarted: {CreatorStep.CHARACTER},
    BatchSucceeded: {CreatorStep.CHARACTER},
    BatchFailed: {CreatorStep.CHARACTER},
    ImageToggled: {CreatorStep.REVIEW},
    SelectionConfirmed: {CreatorStep.REVIEW},
    VideoLengthChosen: {CreatorStep.REVIEW, CreatorStep.VIDEO_SETTINGS},
    ScriptEdited: {CreatorStep.REVIEW, CreatorStep.VIDEO_SETTINGS},
    AuthorizationNeeded: {CreatorStep.VIDEO_SETTINGS},
    AuthorizationGranted: set(CreatorStep),
    GenerationStarted: {CreatorStep.VIDEO_SETTINGS},
    ClipStarted: {CreatorStep.GENERATING},
    ClipSaved: {CreatorStep.GENERATING},
    GenerationSucceeded: {CreatorStep.GENERATING},
    GenerationFailed: {CreatorStep.GENERATING},
    StepBack: {CreatorStep.CHARACTER, CreatorStep.REVIEW, CreatorStep.VIDEO_SETTINGS},
    FailureReported: set(CreatorStep),
    Reset: set(CreatorStep),
}


# While a batch or a render is in flight only its own outcome may land.
IN_FLIGHT_EVENTS = (
    BatchSucceeded, BatchFailed, ClipStarted, ClipSaved,
    GenerationSucceeded, GenerationFailed, AuthorizationGranted,
)
BUSY_MESSAGE = "Please wait for the current generation to finish."


def accepts(state: CreatorState, event: Event) -> bool:
    if state.loading and not isinstance(event, IN_FLIGHT_EVENTS):
        return False
    return state.step in ALLOWED_STEPS[type(event)]


def _with_project(state: CreatorState, **changes) -> CreatorState:
    return state.model_copy(update={"project": state.project.model_copy(update=changes)})


def _validate_product(product: ProductInfo) -> dict[str, str]:
    errors: dict[str, str] = {}
    if not product.name.strip():
        errors["name"] = "Product name is required."
    if product.image is None:
        errors["image"] = "Product image is required."
    return errors


def reduce(state: CreatorState, event: Event) -> CreatorState:
    """Return the state after `event`. Out-of-step events only set `error`."""
    if not accepts(state, event):
        if state.loading and state.step in ALLOWED_STEPS[type(event)]:
            return state.model_copy(update={"error": BUSY_MESSAGE})
        return state.model_copy(update={
            "error": f"Cannot {type(event).__name__} from step {int(state.step)}.",
        })

    if isinstance(event, ProductChanged):
        return _with_project(state, product=event.product).model_copy(
            update={"field_errors": {}}
        )

    if isinstance(event, CharacterChanged):
        return _with_project(state, character=event.character)

    if isinstance(event, ProductSubmitted):
        errors = _validate_product(state.project.product)
        if errors:
            return state.model_copy(update={
                "field_errors": errors,
                "error": "Please fill in the required product fields.",
            })
        return _with_project(state, step=CreatorStep.CHARACTER).model_copy(
            update={"field_errors": {}, "error": None}
        )

    if isinstance(event, BatchStarted):
        return state.model_copy(update={"loading": True, "error": None})

    if isinstance(event, BatchSucceeded):
        return _with_project(
            state,
            step=CreatorStep.REVIEW,
            script=event.script,
            generated_images=list(event.images),
            selected_image_ids=[],
        ).model_copy(update={"loading": False, "error": None})

    if isinstance(event, BatchFailed):
        return state.model_copy(update={"loading": False, "error": event.message})

    if isinstance(event, ImageToggled):
        known = {img.id for img in state.project.generated_images}
        if event.image_id not in known:
            return state.model_copy(update={"error": "Selected image not found."})
        selected = list(state.project.selected_image_ids)
        if event.image_id in selected:
            selected.remove(event.image_id)
        elif event.multiple:
            selected.append(event.image_id)
        else:
            selected = [event.image_id]
        return _with_project(state, selected_image_ids=selected).model_copy(
            update={"error": None}
        )

    if isinstance(event, SelectionConfirmed):
        if not state.project.selected_image_ids:
            return state.model_copy(update={"error": "Please select at least one image."})
        return _with_project(state, step=CreatorStep.VIDEO_SETTINGS).model_copy(
            update={"error": None}
        )

    if isinstance(event, VideoLengthChosen):
        return _with_project(state, video_length=VideoLength(event.length))

    if isinstance(event, ScriptEdited):
        return _with_project(state, script=event.script)

    if isinstance(event, AuthorizationNeeded):
        return state.model_copy(update={
            "authorization_required": True,
            "loading": False,
            "error": event.message,
        })

    if isinstance(event, AuthorizationGranted):
        return state.model_copy(update={"authorization_required": False, "error": None})

    if isinstance(event, GenerationStarted):
        return _with_project(state, step=CreatorStep.GENERATING).model_copy(update={
            "loading": True,
            "error": None,
            "clips": [],
            "result_video": None,
            "progress": ClipProgress(current=0, total=event.total_clips),
        })

    if isinstance(event, ClipStarted):
        total = state.progress.total if state.progress else event.index
        return state.model_copy(update={"progress": ClipProgress(current=event.index, total=total)})

    if isinstance(event, ClipSaved):
        return state.model_copy(update={"clips": [*state.clips, event.asset]})

    if isinstance(event, GenerationSucceeded):
        if not state.clips:
            return _with_project(state, step=CreatorStep.VIDEO_SETTINGS).model_copy(update={
                "loading": False,
                "error": "No clips were generated.",
                "progress": None,
            })
        return _with_project(state, step=CreatorStep.RESULT).model_copy(update={
            "loading": False,
            "result_video": state.clips[0],
        })

    if isinstance(event, GenerationFailed):
        return _with_project(state, step=CreatorStep.VIDEO_SETTINGS).model_copy(update={
            "loading": False,
            "error": event.message,
            "progress": None,
        })

    if isinstance(event, StepBack):
        return _with_project(state, step=CreatorStep(state.step - 1)).model_copy(
            update={"error": None, "field_errors": {}}
        )

    if isinstance(event, FailureReported):
        return state.model_copy(update={"loading": False, "error": event.message})

    if isinstance(event, Reset):
        # Keep the creator look for the next product.
        fresh = CreatorProject(character=state.project.character)
        return CreatorState(project=fresh)

    raise TypeError(f"Unknown event {event!r}")

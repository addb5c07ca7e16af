"""
Pydantic models and enums for the studio.
"""

import base64
import binascii
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def new_id() -> str:
    return str(uuid4())


# ── Assets ───────────────────────────────────────────────────────────────────

class AssetType(str, Enum):
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    CHARACTER = "CHARACTER"


class GeneratedAsset(BaseModel):
    """A persisted media record. `url` and `prompt` never change once saved."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=new_id)
    type: AssetType
    url: str
    prompt: str
    created_at: int = Field(default_factory=now_ms, description="Epoch milliseconds")
    aspect_ratio: Optional[str] = None
    user_id: Optional[str] = None

    def to_row(self) -> dict:
        """Shape for the `assets` table."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type.value,
            "url": self.url,
            "prompt": self.prompt,
            "aspect_ratio": self.aspect_ratio,
            "created_at": datetime.fromtimestamp(
                self.created_at / 1000, tz=timezone.utc
            ).isoformat(),
        }

    @classmethod
    def from_row(cls, row: dict) -> "GeneratedAsset":
        created = row.get("created_at")
        if isinstance(created, str):
            created_ms = int(
                datetime.fromisoformat(created.replace("Z", "+00:00")).timestamp() * 1000
            )
        elif isinstance(created, (int, float)):
            created_ms = int(created)
        else:
            created_ms = now_ms()
        return cls(
            id=row["id"],
            type=AssetType(row["type"]),
            url=row["url"],
            prompt=row.get("prompt") or "",
            created_at=created_ms,
            aspect_ratio=row.get("aspect_ratio"),
            user_id=row.get("user_id"),
        )


class EmbeddedImage(BaseModel):
    """Inline binary as passed between the UI and the providers."""

    data: str = Field(..., description="Base64 payload without the data: prefix")
    mime_type: str = "image/png"

    @property
    def data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.data)

    @classmethod
    def from_data_uri(cls, value: str) -> "EmbeddedImage":
        """Accept either `data:<mime>;base64,<payload>` or a bare payload."""
        if value.startswith("data:"):
            header, _, payload = value.partition(",")
            mime = header[5:].split(";")[0] or "application/octet-stream"
        else:
            payload, mime = value, "image/png"
        try:
            base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("Embedded payload is not valid base64")
        return cls(data=payload, mime_type=mime)

    @classmethod
    def from_bytes(cls, raw: bytes, mime_type: str) -> "EmbeddedImage":
        return cls(data=base64.b64encode(raw).decode("utf-8"), mime_type=mime_type)


# ── Product ──────────────────────────────────────────────────────────────────

class ProductType(str, Enum):
    SKINCARE = "skincare"
    BEAUTY = "beauty"
    SUPPLEMENT = "supplement"
    FOOD = "food"
    FASHION = "fashion"
    TECH = "tech"
    HOME = "home"
    DEFAULT = "default"


class ProductInfo(BaseModel):
    name: str = ""
    description: str = ""
    price: str = ""
    target_audience: str = ""
    product_type: ProductType = ProductType.DEFAULT
    image: Optional[EmbeddedImage] = None


# ── Character ────────────────────────────────────────────────────────────────

class ReferenceType(str, Enum):
    PRODUCT = "product"     # derive the look from the product photo
    AI = "ai"               # let the model decide
    UPLOAD = "upload"       # user supplied a character reference


class Gender(str, Enum):
    FEMALE = "female"
    MALE = "male"


class Ethnicity(str, Enum):
    THAI = "thai"
    KOREAN = "korean"
    JAPANESE = "japanese"
    WESTERN = "western"


class SkinTone(str, Enum):
    FAIR = "fair"
    TAN = "tan"
    TWO_TONE = "two-tone"
    DARK = "dark"


class BodyType(str, Enum):
    SLIM = "slim"
    NORMAL = "normal"
    PLUMP = "plump"


class CaptionStyle(str, Enum):
    MODERN = "modern"
    MINIMAL = "minimal"
    BOLD = "bold"
    PASTEL = "pastel"


class CaptionPosition(str, Enum):
    TOP = "top"
    CENTER = "center"
    BOTTOM = "bottom"


class CaptionSettings(BaseModel):
    enabled: bool = False
    text: str = Field(default="", max_length=50)
    style: CaptionStyle = CaptionStyle.MODERN
    position: CaptionPosition = CaptionPosition.TOP


class CharacterInfo(BaseModel):
    gender: Gender = Gender.FEMALE
    ethnicity: Ethnicity = Ethnicity.THAI
    skin_tone: SkinTone = SkinTone.FAIR
    body_type: BodyType = BodyType.NORMAL
    reference_type: ReferenceType = ReferenceType.PRODUCT
    reference_image: Optional[EmbeddedImage] = None
    caption: CaptionSettings = Field(default_factory=CaptionSettings)


# ── Wizard project ───────────────────────────────────────────────────────────

class CreatorStep(IntEnum):
    PRODUCT = 1
    CHARACTER = 2
    REVIEW = 3
    VIDEO_SETTINGS = 4
    GENERATING = 5
    RESULT = 6


class VideoLength(IntEnum):
    SHORT = 8
    MEDIUM = 16
    LONG = 24

    @property
    def clip_count(self) -> int:
        return self.value // 8


class CreatorProject(BaseModel):
    """In-memory wizard project. Never persisted as a whole."""

    step: CreatorStep = CreatorStep.PRODUCT
    product: ProductInfo = Field(default_factory=ProductInfo)
    character: CharacterInfo = Field(default_factory=CharacterInfo)
    script: str = ""
    generated_images: list[GeneratedAsset] = Field(default_factory=list)
    selected_image_ids: list[str] = Field(default_factory=list)
    video_length: VideoLength = VideoLength.SHORT


# ── Comics ───────────────────────────────────────────────────────────────────

class ComicLayout(str, Enum):
    FOUR_PANEL = "4-panel"
    TWO_PANEL_VERTICAL = "2-panel-vertical"
    THREE_PANEL = "3-panel"
    FOUR_PANEL_MANGA = "4-panel-manga"

    @property
    def panel_count(self) -> int:
        return int(self.value[0])

    @property
    def manga(self) -> bool:
        return self is ComicLayout.FOUR_PANEL_MANGA


class ArtStyle(str, Enum):
    ANIME = "anime"
    MANGA = "manga"
    WESTERN = "western"
    CHIBI = "chibi"
    REALISTIC = "realistic"
    SKETCH = "sketch"


class ColorMode(str, Enum):
    COLOR = "color"
    BLACK_WHITE = "blackwhite"


class ComicCharacter(BaseModel):
    name: str
    description: str = ""
    visual_reference: Optional[EmbeddedImage] = None


class ComicStrip(BaseModel):
    panels: list[str]
    asset: GeneratedAsset


# ── Users ────────────────────────────────────────────────────────────────────

class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class UserProfile(BaseModel):
    id: str
    email: str = ""
    credits: float = 0
    role: UserRole = UserRole.USER


class SessionUser(BaseModel):
    id: str
    email: str = ""


# ═════════════════════════════════════════════════════════════════════════════
# API Request Models
# ═════════════════════════════════════════════════════════════════════════════

class ToggleImageRequest(BaseModel):
    image_id: str
    multiple: bool = False


class VideoLengthRequest(BaseModel):
    video_length: VideoLength


class ScriptRequest(BaseModel):
    script: str


class VideoAccessRequest(BaseModel):
    """Billed key the user pasted into the authorization dialog."""
    api_key: str = Field(..., min_length=1)


class QuickImageRequest(BaseModel):
    prompt: str
    aspect_ratio: str = "1:1"
    reference: Optional[EmbeddedImage] = None


class QuickVideoRequest(BaseModel):
    prompt: str = ""
    aspect_ratio: str = "16:9"
    image: Optional[EmbeddedImage] = None


class AnalyzeRequest(BaseModel):
    prompt: str = ""
    image: EmbeddedImage


class TopUpRequest(BaseModel):
    amount: float = Field(..., gt=0)


class PanelBreakdownRequest(BaseModel):
    story: str
    layout: ComicLayout = ComicLayout.FOUR_PANEL
    characters: list[ComicCharacter] = Field(default_factory=list)


class ComicRequest(BaseModel):
    story: str
    layout: ComicLayout = ComicLayout.FOUR_PANEL
    art_style: ArtStyle = ArtStyle.ANIME
    color_mode: ColorMode = ColorMode.COLOR
    characters: list[ComicCharacter] = Field(default_factory=list)
    # Panel descriptions from a prior breakdown; derived from the story when empty.
    panels: list[str] = Field(default_factory=list)

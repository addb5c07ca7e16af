"""
Runtime configuration for the studio worker.

Everything is read from the environment (or a local .env) once at import.
Costs and timings live here so the pipeline, tools and routes agree on them.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# ── Provider keys ────────────────────────────────────────────────────────────

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY", "")
# Veo is billed separately; the wizard refuses to start a video run without it.
VEO_API_KEY = os.getenv("VEO_API_KEY", "")
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

MODELS = {
    "IMAGE": "gemini-3-pro-image-preview",
    "VIDEO": "veo-3.0-fast-generate-001",
    "ANALYSIS": "gemini-2.0-flash",
}

# ── Supabase ─────────────────────────────────────────────────────────────────

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

# ── R2 object storage ────────────────────────────────────────────────────────

R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID", "")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY", "")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "assets")
R2_PUBLIC_URL = os.getenv("R2_PUBLIC_URL", "")

# ── Server ───────────────────────────────────────────────────────────────────

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8080"))


# ── Credits ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CostTable:
    image: float = 5
    video: float = 25             # per 8-second clip
    analysis: float = 2
    voiceover: float = 0.2        # per candidate image
    voice_base: float = 5
    voice_per_clip: float = 5
    comic: float = 5              # one multi-panel strip


COSTS = CostTable(
    image=_env_float("COST_IMAGE", 5),
    video=_env_float("COST_VIDEO", 25),
    analysis=_env_float("COST_ANALYSIS", 2),
    voiceover=_env_float("COST_VOICEOVER", 0.2),
    voice_base=_env_float("COST_VOICE_BASE", 5),
    voice_per_clip=_env_float("COST_VOICE_PER_CLIP", 5),
    comic=_env_float("COST_COMIC", 5),
)

# ── Timings ──────────────────────────────────────────────────────────────────

IMAGE_BATCH_SIZE = 3
IMAGE_BATCH_DELAY = 2.0       # seconds between candidate images
CLIP_DELAY = 3.0              # seconds between video clips
CLIP_SECONDS = 8

VIDEO_POLL_INTERVAL = 5       # seconds
VIDEO_POLL_TIMEOUT = 300      # 5 minutes max
REQUEST_TIMEOUT = 120         # text/image generateContent calls
UPLOAD_TIMEOUT = 60           # hard ceiling around a single R2 put

CREATOR_ASPECT_RATIO = "9:16"
COMIC_ASPECT_RATIO = "9:16"     # every strip layout is vertical
IMAGE_ASPECT_RATIOS = ["1:1", "2:3", "3:2", "3:4", "4:3", "9:16", "16:9", "21:9"]
VIDEO_ASPECT_RATIOS = ["16:9", "9:16"]

from typing import Optional

import pytest

from studio.assets import AssetRepository
from studio.creator.pipeline import CreatorPipeline
from studio.errors import PersistenceError, UploadError
from studio.gemini import VideoAccessGate
from studio.ledger import CreditLedger
from studio.models import (
    AssetType,
    CharacterInfo,
    EmbeddedImage,
    ProductInfo,
    ProductType,
    SessionUser,
    UserProfile,
    UserRole,
)
from studio.storage import R2Storage, UploadGateway

# 8-byte PNG signature; valid base64.
PNG = "iVBORw0KGgo="
MP4 = "AAAAIGZ0eXBpc29t"
USER_ID = "user-1"


class FakeStore:
    """In-memory stand-in for SupabaseStore with the same method surface."""

    def __init__(self, profiles=None):
        self.profiles = {p.id: p for p in (profiles or [])}
        self.assets: list[dict] = []
        self.tokens: dict[str, SessionUser] = {}
        self.credit_writes: list[float] = []
        self.fail_credit_writes = False
        self.fail_inserts = False

    def get_user(self, access_token):
        return self.tokens.get(access_token)

    def get_profile(self, user_id):
        profile = self.profiles.get(user_id)
        return profile.model_copy() if profile else None

    def list_profiles(self):
        return list(self.profiles.values())

    def update_credits(self, user_id, credits, expected=None):
        if self.fail_credit_writes:
            raise PersistenceError("connection reset")
        profile = self.profiles.get(user_id)
        if profile is None:
            return False
        if expected is not None and profile.credits != expected:
            return False
        self.profiles[user_id] = profile.model_copy(update={"credits": credits})
        self.credit_writes.append(credits)
        return True

    def insert_asset(self, row):
        if self.fail_inserts:
            raise PersistenceError("insert rejected")
        self.assets.append(dict(row))

    def get_asset(self, user_id, asset_id):
        for row in self.assets:
            if row["id"] == asset_id and row["user_id"] == user_id:
                return row
        return None

    def delete_asset(self, user_id, asset_id):
        self.assets = [
            r for r in self.assets if not (r["id"] == asset_id and r["user_id"] == user_id)
        ]

    def list_assets(self, user_id, asset_type=None, limit=None):
        rows = [r for r in self.assets if r["user_id"] == user_id]
        if asset_type:
            rows = [r for r in rows if r["type"] == asset_type.value]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return rows[:limit] if limit else rows

    def count_assets(self, user_id, asset_type=None):
        return len(self.list_assets(user_id, asset_type))

    def balance(self, user_id=USER_ID):
        return self.profiles[user_id].credits


class FakeStorage(R2Storage):
    """R2Storage with the bucket replaced by a dict."""

    def __init__(self):
        super().__init__(
            account_id="acct",
            access_key_id="key",
            secret_access_key="secret",
            bucket="assets",
            public_url="https://cdn.example.test",
        )
        self.objects: dict[str, bytes] = {}
        self.fail_puts = False
        self.fail_deletes = False

    def put(self, key, data, content_type):
        if self.fail_puts:
            raise UploadError("R2 unreachable")
        self.objects[key] = data
        return self.url_for_key(key)

    def delete(self, key):
        if self.fail_deletes:
            raise UploadError("R2 unreachable")
        self.objects.pop(key, None)


class FakeClient:
    """Records every provider call; `*_failures` maps 1-based call number → exception."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.image_failures: dict[int, Exception] = {}
        self.video_failures: dict[int, Exception] = {}
        self.script_failure: Optional[Exception] = None
        self.comic_failure: Optional[Exception] = None
        self.script = "Part 1: Meet my new glow. Part 2: Thirty days later."

    def _count(self, kind):
        return sum(1 for call in self.calls if call[0] == kind)

    async def generate_script(self, product_name, description, target_audience, price=None):
        self.calls.append(("script", product_name, price))
        if self.script_failure:
            raise self.script_failure
        return self.script

    async def generate_image(self, prompt, aspect_ratio, reference_image=None, secondary_image=None):
        self.calls.append(("image", prompt, aspect_ratio, reference_image, secondary_image))
        failure = self.image_failures.get(self._count("image"))
        if failure:
            raise failure
        return f"data:image/png;base64,{PNG}"

    async def generate_video(self, prompt, aspect_ratio, image=None, api_key=None):
        self.calls.append(("video", prompt, aspect_ratio, image, api_key))
        failure = self.video_failures.get(self._count("video"))
        if failure:
            raise failure
        return f"data:video/mp4;base64,{MP4}"

    async def generate_panel_breakdown(self, story, panel_count, characters=None):
        self.calls.append(("panels", story, panel_count, characters))
        return [f"Panel beat {n}" for n in range(1, panel_count + 1)]

    async def generate_comic(self, prompt, aspect_ratio, character_references=None):
        self.calls.append(("comic", prompt, aspect_ratio, character_references))
        if self.comic_failure:
            raise self.comic_failure
        return f"data:image/png;base64,{PNG}"

    async def analyze_image(self, prompt, image):
        self.calls.append(("analyze", prompt, image))
        return "A glass bottle of serum on a white background."

    def calls_of(self, kind):
        return [call for call in self.calls if call[0] == kind]


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def store():
    return FakeStore([
        UserProfile(id=USER_ID, email="creator@example.test", credits=100),
        UserProfile(id="admin-1", email="admin@example.test", credits=0, role=UserRole.ADMIN),
    ])


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def assets(store, storage):
    return AssetRepository(store, UploadGateway(storage, timeout=5))


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def gate():
    return VideoAccessGate("veo-key")


@pytest.fixture
def ledger(store):
    return CreditLedger(store, USER_ID, store.balance())


@pytest.fixture
def product():
    return ProductInfo(
        name="Glow Serum",
        description="Vitamin C brightening serum",
        price="",
        target_audience="Women 25-35",
        product_type=ProductType.SKINCARE,
        image=EmbeddedImage(data=PNG),
    )


@pytest.fixture
def character():
    return CharacterInfo()


@pytest.fixture
def make_pipeline(client, ledger, assets, gate, sleep):
    def _make(**overrides):
        kwargs = dict(
            user_id=USER_ID,
            client=client,
            ledger=ledger,
            assets=assets,
            gate=gate,
            sleep=sleep,
            batch_delay=2.0,
            clip_delay=3.0,
        )
        kwargs.update(overrides)
        return CreatorPipeline(**kwargs)

    return _make


def video_rows(store):
    return [r for r in store.assets if r["type"] == AssetType.VIDEO.value]

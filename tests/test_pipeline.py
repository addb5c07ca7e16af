import asyncio

import pytest

from studio.creator import pipeline as pipeline_module
from studio.creator.costs import batch_cost, final_cost
from studio.errors import GenerationError, VideoTimeoutError
from studio.gemini import VideoAccessGate
from studio.ledger import CreditLedger
from studio.models import (
    AssetType,
    CharacterInfo,
    CreatorStep,
    EmbeddedImage,
    ReferenceType,
    VideoLength,
)
from conftest import PNG, USER_ID, video_rows


@pytest.fixture(autouse=True)
def offline_seed(monkeypatch):
    """Persisted images live on the fake CDN; hand back the bytes without a network call."""
    fetched = []

    async def fake_fetch(url, http=None):
        fetched.append(url)
        return EmbeddedImage(data=PNG)

    monkeypatch.setattr(pipeline_module, "fetch_embedded", fake_fetch)
    return fetched


def to_review(pipeline, product):
    pipeline.update_product(product)
    pipeline.submit_product()
    asyncio.run(pipeline.generate_assets())
    return pipeline.state


def to_settings(pipeline, product, length=VideoLength.SHORT):
    state = to_review(pipeline, product)
    pipeline.toggle_image(state.project.generated_images[0].id)
    pipeline.confirm_selection()
    pipeline.choose_video_length(length)
    return pipeline.state


# ── Costs ────────────────────────────────────────────────────────────────────

def test_costs():
    assert batch_cost() == 15
    assert final_cost(VideoLength.SHORT) == pytest.approx(35.6)
    assert final_cost(VideoLength.MEDIUM) == pytest.approx(65.6)
    assert final_cost(VideoLength.LONG) == pytest.approx(95.6)


# ── Batch generate ───────────────────────────────────────────────────────────

def test_batch_refused_without_balance(store, client, assets, gate, sleep, make_pipeline, product):
    ledger = CreditLedger(store, USER_ID, 10)
    pipeline = make_pipeline(ledger=ledger)

    state = to_review(pipeline, product)

    assert state.step == CreatorStep.CHARACTER
    assert "15 credits" in state.error
    assert client.calls == []
    assert store.assets == []
    assert ledger.balance == 10


def test_batch_generates_script_then_three_images_sequentially(store, client, sleep, make_pipeline, product):
    pipeline = make_pipeline()

    state = to_review(pipeline, product)

    assert [call[0] for call in client.calls] == ["script", "image", "image", "image"]
    assert client.calls[0][2] is None  # empty price is not sent
    assert sleep.delays == [2.0, 2.0]
    assert state.step == CreatorStep.REVIEW
    assert state.project.script == client.script
    assert len(state.project.generated_images) == 3
    assert all(img.url.startswith("https://cdn.example.test/users/user-1/tiktok/Glow_Serum/")
               for img in state.project.generated_images)
    assert len(store.assets) == 3
    assert store.balance() == 85
    assert pipeline.ledger.balance == 85


def test_batch_is_all_or_nothing(store, client, make_pipeline, product):
    client.image_failures[2] = GenerationError("Failed to generate image. No image data returned.")
    pipeline = make_pipeline()

    state = to_review(pipeline, product)

    assert state.step == CreatorStep.CHARACTER
    assert state.error == "Failed to generate image. No image data returned."
    assert not state.loading
    assert len(client.calls_of("image")) == 2
    assert store.assets == []
    assert store.credit_writes == []
    assert pipeline.ledger.balance == 100


def test_batch_uses_uploaded_character_reference(client, make_pipeline, product):
    pipeline = make_pipeline()
    pipeline.update_product(product)
    pipeline.submit_product()
    style = EmbeddedImage(data=PNG, mime_type="image/jpeg")
    pipeline.update_character(CharacterInfo(reference_type=ReferenceType.UPLOAD, reference_image=style))
    asyncio.run(pipeline.generate_assets())

    _, _, aspect, reference, secondary = client.calls_of("image")[0]
    assert aspect == "9:16"
    assert reference == product.image
    assert secondary == style


def test_batch_keeps_going_when_storage_is_down(store, storage, make_pipeline, product):
    storage.fail_puts = True
    pipeline = make_pipeline()

    state = to_review(pipeline, product)

    assert state.step == CreatorStep.REVIEW
    assert all(img.url.startswith("data:image/png;base64,") for img in state.project.generated_images)
    assert len(store.assets) == 3


def test_batch_shows_images_when_row_insert_fails(store, make_pipeline, product):
    store.fail_inserts = True
    pipeline = make_pipeline()

    state = to_review(pipeline, product)

    assert state.step == CreatorStep.REVIEW
    assert len(state.project.generated_images) == 3
    assert store.assets == []


def test_batch_stops_before_images_when_script_fails(store, client, make_pipeline, product):
    client.script_failure = GenerationError("Gemini API error 503: overloaded")
    pipeline = make_pipeline()

    state = to_review(pipeline, product)

    assert state.step == CreatorStep.CHARACTER
    assert state.error == "Gemini API error 503: overloaded"
    assert not state.loading
    assert client.calls_of("image") == []
    assert store.assets == []
    assert store.balance() == 100


def test_navigation_during_batch_is_refused(store, client, sleep, make_pipeline, product):
    pipeline = make_pipeline()
    refused = []

    async def step_back_mid_batch(seconds):
        sleep.delays.append(seconds)
        refused.append(pipeline.go_back())
        refused.append(pipeline.reset())

    pipeline._sleep = step_back_mid_batch

    state = to_review(pipeline, product)

    assert all(s.step == CreatorStep.CHARACTER and s.loading for s in refused)
    assert refused[0].error == "Please wait for the current generation to finish."
    assert state.step == CreatorStep.REVIEW
    assert not state.loading
    assert len(state.project.generated_images) == 3
    assert store.balance() == 85


def test_second_batch_while_one_is_running_is_refused(store, client, sleep, make_pipeline, product):
    pipeline = make_pipeline()
    nested = []

    async def start_again(seconds):
        sleep.delays.append(seconds)
        if not nested:
            nested.append(await pipeline.generate_assets())

    pipeline._sleep = start_again

    state = to_review(pipeline, product)

    assert nested[0].error == "Please wait for the current generation to finish."
    assert len(client.calls_of("script")) == 1
    assert len(client.calls_of("image")) == 3
    assert len(store.assets) == 3
    assert store.credit_writes == [85]
    assert state.step == CreatorStep.REVIEW


def test_unexpected_store_error_is_reported_on_the_state(store, client, make_pipeline, product):
    def broken_insert(row):
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

    store.insert_asset = broken_insert
    pipeline = make_pipeline()

    state = to_review(pipeline, product)

    assert state.step == CreatorStep.CHARACTER
    assert "SUPABASE_URL" in state.error
    assert not state.loading
    assert store.credit_writes == []
    assert pipeline.ledger.balance == 100


# ── Final generate ───────────────────────────────────────────────────────────

def test_video_requires_authorization_first(store, client, make_pipeline, product):
    gate = VideoAccessGate("")
    pipeline = make_pipeline(gate=gate)
    to_settings(pipeline, product)

    state = asyncio.run(pipeline.generate_video())

    assert state.step == CreatorStep.VIDEO_SETTINGS
    assert state.authorization_required
    assert gate.pending
    assert client.calls_of("video") == []
    assert store.balance() == 85

    pipeline.grant_video_access("billed-key")
    state = asyncio.run(pipeline.generate_video())

    assert state.step == CreatorStep.RESULT
    assert client.calls_of("video")[0][4] == "billed-key"


def test_video_refused_without_balance(store, client, make_pipeline, product):
    pipeline = make_pipeline()
    to_settings(pipeline, product, VideoLength.LONG)
    pipeline.ledger.balance = 50

    state = asyncio.run(pipeline.generate_video())

    assert state.step == CreatorStep.VIDEO_SETTINGS
    assert state.error == "Insufficient credits for 24s video. Need 95.6 credits."
    assert client.calls_of("video") == []


def test_clips_are_sequential_with_pauses(store, client, sleep, make_pipeline, product, offline_seed):
    store.profiles[USER_ID] = store.profiles[USER_ID].model_copy(update={"credits": 200})
    pipeline = make_pipeline(ledger=CreditLedger(store, USER_ID, 200))
    state = to_settings(pipeline, product, VideoLength.LONG)
    selected = state.project.generated_images[0]

    state = asyncio.run(pipeline.generate_video())

    assert state.step == CreatorStep.RESULT
    calls = client.calls_of("video")
    assert len(calls) == 3
    for index, call in enumerate(calls, start=1):
        assert f"Clip {index} of 3." in call[1]
        assert call[2] == "9:16"
        assert call[3] == EmbeddedImage(data=PNG)
    assert "thumbs up call-to-action" in calls[2][1]
    assert sleep.delays == [2.0, 2.0, 3.0, 3.0]
    assert offline_seed == [selected.url]


def test_sixteen_second_end_to_end(store, client, make_pipeline, product):
    pipeline = make_pipeline()
    to_settings(pipeline, product, VideoLength.MEDIUM)

    state = asyncio.run(pipeline.generate_video())

    assert state.step == CreatorStep.RESULT
    assert len(state.clips) == 2
    assert state.result_video == state.clips[0]
    assert state.result_video.url.startswith("https://cdn.example.test/users/user-1/videos/Glow_Serum/")
    assert len(video_rows(store)) == 2
    assert all(r["type"] == AssetType.VIDEO.value for r in video_rows(store))
    assert 100 - store.balance() == pytest.approx(80.6)
    assert pipeline.ledger.balance == pytest.approx(19.4)
    assert not state.loading


def test_partial_failure_keeps_saved_clips_and_charges_nothing(store, client, make_pipeline, product):
    client.video_failures[2] = GenerationError("Veo quota exceeded")
    pipeline = make_pipeline()
    to_settings(pipeline, product, VideoLength.MEDIUM)

    state = asyncio.run(pipeline.generate_video())

    assert state.step == CreatorStep.VIDEO_SETTINGS
    assert state.error.startswith("Veo quota exceeded")
    assert "1 of 2 clips were saved" in state.error
    assert len(video_rows(store)) == 1
    assert store.balance() == 85
    assert not state.loading


def test_timeout_message_is_user_facing(store, client, make_pipeline, product):
    client.video_failures[1] = VideoTimeoutError("Video generation timed out after 300s")
    pipeline = make_pipeline()
    to_settings(pipeline, product)

    state = asyncio.run(pipeline.generate_video())

    assert state.error == "Video generation timed out after 5 minutes. Please try again."
    assert video_rows(store) == []


def test_background_split_matches_generate_video(store, make_pipeline, product):
    pipeline = make_pipeline()
    to_settings(pipeline, product)

    assert asyncio.run(pipeline.begin_video())
    assert pipeline.state.step == CreatorStep.GENERATING
    assert pipeline.progress.total == 1

    state = asyncio.run(pipeline.render_clips())
    assert state.step == CreatorStep.RESULT
    assert 100 - store.balance() == pytest.approx(15 + 35.6)


def test_reset_after_result_keeps_character(make_pipeline, product):
    pipeline = make_pipeline()
    pipeline.update_product(product)
    pipeline.submit_product()
    pipeline.update_character(CharacterInfo(reference_type=ReferenceType.AI))
    asyncio.run(pipeline.generate_assets())
    pipeline.toggle_image(pipeline.state.project.generated_images[0].id)
    pipeline.confirm_selection()
    asyncio.run(pipeline.generate_video())

    state = pipeline.reset()

    assert state.step == CreatorStep.PRODUCT
    assert state.project.character.reference_type == ReferenceType.AI
    assert state.clips == []

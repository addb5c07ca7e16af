import asyncio

import pytest

from studio.errors import GenerationError, InsufficientCredits, ValidationError
from studio.gemini import VideoAccessGate
from studio.ledger import CreditLedger
from studio.models import ArtStyle, ColorMode, ComicCharacter, ComicLayout, EmbeddedImage
from studio.tools import StudioTools
from conftest import PNG, USER_ID


@pytest.fixture
def tools(client, ledger, assets):
    return StudioTools(USER_ID, client, ledger, assets, VideoAccessGate("veo-key"))


STORY = "A cat orders a tiny coffee and gets a bucket-sized cup."


def test_panel_breakdown_is_free_and_sized_by_layout(store, client, tools):
    panels = asyncio.run(tools.comic_panels(STORY, ComicLayout.THREE_PANEL))

    assert panels == ["Panel beat 1", "Panel beat 2", "Panel beat 3"]
    assert client.calls_of("panels")[0][2] == 3
    assert store.balance() == 100


def test_empty_story_is_rejected_before_any_call(store, client, tools):
    with pytest.raises(ValidationError) as err:
        asyncio.run(tools.comic("   "))
    assert "story" in err.value.fields

    with pytest.raises(ValidationError):
        asyncio.run(tools.comic_panels(""))

    assert client.calls == []
    assert store.balance() == 100


def test_comic_breaks_down_story_renders_once_and_charges(store, storage, client, tools):
    strip = asyncio.run(tools.comic(STORY, ComicLayout.FOUR_PANEL_MANGA, ArtStyle.CHIBI, ColorMode.BLACK_WHITE))

    assert [call[0] for call in client.calls] == ["panels", "comic"]
    _, prompt, aspect, references = client.calls_of("comic")[0]
    assert aspect == "9:16"
    assert references == []
    assert "2x2 grid" in prompt
    assert "chibi style" in prompt
    assert "monochrome" in prompt
    assert "Panel 4: Panel beat 4" in prompt
    assert "Manga reading order (right to left)" in prompt

    assert len(strip.panels) == 4
    assert strip.asset.url.startswith("https://cdn.example.test/users/user-1/comics/")
    assert store.assets[0]["type"] == "IMAGE"
    assert store.balance() == 95


def test_edited_panels_skip_the_breakdown(client, tools):
    panels = ["Cat at the counter", "Barista nods", "Bucket arrives", "Cat dives in"]
    hero = ComicCharacter(name="Mochi", description="orange tabby", visual_reference=EmbeddedImage(data=PNG))

    strip = asyncio.run(tools.comic(STORY, characters=[hero, ComicCharacter(name="Barista")], panels=panels))

    assert client.calls_of("panels") == []
    _, prompt, _, references = client.calls_of("comic")[0]
    assert "CHARACTERS: Mochi (orange tabby), Barista" in prompt
    assert references == [EmbeddedImage(data=PNG)]
    assert strip.panels == panels


def test_panel_count_must_match_layout(store, client, tools):
    with pytest.raises(ValidationError) as err:
        asyncio.run(tools.comic(STORY, ComicLayout.TWO_PANEL_VERTICAL, panels=["one", "two", "three"]))

    assert "panels" in err.value.fields
    assert client.calls == []


def test_comic_needs_balance(store, client, assets):
    tools = StudioTools(USER_ID, client, CreditLedger(store, USER_ID, 4), assets, VideoAccessGate())

    with pytest.raises(InsufficientCredits):
        asyncio.run(tools.comic(STORY))

    assert client.calls == []


def test_failed_render_charges_nothing(store, client, tools):
    client.comic_failure = GenerationError("Failed to generate image. No image data returned.")

    with pytest.raises(GenerationError):
        asyncio.run(tools.comic(STORY))

    assert store.assets == []
    assert store.balance() == 100

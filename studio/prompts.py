"""
Prompt compiler for the creator wizard and the comic generator.

Pure functions only: the same product/character input always yields the same
text, so regenerating a project costs the same and prompts can be compared
verbatim in tests.
"""

from typing import Optional

from .models import (
    ArtStyle,
    CharacterInfo,
    ColorMode,
    ComicCharacter,
    ComicLayout,
    ProductInfo,
    ProductType,
)

DEFAULT_ACTION = "naturally showcasing and holding"

PRODUCT_ACTIONS = {
    ProductType.SKINCARE: "applying and demonstrating",
    ProductType.BEAUTY: "applying and showing results",
    ProductType.SUPPLEMENT: "unboxing and presenting",
    ProductType.FOOD: "tasting and enjoying",
    ProductType.FASHION: "wearing and styling",
    ProductType.TECH: "unboxing and demonstrating features",
    ProductType.HOME: "demonstrating usage",
    ProductType.DEFAULT: DEFAULT_ACTION,
}

SCRIPT_EXCERPT_CHARS = 200

IMAGE_TEMPLATE = """UGC TikTok product photo: {gender} {ethnicity} creator, {skin_tone} skin, {body_type} build, age 25-30, genuine smile, eye contact.

Action: {action} {product}, product at chest level.

Setting: modern home, daylight, minimal decor, plants. Lighting: soft window light, golden hour. Camera: iPhone 15 Pro, 9:16, bokeh. Mood: friendly, trustworthy. Quality: photorealistic, natural colors."""

VIDEO_TEMPLATE = """UGC TikTok video: {gender} {ethnicity} creator, {skin_tone} skin, age 25-30. Modern home, daylight, 9:16.

Clip {clip} of {total}. Sequence: {beat}

Performance: natural energy, 70% eye contact, smooth hands. Camera: gentle push-in, handheld stable. Lighting: golden hour warmth. Pacing: TikTok-style quick cuts. Quality: 4K photorealistic."""

REVEAL_BEAT = "0-2s: excited face reveal, 2-5s: pick up {product}, 5-8s: smile transition"
RESULT_BEAT = "0-3s: show results, 3-6s: {product} to camera, 6-8s: thumbs up call-to-action"
FEATURE_BEAT = "0-3s: {action} {product}, 3-6s: feature demonstration, 6-8s: satisfied expression"

SCRIPT_TEMPLATE = """Write a short, catchy TikTok/UGC video script for a product named "{name}".
Product Description: "{description}".
Target Audience: "{audience}".{price}
Keep it under 30 seconds. Split it into 2-3 short, punchy parts suitable for a fast-paced video.
Format it like: Part 1: [Text], Part 2: [Text]"""

DEFAULT_ANALYSIS_PROMPT = "Analyze this image in detail."


def product_action(product_type: Optional[ProductType]) -> str:
    """Verb phrase for how the creator handles this kind of product."""
    return PRODUCT_ACTIONS.get(product_type, DEFAULT_ACTION)


def build_image_prompt(product: ProductInfo, character: CharacterInfo) -> str:
    prompt = IMAGE_TEMPLATE.format(
        gender=character.gender.value,
        ethnicity=character.ethnicity.value,
        skin_tone=character.skin_tone.value,
        body_type=character.body_type.value,
        action=product_action(product.product_type),
        product=product.name,
    )

    caption = character.caption
    if caption.enabled and caption.text:
        prompt += (
            f'\n\nText overlay: "{caption.text}" in {caption.style.value} style, '
            f"positioned at the {caption.position.value} of the frame."
        )

    return prompt


def clip_beat(product: ProductInfo, clip_index: int, total_clips: int) -> str:
    """
    Narrative beat for one clip. Clips are 1-based.

    A single-clip video only gets the reveal; the last of several clips closes
    with the result and call-to-action; anything in between demonstrates.
    """
    if clip_index == 1:
        return REVEAL_BEAT.format(product=product.name)
    if clip_index == total_clips:
        return RESULT_BEAT.format(product=product.name)
    return FEATURE_BEAT.format(
        action=product_action(product.product_type), product=product.name
    )


def build_video_prompt(
    product: ProductInfo,
    character: CharacterInfo,
    clip_index: int,
    total_clips: int,
    script: Optional[str] = None,
) -> str:
    prompt = VIDEO_TEMPLATE.format(
        gender=character.gender.value,
        ethnicity=character.ethnicity.value,
        skin_tone=character.skin_tone.value,
        clip=clip_index,
        total=total_clips,
        beat=clip_beat(product, clip_index, total_clips),
    )

    if script:
        prompt += (
            f'\n\nScript context: "{script[:SCRIPT_EXCERPT_CHARS]}"\n'
            "The creator should appear to be speaking this script naturally. "
            "Lip movements and expressions should match the tone and energy of the script."
        )

    return prompt


def build_script_prompt(
    name: str,
    description: str,
    target_audience: str,
    price: Optional[str] = None,
) -> str:
    return SCRIPT_TEMPLATE.format(
        name=name,
        description=description,
        audience=target_audience,
        price=f'\nPrice: "{price}".' if price else "",
    )


def reference_instruction(prompt: str, reference_count: int) -> str:
    """
    Prefix telling the image model which inline image plays which role.

    0 references → the prompt unchanged; 1 → the image is the product;
    2 → first is the product, second is the character style.
    """
    if reference_count <= 0:
        return prompt
    if reference_count == 1:
        return (
            "Using the first image as a reference product, generate a photorealistic "
            f"image based on this description: {prompt}. Ensure the product from the "
            "reference image is featured prominently and looks natural."
        )
    return (
        "The first image is the PRODUCT. The second image is the CHARACTER STYLE "
        "reference: match the person's look, styling and overall vibe. Generate a "
        f"photorealistic image based on this description: {prompt}. Ensure the product "
        "from the first image is featured prominently and looks natural."
    )


# ── Comics ───────────────────────────────────────────────────────────────────

LAYOUT_INSTRUCTIONS = {
    ComicLayout.FOUR_PANEL: "4 vertical panels in a single image, arranged top to bottom",
    ComicLayout.TWO_PANEL_VERTICAL: "2 vertical panels in a single image, arranged top to bottom",
    ComicLayout.THREE_PANEL: "3 vertical panels in a single image, arranged top to bottom",
    ComicLayout.FOUR_PANEL_MANGA: (
        "4 panels in a 2x2 grid in a single vertical image, "
        "manga reading order (right to left, top to bottom)"
    ),
}

ART_STYLE_KEYWORDS = {
    ArtStyle.ANIME: "anime style, vibrant colors, expressive large eyes, clean linework, cel-shaded",
    ArtStyle.MANGA: "manga style, black and white, screentones, speed lines, dramatic inking",
    ArtStyle.WESTERN: "western comic book style, bold black outlines, flat colors, dynamic composition",
    ArtStyle.CHIBI: "chibi style, super deformed, cute proportions, kawaii, big head small body",
    ArtStyle.REALISTIC: "semi-realistic illustration, detailed shading, painterly style",
    ArtStyle.SKETCH: "hand-drawn sketch, loose pencil lines, rough texture, sketch marks",
}

COLOR_MODE_KEYWORDS = {
    ColorMode.COLOR: "full color, vibrant palette",
    ColorMode.BLACK_WHITE: "black and white, grayscale, monochrome",
}

# Gag structure per panel count: (beat, expression direction).
PANEL_BEATS = {
    4: [
        ("Setup: establish the scene and characters in a normal situation", "calm, neutral expressions"),
        ("Development: introduce the conflict or unusual element", "curious or slightly concerned expressions"),
        ("Turn: the unexpected twist or escalation", "shocked, surprised or exaggerated reaction"),
        ("Punchline: the comedic payoff or resolution", "extreme reaction, deadpan or comedic resolution"),
    ],
    3: [
        ("Setup: establish the scene", "normal, calm expressions"),
        ("Conflict: the problem or twist", "surprised or concerned expressions"),
        ("Punchline: the comedic conclusion", "exaggerated comedic reaction"),
    ],
    2: [
        ("Setup: normal situation", "calm expressions"),
        ("Punchline: the twist or comedic payoff", "exaggerated reaction or deadpan humor"),
    ],
}

PANEL_BREAKDOWN_TEMPLATE = """Split this short comedy story into exactly {count} comic panels.
Story: "{story}"
Characters: {characters}

Follow this structure:
{beats}

Return a JSON array of exactly {count} strings. Each string describes one panel: the scene, what each character does, their expression, and any dialogue in Thai."""

COMIC_TEMPLATE = """Create a complete comic strip as a SINGLE IMAGE with {count} panels.

LAYOUT: {layout}

ART STYLE: {style}
COLOR: {color}

CHARACTERS: {characters}

STORY PANELS:
{panels}

TEXT REQUIREMENTS:
- All speech bubble text, dialogue and sound effects must be in Thai (e.g. "ปัง!" not "BANG!")
- No English words anywhere in the comic
- Use clear, readable Thai lettering

TECHNICAL REQUIREMENTS:
- One image containing all {count} panels, separated by clear borders and gutters
- {layout}
- Consistent character design across all panels
- {reading_order}
- Expressive poses and exaggerated reactions for comedic effect
- Visual comedy elements (sweat drops, shock lines, speed lines)
- Simple backgrounds that support the gag"""


def character_line(characters: list[ComicCharacter]) -> str:
    if not characters:
        return "Create appropriate characters for this story"
    return ", ".join(
        f"{c.name} ({c.description})" if c.description else c.name for c in characters
    )


def panel_beats(panel_count: int) -> list[str]:
    """One beat line per panel; layouts without a known gag structure get plain numbering."""
    beats = PANEL_BEATS.get(panel_count)
    if beats is None:
        return [f"Panel {n} of {panel_count}." for n in range(1, panel_count + 1)]
    return [f"Panel {n} ({beat}). Expressions: {mood}." for n, (beat, mood) in enumerate(beats, 1)]


def build_panel_breakdown_prompt(
    story: str, panel_count: int, characters: list[ComicCharacter]
) -> str:
    return PANEL_BREAKDOWN_TEMPLATE.format(
        count=panel_count,
        story=story.strip(),
        characters=character_line(characters),
        beats="\n".join(panel_beats(panel_count)),
    )


def build_comic_prompt(
    layout: ComicLayout,
    art_style: ArtStyle,
    color_mode: ColorMode,
    characters: list[ComicCharacter],
    panels: list[str],
) -> str:
    return COMIC_TEMPLATE.format(
        count=layout.panel_count,
        layout=LAYOUT_INSTRUCTIONS[layout],
        style=ART_STYLE_KEYWORDS[art_style],
        color=COLOR_MODE_KEYWORDS[color_mode],
        characters=character_line(characters),
        panels="\n\n".join(f"Panel {n}: {text}" for n, text in enumerate(panels, 1)),
        reading_order=(
            "Manga reading order (right to left)" if layout.manga
            else "Standard reading order (left to right)"
        ),
    )

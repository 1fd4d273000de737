from __future__ import annotations

"""
Prompt builders for the text, image and edit calls.

The wording here is tuning, not contract: callers rely only on which inputs
each prompt takes.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .models import AdArchetype, AdFormat, CampaignInput

RESEARCH_DISABLED_TEXT = "Research disabled by user. Relying on internal knowledge."


@dataclass(frozen=True)
class ColorPalette:
    id: str
    name: str
    colors: Tuple[str, str, str]


COLOR_PALETTES: Tuple[ColorPalette, ...] = (
    ColorPalette("default", "Smart (AI)", ("slate gray", "mid gray", "light gray")),
    ColorPalette("high-contrast", "High Impact", ("bright yellow", "black", "red")),
    ColorPalette("aesthetic", "Minimal / Luxury", ("stone white", "warm beige", "charcoal")),
    ColorPalette("neon", "Cyber / GenZ", ("hot pink", "cyan", "purple")),
    ColorPalette("nature", "Organic / Eco", ("forest green", "light green", "amber cream")),
    ColorPalette("pastel", "Soft / Care", ("rose", "baby blue", "lavender")),
    ColorPalette("custom", "Custom", ("white", "gray", "black")),
)

_PALETTES_BY_ID: Dict[str, ColorPalette] = {p.id: p for p in COLOR_PALETTES}

# Direction per archetype for the image prompt.
ARCHETYPE_VISUALS: Dict[AdArchetype, str] = {
    AdArchetype.US_VS_THEM: (
        "COMPARISON. Focus on the result or the vibe, not old tech versus new tech. "
        "Left side (them): dull lighting, mess, stress, gray filters. Right side "
        "(us): golden hour light, order, relief, saturated colours."
    ),
    AdArchetype.THE_SKEPTIC: (
        "Amateur phone photo, flash, slightly imperfect framing. A real person holds "
        "the product close to the lens looking unsure or surprised. No stock smiles."
    ),
    AdArchetype.AESTHETIC_ASMR: (
        "Macro photography, shallow depth of field, sensory detail (droplets, "
        "texture, steam). Minimal background, luxury feel."
    ),
    AdArchetype.THE_UGLY_AD: (
        "Brutalist, MS Paint aesthetic, clashing bright colours, huge yellow/red "
        "text overlays. Looks like a meme."
    ),
    AdArchetype.FOUNDER_STORY: (
        "Warm cinematic documentary style. A person working in a garage, office or "
        "kitchen, authentic behind-the-scenes look."
    ),
}


def find_palette(palette_id: str) -> Optional[ColorPalette]:
    return _PALETTES_BY_ID.get(palette_id)


def build_system_instruction(use_pro_mode: bool, copy_language: str) -> str:
    pro = (
        "You are in PRO MODE. Be distinct, polarised and psychologically penetrating.\n"
        if use_pro_mode
        else ""
    )
    archetypes = "\n".join(f'- "{k.value}": {v}' for k, v in ARCHETYPE_VISUALS.items())
    return (
        "Act as a world-class creative director and direct-response copywriter.\n"
        + pro
        + f"GOAL: Generate 5 high-converting ad scripts ({copy_language}) and 1 highly "
        "specific image prompt (English).\n\n"
        "SCRIPT RULES:\n"
        "1. The hook must stop the scroll and be readable in under 3 seconds: a "
        "shocking statement, a FOMO question or a counter-intuitive fact.\n"
        "2. The CTA must be imperative and say exactly what to do.\n\n"
        "VISUAL RULES:\n"
        "1. No generic AI tropes (glowing brains, holograms, cyber tunnels) unless "
        "the product is literally high-tech.\n"
        "2. Realism first: ground the scene in the user's everyday reality.\n"
        f"3. Any text inside the image must be in {copy_language} and spelled out in "
        "the prompt.\n"
        "4. Respect the composition required by the format.\n\n"
        "ARCHETYPE VISUAL GUIDELINES:\n"
        + archetypes
        + "\n\nCAROUSEL: describe one continuous panoramic 16:9 scene that tells a "
        "story from left to right and is sliced into 4 slides."
    )


def build_color_directive(data: CampaignInput) -> str:
    if data.color_palette == "custom" and data.custom_colors:
        return (
            "Use a CUSTOM COLOR PALETTE with these HEX codes: "
            f"{', '.join(data.custom_colors)}. Use these exact colours for text "
            "overlays, backgrounds or clothing."
        )
    palette = find_palette(data.color_palette) or COLOR_PALETTES[0]
    return (
        f'Use a colour palette inspired by "{palette.name}" '
        f"({', '.join(palette.colors)}). Let these colours guide lighting and mood."
    )


def build_research_prompt(product_name: str, audience: str, pain_point: str) -> str:
    return (
        "Find current trends, competitor angles and specific viral hooks for a "
        f'product named "{product_name}" targeting "{audience}" with pain point '
        f'"{pain_point}". Summarize key insights for a marketing campaign.'
    )


def build_generation_prompt(
        data: CampaignInput,
        research_context: str,
        color_directive: str,
) -> str:
    carousel = ""
    if data.format == AdFormat.CAROUSEL:
        carousel = (
            "- CAROUSEL: the image prompt must describe a WIDE (16:9) panoramic "
            "scene, a continuous timeline or before-and-after spread across the "
            "canvas. Do not center a single object.\n"
        )
    logo = ""
    if data.logo_image:
        logo = (
            "- LOGO: the prompt must say that the brand logo is visible on the "
            "product or as a graphic element.\n"
        )
    return (
        "CONTEXT FROM MARKET RESEARCH:\n"
        f"{research_context}\n\n"
        "--- CAMPAIGN DETAILS ---\n"
        f"Product: {data.product_name}\n"
        f"Pain Point: {data.pain_point}\n"
        f"Audience: {data.target_audience}\n"
        f"Archetype: {data.archetype.value}\n"
        f"Format: {data.format.value}\n"
        f"Tone: {data.tone.value}\n"
        f"{color_directive}\n\n"
        "--- TASK ---\n"
        "1. Work out the real-world setting where the user feels the pain point.\n"
        f"2. Generate 5 distinct ad scripts with the tone {data.tone.value}.\n"
        "3. Generate 1 image prompt (English) set in that real-world setting.\n\n"
        "--- IMAGE PROMPT INSTRUCTIONS ---\n"
        "- Describe the scene directly; do not start with 'A high quality image of'.\n"
        "- Name the lighting, textures and props specific to the niche.\n"
        f"- The composition must fit {data.format.value}.\n"
        + carousel
        + logo
        + "\nOutput JSON only."
    )


def build_refinement_prompt(
        data: CampaignInput,
        previous_image_prompt: str,
        instruction: str,
) -> str:
    return (
        "CONTEXT:\n"
        f"Original Product: {data.product_name}\n"
        f"Original Archetype: {data.archetype.value}\n"
        f"Original Format: {data.format.value}\n"
        f"Tone: {data.tone.value}\n\n"
        f"PREVIOUS IMAGE PROMPT: {previous_image_prompt}\n\n"
        f'USER REFINEMENT REQUEST: "{instruction}"\n\n'
        "TASK:\n"
        "Regenerate the JSON.\n"
        "- If the user asks for something less generic or a different style, "
        "rewrite the imagePrompt completely with niche-specific, realistic detail.\n"
        "- If the format is Carousel, the imagePrompt describes a continuous "
        "panoramic 16:9 scene.\n"
        "- Keep the scripts consistent with the new direction and the tone."
    )


def build_edit_prompt(scene_prompt: str, format_text: str, with_logo: bool) -> str:
    """Instructions for compositing the product of the first input image into a new scene."""
    logo_input = "Input Image 2: contains a BRAND LOGO.\n" if with_logo else ""
    logo_task = (
        "SUB-TASK: place the logo (Input Image 2) clearly on the product packaging "
        "or as a watermark in a corner. It must be visible.\n"
        if with_logo
        else ""
    )
    return (
        "CRITICAL INSTRUCTION: YOU ARE AN IMAGE EDITOR.\n"
        "Input Image 1: contains a specific product.\n"
        + logo_input
        + "Task: keep the EXACT product from Input Image 1, isolate it and composite "
        f'it into a new background described as: "{scene_prompt}".\n'
        + logo_task
        + "- Do NOT redraw the product.\n"
        "- Do NOT change the product's shape, label or details.\n"
        "- ONLY change the background and lighting environment.\n"
        f"- Output aspect ratio: {format_text}."
    )


def build_logo_scene_prompt(image_prompt: str) -> str:
    """Scene prompt used when the only input image is a logo."""
    return (
        f"Create a scene: {image_prompt}. The input image is a LOGO. Place this "
        "logo naturally in the scene (on a product or floating)."
    )


FORMAT_TEXT: Dict[AdFormat, str] = {
    AdFormat.SQUARE: "Square (1:1)",
    AdFormat.STORY: "Vertical (9:16)",
    AdFormat.LANDSCAPE: "Horizontal (16:9)",
    AdFormat.CAROUSEL: "Horizontal (16:9)",
}

SCRIPTS_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "scripts": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "title": {"type": "STRING"},
                    "hook": {"type": "STRING"},
                    "body": {"type": "STRING"},
                    "cta": {"type": "STRING"},
                    "slides": {
                        "type": "ARRAY",
                        "items": {
                            "type": "OBJECT",
                            "properties": {
                                "slideNumber": {"type": "INTEGER"},
                                "visualDescription": {"type": "STRING"},
                                "headline": {"type": "STRING"},
                                "body": {"type": "STRING"},
                            },
                            "required": ["slideNumber", "headline", "body"],
                        },
                    },
                },
                "required": ["title", "hook", "body", "cta"],
            },
        },
        "imagePrompt": {"type": "STRING"},
    },
    "required": ["scripts", "imagePrompt"],
}

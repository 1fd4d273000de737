from __future__ import annotations

"""
Datamodels for the campaign history: sessions, ad sets and ad versions.

Every entity is a frozen dataclass and every sequence is a tuple, so a change
anywhere in the tree means building a new object for the affected path with
dataclasses.replace. Field names are snake_case here; history_codec maps them
to the camelCase names used in the persisted collection.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple


class AdArchetype(Enum):
    """Creative strategy used to steer tone and visual direction."""

    US_VS_THEM = "Us vs. Them"
    THE_SKEPTIC = "The Skeptic (UGC)"
    AESTHETIC_ASMR = "Aesthetic / ASMR"
    THE_UGLY_AD = "The Ugly Ad"
    FOUNDER_STORY = "Founder Story"


class AdFormat(Enum):
    """Placement format of the creative."""

    SQUARE = "1:1 (Instagram/Facebook Feed)"
    STORY = "9:16 (TikTok/Reels/Stories)"
    LANDSCAPE = "16:9 (YouTube/Web)"
    CAROUSEL = "Carousel (4+ Slide Sequence)"


class AdTone(Enum):
    URGENT = "Urgent / Scarcity"
    HUMOROUS = "Humorous / Meme"
    EMOTIONAL = "Emotional / Inspirational"
    CONTROVERSIAL = "Controversial / Polarizing"
    EDUCATIONAL = "Educational / Authority"
    RELAXED = "Relaxed / Chill"


# Display labels are kept apart from the stored values so renaming a label
# never changes what is written to the history.
ARCHETYPE_LABELS: Dict[AdArchetype, str] = {
    AdArchetype.US_VS_THEM: "Us vs. Them (Comparison)",
    AdArchetype.THE_SKEPTIC: "The Skeptic (UGC Testimonial)",
    AdArchetype.AESTHETIC_ASMR: "Aesthetic / ASMR (Visual)",
    AdArchetype.THE_UGLY_AD: "The Ugly Ad (Brutalism / Offer)",
    AdArchetype.FOUNDER_STORY: "Founder Story (Narrative)",
}

FORMAT_LABELS: Dict[AdFormat, str] = {
    AdFormat.SQUARE: "Square (1:1)",
    AdFormat.STORY: "Vertical / Stories (9:16)",
    AdFormat.LANDSCAPE: "Horizontal (16:9)",
    AdFormat.CAROUSEL: "Carousel (Multi-Slide)",
}

TONE_LABELS: Dict[AdTone, str] = {
    AdTone.URGENT: "Urgent",
    AdTone.HUMOROUS: "Humorous",
    AdTone.EMOTIONAL: "Emotional",
    AdTone.CONTROVERSIAL: "Controversial",
    AdTone.EDUCATIONAL: "Educational",
    AdTone.RELAXED: "Relaxed",
}

# Short command-line names for formats (resize targets, briefs).
FORMAT_ALIASES: Dict[str, AdFormat] = {
    "square": AdFormat.SQUARE,
    "story": AdFormat.STORY,
    "landscape": AdFormat.LANDSCAPE,
    "carousel": AdFormat.CAROUSEL,
}

CAROUSEL_SLIDE_COUNT = 4
SCRIPTS_PER_AD = 5


@dataclass(frozen=True)
class CarouselSlide:
    """One frame of a carousel; slide_number is 1-based."""

    slide_number: int
    visual_description: str
    headline: str
    body: str


@dataclass(frozen=True)
class Script:
    """One candidate copy variant generated for an ad."""

    title: str
    hook: str
    body: str
    cta: str

    # Only present for carousel-format ads.
    slides: Optional[Tuple[CarouselSlide, ...]] = None


@dataclass(frozen=True)
class ResearchSource:
    title: str
    uri: str


@dataclass(frozen=True)
class Ad:
    """A single version in an ad set's history."""

    id: str

    # Epoch milliseconds.
    timestamp: int

    scripts: Tuple[Script, ...]
    image_prompt: str

    # Opaque image payload (a data: URL).
    image_url: str

    # Set in place when the version gets animated.
    video_url: Optional[str] = None

    # What produced this version: "Initial Generation", a refinement
    # instruction, "Resized to ...", "Variation (Reversion)" and so on.
    user_request: Optional[str] = None

    research_sources: Optional[Tuple[ResearchSource, ...]] = None


@dataclass(frozen=True)
class AdSet:
    """One creative angle within a session, with its version history."""

    id: str
    name: str
    target_audience: str
    archetype: AdArchetype
    format: AdFormat

    # Append-only, oldest first.
    ads: Tuple[Ad, ...]

    created_at: int

    # Exactly three hex colours (primary, secondary, accent) when present.
    custom_colors: Optional[Tuple[str, str, str]] = None

    # Kept so later edits can reuse the original product photo and logo.
    reference_image: Optional[str] = None
    logo_image: Optional[str] = None


@dataclass(frozen=True)
class ProductInfo:
    name: str
    pain_point: str


@dataclass(frozen=True)
class Session:
    """Product-level container holding one or more ad sets."""

    id: str
    title: str
    product_info: ProductInfo
    ad_sets: Tuple[AdSet, ...]
    last_modified: int


DEFAULT_CUSTOM_COLORS: Tuple[str, str, str] = ("#ffffff", "#888888", "#000000")


@dataclass
class CampaignInput:
    """
    Parameters for generating a new ad set.

    This is the form data of a campaign or ad-set submission. It is not part of
    the persisted history; the relevant bits are copied onto the AdSet.
    """

    product_name: str
    pain_point: str
    target_audience: str
    archetype: AdArchetype = AdArchetype.US_VS_THEM
    format: AdFormat = AdFormat.SQUARE
    tone: AdTone = AdTone.URGENT

    # Run the search-grounded research step before writing scripts.
    use_research: bool = True

    # Ask for sharper, more polarised copy.
    use_pro_mode: bool = False

    # Palette id from prompts.COLOR_PALETTES, or "custom".
    color_palette: str = "default"
    custom_colors: Tuple[str, str, str] = field(default=DEFAULT_CUSTOM_COLORS)

    # Product photo and brand logo as data: URLs.
    reference_image: Optional[str] = None
    logo_image: Optional[str] = None


@dataclass(frozen=True)
class GeneratedContent:
    """Result of a generation run before it gets an id and a timestamp."""

    scripts: Tuple[Script, ...]
    image_prompt: str
    image_url: str
    user_request: Optional[str] = None
    research_sources: Optional[Tuple[ResearchSource, ...]] = None

from __future__ import annotations

import base64
import binascii
import logging
import time
import uuid
from dataclasses import replace
from io import BytesIO
from typing import Dict, List, Tuple

from PIL import Image, ImageDraw

from .models import (
    CAROUSEL_SLIDE_COUNT,
    AdArchetype,
    AdFormat,
    CarouselSlide,
    Script,
)


# ---------------------------------------------------------------------------
# General helpers
# ---------------------------------------------------------------------------


def new_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def derive_ad_set_name(target_audience: str, archetype: AdArchetype) -> str:
    """
    Build the default ad set name from its audience and archetype.

    Only the part of the archetype before any parenthesis is used, so
    "The Skeptic (UGC)" contributes "The Skeptic".
    """
    short = archetype.value.split("(", 1)[0].strip()
    return f"{target_audience} - {short}"


def normalize_hex_color(hex_str: str) -> str:
    """Convert a #rrggbb or #rgb string to lowercase #rrggbb.

    Raises ValueError if the string is not a hex colour.
    """
    s = (hex_str or "").strip()
    if s.startswith("#"):
        s = s[1:]
    if len(s) == 3:
        s = "".join(c * 2 for c in s)
    if len(s) != 6:
        raise ValueError(f"Not a hex colour: {hex_str!r}")
    try:
        int(s, 16)
    except ValueError as exc:
        raise ValueError(f"Not a hex colour: {hex_str!r}") from exc
    return "#" + s.lower()


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


def to_data_url(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def payload_body(payload: str) -> str:
    """Strip a data: URL header, leaving the base64 body."""
    if "base64," in payload:
        return payload.split("base64,", 1)[1]
    return payload


def payload_mime_type(payload: str, default: str = "image/png") -> str:
    if payload.startswith("data:") and ";" in payload:
        return payload[5:payload.index(";")] or default
    return default


def decode_payload(payload: str) -> bytes:
    """Decode a data: URL (or bare base64 string) into raw bytes."""
    try:
        return base64.b64decode(payload_body(payload), validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Payload is not valid base64 data") from exc


# ---------------------------------------------------------------------------
# Formats
# ---------------------------------------------------------------------------

# Carousel images are one wide panorama sliced into slides.
ASPECT_RATIOS: Dict[AdFormat, str] = {
    AdFormat.SQUARE: "1:1",
    AdFormat.STORY: "9:16",
    AdFormat.LANDSCAPE: "16:9",
    AdFormat.CAROUSEL: "16:9",
}

# The video model only renders 16:9 and 9:16.
VIDEO_ASPECT_RATIOS: Dict[AdFormat, str] = {
    AdFormat.SQUARE: "9:16",
    AdFormat.STORY: "9:16",
    AdFormat.LANDSCAPE: "16:9",
    AdFormat.CAROUSEL: "16:9",
}

CANVAS_SIZES: Dict[str, Tuple[int, int]] = {
    "1:1": (1080, 1080),
    "9:16": (1080, 1920),
    "16:9": (1920, 1080),
}


def aspect_ratio_for(fmt: AdFormat) -> str:
    return ASPECT_RATIOS[fmt]


def canvas_size_for(fmt: AdFormat) -> Tuple[int, int]:
    return CANVAS_SIZES[ASPECT_RATIOS[fmt]]


# ---------------------------------------------------------------------------
# Scripts
# ---------------------------------------------------------------------------


def _filler_slide(script: Script, slide_number: int) -> CarouselSlide:
    body = script.body or ""
    if slide_number == 1:
        headline, text = script.title or "Attention", script.hook or "Look at this"
    elif slide_number == 2:
        headline = "The Problem"
        text = body[:50] + "..." if body else "Sound familiar?"
    elif slide_number == 3:
        headline = "The Solution"
        text = body[50:] if body[50:] else "Here is the fix"
    else:
        headline, text = "Join Us", script.cta or "Buy now"
    return CarouselSlide(
        slide_number=slide_number,
        visual_description=f"Section {slide_number} of panorama",
        headline=headline,
        body=text,
    )


def backfill_carousel_slides(script: Script) -> Script:
    """
    Make sure a carousel script carries at least four slides numbered 1..4.

    Slides the model did return keep their text and are renumbered in order;
    missing positions are filled from the script's own title, hook, body and
    call to action.
    """
    slides: List[CarouselSlide] = list(script.slides or ())
    if len(slides) >= CAROUSEL_SLIDE_COUNT:
        return script

    renumbered = [
        replace(slide, slide_number=i + 1) for i, slide in enumerate(slides)
    ]
    for n in range(len(renumbered) + 1, CAROUSEL_SLIDE_COUNT + 1):
        renumbered.append(_filler_slide(script, n))
    return replace(script, slides=tuple(renumbered))


def format_script_text(script: Script, carousel: bool = False) -> str:
    """Plain-text rendition of a script, ready to paste into an ads manager."""
    if carousel and script.slides:
        text = "\n\n".join(
            f"Slide {s.slide_number}: {s.headline}\n{s.body}" for s in script.slides
        )
        return text + f"\n\nCaption: {script.cta}"
    return f"{script.title}\n\n{script.hook}\n\n{script.body}\n\n{script.cta}"


# ---------------------------------------------------------------------------
# Image fitting / cover logic
# ---------------------------------------------------------------------------


def image_from_payload(payload: str) -> Image.Image:
    return Image.open(BytesIO(decode_payload(payload)))


def image_to_payload(img: Image.Image) -> str:
    buf = BytesIO()
    img.save(buf, format="PNG")
    return to_data_url(buf.getvalue(), "image/png")


def _compute_cover_scale(
        src_size: Tuple[int, int],
        dst_size: Tuple[int, int],
) -> float:
    sw, sh = src_size
    dw, dh = dst_size
    return max(dw / sw, dh / sh)


def fit_image_to_canvas(
        img: Image.Image,
        size: Tuple[int, int],
) -> Image.Image:
    """
    Scale img to fully cover the destination canvas, then center-crop.

    Edit models pick their own output size, so edited images are brought back
    onto the canvas of the requested format.
    """
    if img.size == size:
        return img
    dst_w, dst_h = size
    scale = _compute_cover_scale(img.size, size)
    new_w = max(dst_w, int(round(img.width * scale)))
    new_h = max(dst_h, int(round(img.height * scale)))

    resized = img.resize((new_w, new_h), Image.LANCZOS)

    left = (new_w - dst_w) // 2
    top = (new_h - dst_h) // 2
    return resized.crop((left, top, left + dst_w, top + dst_h))


# ---------------------------------------------------------------------------
# Logo overlay
# ---------------------------------------------------------------------------


def stamp_logo(img: Image.Image, logo: Image.Image) -> Image.Image:
    """
    Place the logo in a white rounded card at the bottom-right corner.

    The card height is a fixed share of the canvas so the logo stays visible
    on every format.
    """
    result = img.convert("RGBA")
    w, h = result.size

    margin_x = int(w * 0.05)
    margin_y = int(h * 0.06)
    card_target_h = max(1, int(h * 0.14))
    card_pad = int(card_target_h * 0.25)

    logo_img = logo.convert("RGBA")
    scale = min(
        card_target_h / float(logo_img.height),
        (w * 0.4) / float(logo_img.width),
    )
    logo_w = max(1, int(logo_img.width * scale))
    logo_h = max(1, int(logo_img.height * scale))
    logo_resized = logo_img.resize((logo_w, logo_h), Image.LANCZOS)

    card_w = logo_w + 2 * card_pad
    card_h = logo_h + 2 * card_pad
    card_x1 = w - margin_x
    card_y1 = h - margin_y
    card_x0 = max(0, card_x1 - card_w)
    card_y0 = max(0, card_y1 - card_h)

    card_draw = ImageDraw.Draw(result, "RGBA")
    card_draw.rounded_rectangle(
        (card_x0, card_y0, card_x1, card_y1),
        radius=int(min(card_w, card_h) * 0.25),
        fill=(255, 255, 255, 235),
    )
    result.alpha_composite(logo_resized, dest=(card_x0 + card_pad, card_y0 + card_pad))
    logging.debug("Stamped %sx%s logo card onto %sx%s image", card_w, card_h, w, h)
    return result.convert("RGB")

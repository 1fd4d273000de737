from __future__ import annotations

"""
Helpers for loading a campaign brief from YAML or JSON into a CampaignInput.

A brief describes one ad set to generate:

    product_name: WakeUp Coffee
    pain_point: Morning fatigue
    target_audience: students
    archetype: us_vs_them        # enum name or stored value
    format: square               # square | story | landscape | carousel
    tone: urgent
    use_research: true
    color_palette: custom
    custom_colors: ["#ffcc00", "#000000", "#ff0000"]
    reference_image: images/bag.png   # relative to the brief file
    logo_image: images/logo.png
"""

import json
import mimetypes
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar, Union

import yaml

from .models import (
    DEFAULT_CUSTOM_COLORS,
    FORMAT_ALIASES,
    AdArchetype,
    AdFormat,
    AdTone,
    CampaignInput,
)
from .prompts import find_palette
from .utils import normalize_hex_color, to_data_url

E = TypeVar("E", bound=Enum)


def parse_choice(enum_cls: Type[E], value: Any, aliases: Optional[Dict[str, E]] = None) -> E:
    """
    Resolve a user-supplied enum value.

    Accepts the stored value ("Us vs. Them"), the member name in any case with
    dashes or spaces for underscores ("us-vs-them"), or an alias.
    """
    if isinstance(value, enum_cls):
        return value
    text = str(value).strip()
    for member in enum_cls:
        if member.value == text:
            return member
    key = text.upper().replace("-", "_").replace(" ", "_")
    if key in enum_cls.__members__:
        return enum_cls.__members__[key]
    if aliases and text.lower() in aliases:
        return aliases[text.lower()]
    choices = ", ".join(m.name.lower() for m in enum_cls)
    raise ValueError(f"Unknown {enum_cls.__name__} {value!r}; expected one of: {choices}")


def parse_format(value: Any) -> AdFormat:
    return parse_choice(AdFormat, value, FORMAT_ALIASES)


def load_image_payload(path: Union[str, Path]) -> str:
    """Read an image file into a data: URL."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {path}")
    mime_type = mimetypes.guess_type(path.name)[0] or "image/png"
    if not mime_type.startswith("image/"):
        raise ValueError(f"Not an image file: {path}")
    return to_data_url(path.read_bytes(), mime_type)


def load_brief(
        path: Union[str, Path],
        defaults: Optional[Dict[str, Any]] = None,
) -> CampaignInput:
    """
    Load a campaign brief from a YAML or JSON file and construct a CampaignInput.

    The function:
      - Accepts .yml, .yaml, or .json files.
      - Requires product_name and target_audience.
      - Resolves archetype, format and tone by name or stored value.
      - Validates the palette and, for "custom", exactly three hex colours.
      - Reads reference and logo images relative to the brief into data: URLs.

    Parameters
    ----------
    path:
        Filesystem path to the brief document.
    defaults:
        Field values used when the brief leaves them out, e.g. the product
        of the session a new ad set is added to.

    Returns
    -------
    CampaignInput
        Parameters ready to hand to CampaignStudio.submit_campaign or
        submit_ad_set.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Brief file not found: {path}")

    with path.open("r", encoding="utf-8") as f:
        if path.suffix.lower() in {".yml", ".yaml"}:
            raw = yaml.safe_load(f)
        else:
            raw = json.load(f)
    if not isinstance(raw, dict):
        raise ValueError("Brief must be a mapping of fields.")
    raw = {**(defaults or {}), **raw}

    product_name = str(raw.get("product_name") or "").strip()
    target_audience = str(raw.get("target_audience") or "").strip()
    if not product_name or not target_audience:
        raise ValueError("Brief must have 'product_name' and 'target_audience' fields.")

    palette = str(raw.get("color_palette") or "default")
    if find_palette(palette) is None:
        raise ValueError(f"Unknown color_palette {palette!r}")

    colors_raw = raw.get("custom_colors")
    if colors_raw is None:
        custom_colors = DEFAULT_CUSTOM_COLORS
    else:
        if len(colors_raw) != 3:
            raise ValueError("custom_colors must list exactly 3 hex colours.")
        custom_colors = tuple(normalize_hex_color(str(c)) for c in colors_raw)

    # Image paths are relative to the brief so briefs can ship with their assets.
    def _image(key: str) -> Optional[str]:
        value = raw.get(key)
        if not value:
            return None
        image_path = Path(value)
        if not image_path.is_absolute():
            image_path = path.parent / image_path
        return load_image_payload(image_path)

    return CampaignInput(
        product_name=product_name,
        pain_point=str(raw.get("pain_point") or "").strip(),
        target_audience=target_audience,
        archetype=parse_choice(AdArchetype, raw.get("archetype", AdArchetype.US_VS_THEM)),
        format=parse_format(raw.get("format", AdFormat.SQUARE)),
        tone=parse_choice(AdTone, raw.get("tone", AdTone.URGENT)),
        use_research=bool(raw.get("use_research", True)),
        use_pro_mode=bool(raw.get("use_pro_mode", False)),
        color_palette=palette,
        custom_colors=custom_colors,
        reference_image=_image("reference_image"),
        logo_image=_image("logo_image"),
    )

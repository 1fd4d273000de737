from __future__ import annotations

"""
Conversion between the session history and its persisted JSON form.

The persisted form is a JSON array of session objects using camelCase field
names (productInfo, adSets, lastModified, imageUrl, ...). Optional fields that
are unset are left out entirely on write and come back as None on read, so a
save/load cycle reproduces the same value.
"""

import json
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import (
    Ad,
    AdArchetype,
    AdFormat,
    AdSet,
    CarouselSlide,
    ProductInfo,
    ResearchSource,
    Script,
    Session,
)


def _put(out: Dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        out[key] = value


def _require(raw: Dict[str, Any], key: str, where: str) -> Any:
    if key not in raw or raw[key] is None:
        raise ValueError(f"{where} is missing required field '{key}'")
    return raw[key]


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def slide_to_dict(slide: CarouselSlide) -> Dict[str, Any]:
    return {
        "slideNumber": slide.slide_number,
        "visualDescription": slide.visual_description,
        "headline": slide.headline,
        "body": slide.body,
    }


def script_to_dict(script: Script) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "title": script.title,
        "hook": script.hook,
        "body": script.body,
        "cta": script.cta,
    }
    if script.slides is not None:
        out["slides"] = [slide_to_dict(s) for s in script.slides]
    return out


def ad_to_dict(ad: Ad) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "id": ad.id,
        "timestamp": ad.timestamp,
        "scripts": [script_to_dict(s) for s in ad.scripts],
        "imagePrompt": ad.image_prompt,
        "imageUrl": ad.image_url,
    }
    _put(out, "videoUrl", ad.video_url)
    _put(out, "userRequest", ad.user_request)
    if ad.research_sources is not None:
        out["researchSources"] = [
            {"title": s.title, "uri": s.uri} for s in ad.research_sources
        ]
    return out


def ad_set_to_dict(ad_set: AdSet) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "id": ad_set.id,
        "name": ad_set.name,
        "targetAudience": ad_set.target_audience,
        "archetype": ad_set.archetype.value,
        "format": ad_set.format.value,
        "ads": [ad_to_dict(a) for a in ad_set.ads],
        "createdAt": ad_set.created_at,
    }
    if ad_set.custom_colors is not None:
        out["customColors"] = list(ad_set.custom_colors)
    _put(out, "referenceImage", ad_set.reference_image)
    _put(out, "logoImage", ad_set.logo_image)
    return out


def session_to_dict(session: Session) -> Dict[str, Any]:
    return {
        "id": session.id,
        "title": session.title,
        "productInfo": {
            "name": session.product_info.name,
            "painPoint": session.product_info.pain_point,
        },
        "adSets": [ad_set_to_dict(a) for a in session.ad_sets],
        "lastModified": session.last_modified,
    }


def dump_sessions(sessions: Iterable[Session]) -> str:
    """Serialize a sessions collection into its JSON text form."""
    return json.dumps([session_to_dict(s) for s in sessions], ensure_ascii=False)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def slide_from_dict(raw: Dict[str, Any]) -> CarouselSlide:
    return CarouselSlide(
        slide_number=int(_require(raw, "slideNumber", "carousel slide")),
        visual_description=raw.get("visualDescription") or "",
        headline=raw.get("headline") or "",
        body=raw.get("body") or "",
    )


def script_from_dict(raw: Dict[str, Any]) -> Script:
    slides_raw = raw.get("slides")
    slides: Optional[Tuple[CarouselSlide, ...]] = None
    if slides_raw is not None:
        slides = tuple(slide_from_dict(s) for s in slides_raw)
    return Script(
        title=raw.get("title") or "",
        hook=raw.get("hook") or "",
        body=raw.get("body") or "",
        cta=raw.get("cta") or "",
        slides=slides,
    )


def ad_from_dict(raw: Dict[str, Any]) -> Ad:
    scripts_raw = raw.get("scripts")
    if scripts_raw is None and isinstance(raw.get("script"), dict):
        # Histories written before multiple scripts per ad stored a single
        # "script" object.
        scripts_raw = [raw["script"]]

    sources_raw = raw.get("researchSources")
    sources: Optional[Tuple[ResearchSource, ...]] = None
    if sources_raw is not None:
        sources = tuple(
            ResearchSource(title=s.get("title", "Source"), uri=s.get("uri", "#"))
            for s in sources_raw
        )

    return Ad(
        id=_require(raw, "id", "ad"),
        timestamp=int(_require(raw, "timestamp", "ad")),
        scripts=tuple(script_from_dict(s) for s in scripts_raw or []),
        image_prompt=raw.get("imagePrompt") or "",
        image_url=raw.get("imageUrl") or "",
        video_url=raw.get("videoUrl"),
        user_request=raw.get("userRequest"),
        research_sources=sources,
    )


def ad_set_from_dict(raw: Dict[str, Any]) -> AdSet:
    colors_raw = raw.get("customColors")
    colors = None
    if colors_raw is not None:
        if len(colors_raw) != 3:
            raise ValueError("customColors must hold exactly 3 colours")
        colors = tuple(str(c) for c in colors_raw)

    return AdSet(
        id=_require(raw, "id", "ad set"),
        name=raw.get("name") or "",
        target_audience=raw.get("targetAudience") or "",
        archetype=AdArchetype(_require(raw, "archetype", "ad set")),
        format=AdFormat(_require(raw, "format", "ad set")),
        ads=tuple(ad_from_dict(a) for a in raw.get("ads") or []),
        created_at=int(_require(raw, "createdAt", "ad set")),
        custom_colors=colors,
        reference_image=raw.get("referenceImage"),
        logo_image=raw.get("logoImage"),
    )


def session_from_dict(raw: Dict[str, Any]) -> Session:
    info = raw.get("productInfo") or {}
    return Session(
        id=_require(raw, "id", "session"),
        title=raw.get("title", info.get("name") or ""),
        product_info=ProductInfo(
            name=info.get("name") or "",
            pain_point=info.get("painPoint") or "",
        ),
        ad_sets=tuple(ad_set_from_dict(a) for a in raw.get("adSets") or []),
        last_modified=int(_require(raw, "lastModified", "session")),
    )


def load_sessions(text: str) -> Tuple[Session, ...]:
    """
    Parse the JSON text form back into sessions.

    Raises ValueError (json.JSONDecodeError is a subclass) when the text is not
    a valid history; callers decide whether that is fatal.
    """
    raw = json.loads(text)
    if not isinstance(raw, list):
        raise ValueError("Session history must be a JSON array")
    sessions: List[Session] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError("Session entries must be JSON objects")
        sessions.append(session_from_dict(item))
    return tuple(sessions)

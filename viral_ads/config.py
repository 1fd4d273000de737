from __future__ import annotations

"""Runtime settings read from the environment."""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from .storage import DEFAULT_QUOTA_BYTES

DEFAULT_HOME = Path.home() / ".viral_ads"


@dataclass(frozen=True)
class Settings:
    # Gemini API key; read from GEMINI_API_KEY or GOOGLE_API_KEY.
    api_key: Optional[str] = None

    text_model: str = "gemini-2.5-flash"
    image_model: str = "imagen-4.0-generate-001"

    # Image-conditioned editing, also the fallback for prompt-only generation.
    edit_model: str = "gemini-2.5-flash-image"
    video_model: str = "veo-3.1-fast-generate-preview"

    # Hard upper bound for a single backend call, in seconds.
    request_timeout: float = 30.0

    video_poll_interval: float = 5.0
    video_timeout: float = 600.0

    store_path: Path = DEFAULT_HOME / "store.json"
    store_quota_bytes: int = DEFAULT_QUOTA_BYTES
    media_dir: Path = DEFAULT_HOME / "media"

    # Language the ad copy is written in. Image prompts are always English.
    copy_language: str = "Spanish"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            api_key=env.get("GEMINI_API_KEY") or env.get("GOOGLE_API_KEY") or None,
            text_model=env.get("GEMINI_TEXT_MODEL", defaults.text_model),
            image_model=env.get("GEMINI_IMAGE_MODEL", defaults.image_model),
            edit_model=env.get("GEMINI_EDIT_MODEL", defaults.edit_model),
            video_model=env.get("GEMINI_VIDEO_MODEL", defaults.video_model),
            request_timeout=float(env.get("VIRAL_ADS_TIMEOUT", defaults.request_timeout)),
            video_poll_interval=float(
                env.get("VIRAL_ADS_VIDEO_POLL_INTERVAL", defaults.video_poll_interval)
            ),
            video_timeout=float(env.get("VIRAL_ADS_VIDEO_TIMEOUT", defaults.video_timeout)),
            store_path=Path(env.get("VIRAL_ADS_STORE", str(defaults.store_path))).expanduser(),
            store_quota_bytes=int(
                env.get("VIRAL_ADS_STORE_QUOTA_BYTES", defaults.store_quota_bytes)
            ),
            media_dir=Path(env.get("VIRAL_ADS_MEDIA_DIR", str(defaults.media_dir))).expanduser(),
            copy_language=env.get("VIRAL_ADS_COPY_LANGUAGE", defaults.copy_language),
        )

    def with_api_key(self, api_key: str) -> "Settings":
        return replace(self, api_key=api_key)

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest
from PIL import Image

from viral_ads.errors import GatewayError
from viral_ads.gateway import ResearchResult, ScriptBatch
from viral_ads.models import (
    Ad,
    AdArchetype,
    AdFormat,
    AdSet,
    CampaignInput,
    ProductInfo,
    ResearchSource,
    Script,
    Session,
)
from viral_ads.storage import LocalStore
from viral_ads.store import SessionStore
from viral_ads.utils import image_to_payload


def png_payload(size: Tuple[int, int] = (64, 64), color=(200, 30, 30)) -> str:
    # A little noise keeps the encoded image from compressing to a few bytes.
    noise = Image.effect_noise(size, 64).convert("RGB")
    return image_to_payload(Image.blend(Image.new("RGB", size, color), noise, 0.1))


def make_script(n: int = 1, slides=None) -> Script:
    return Script(
        title=f"Title {n}",
        hook=f"Hook {n}",
        body=f"Body text number {n} that is long enough to be split across two slides.",
        cta=f"Buy now {n}",
        slides=slides,
    )


def make_ad(ad_id: str = "ad-1", timestamp: int = 1000, **kwargs) -> Ad:
    fields = dict(
        id=ad_id,
        timestamp=timestamp,
        scripts=tuple(make_script(i) for i in range(1, 6)),
        image_prompt="A cozy kitchen at sunrise",
        image_url="data:image/png;base64," + "A" * 200,
        user_request="Initial Generation",
    )
    fields.update(kwargs)
    return Ad(**fields)


def make_ad_set(ad_set_id: str = "set-1", ads=None, **kwargs) -> AdSet:
    fields = dict(
        id=ad_set_id,
        name="students - Us vs. Them",
        target_audience="students",
        archetype=AdArchetype.US_VS_THEM,
        format=AdFormat.SQUARE,
        ads=tuple(ads) if ads is not None else (make_ad(),),
        created_at=1000,
    )
    fields.update(kwargs)
    return AdSet(**fields)


def make_session(session_id: str = "s-1", ad_sets=None, **kwargs) -> Session:
    fields = dict(
        id=session_id,
        title="WakeUp Coffee",
        product_info=ProductInfo(name="WakeUp Coffee", pain_point="Morning fatigue"),
        ad_sets=tuple(ad_sets) if ad_sets is not None else (make_ad_set(),),
        last_modified=1000,
    )
    fields.update(kwargs)
    return Session(**fields)


def wakeup_input(**kwargs) -> CampaignInput:
    fields = dict(
        product_name="WakeUp Coffee",
        pain_point="Morning fatigue",
        target_audience="students",
        archetype=AdArchetype.US_VS_THEM,
        format=AdFormat.SQUARE,
    )
    fields.update(kwargs)
    return CampaignInput(**fields)


class FakeGateway:
    """
    Scripted stand-in for GeminiGateway.

    failures maps a method name to the exception it raises. When gate is set to
    an asyncio.Event, script and video calls wait for it before answering.
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[str, tuple]] = []
        self.failures: Dict[str, Exception] = {}
        self.gate: Optional[asyncio.Event] = None
        self.slides = None
        self.api_key = "initial"
        self._images = 0

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, args))
        if name in self.failures:
            raise self.failures[name]

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def _image(self, tag: str) -> str:
        self._images += 1
        body = f"{tag}{self._images:04d}" + "B" * 200
        return "data:image/png;base64," + body + "B" * (-len(body) % 4)

    def _batch(self, prompt: str) -> ScriptBatch:
        return ScriptBatch(
            scripts=tuple(make_script(i, slides=self.slides) for i in range(1, 6)),
            image_prompt=prompt,
        )

    async def _wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()

    async def research(self, product_name, audience, pain_point, enabled=True):
        self._record("research", product_name, audience, pain_point, enabled)
        if not enabled:
            return ResearchResult("disabled", ())
        return ResearchResult(
            "Students drink coffee before exams.",
            (ResearchSource(title="Coffee trends", uri="https://example.com/coffee"),),
        )

    async def generate_scripts(self, data, research_context, color_directive):
        await self._wait()
        self._record("generate_scripts", data, research_context, color_directive)
        return self._batch("A dorm desk at 7am, harsh light vs warm light")

    async def refine_scripts(self, data, previous_image_prompt, instruction):
        await self._wait()
        self._record("refine_scripts", data, previous_image_prompt, instruction)
        return self._batch(f"{previous_image_prompt} | {instruction}")

    async def generate_image(self, prompt, fmt):
        self._record("generate_image", prompt, fmt)
        return self._image("GEN")

    async def edit_image(self, source, prompt, fmt, logo=None):
        self._record("edit_image", source, prompt, fmt, logo)
        return self._image("EDIT")

    async def animate_image(self, image, fmt):
        await self._wait()
        self._record("animate_image", image, fmt)
        return "file:///tmp/video.mp4"

    def use_api_key(self, api_key):
        self.api_key = api_key


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def local_store(tmp_path) -> LocalStore:
    return LocalStore(tmp_path / "store.json")


@pytest.fixture
def store(local_store) -> SessionStore:
    s = SessionStore(local_store).open()
    yield s
    s.close()

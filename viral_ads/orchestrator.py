from __future__ import annotations

"""
User actions: sequencing gateway calls and folding results into the history.

Each action runs in an action slot (the kind of action plus the id it
targets). A slot holds at most one in-flight request, so submitting the same
action twice is rejected rather than merely discouraged. Results are applied
by explicit ids through the pure version_tree operations, which makes a late
completion safe even if the user has moved elsewhere. Gateway failures stop at
this layer: they become an ActionOutcome carrying one message per action
category and leave the history untouched.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from .errors import EntitlementError, GatewayError, SlotBusy
from .models import (
    DEFAULT_CUSTOM_COLORS,
    Ad,
    AdFormat,
    AdSet,
    AdTone,
    CampaignInput,
    GeneratedContent,
    ProductInfo,
    Script,
    Session,
)
from .prompts import build_color_directive, build_logo_scene_prompt
from .store import SessionStore
from .strategies import Strategy, first_success
from .utils import backfill_carousel_slides, derive_ad_set_name, new_id, now_ms
from .version_tree import (
    append_ad_set,
    append_ad_version,
    create_session,
    delete_session,
    find_ad,
    find_ad_set,
    find_session,
    latest_ad,
    rename_ad_set,
    update_ad_version_in_place,
)

Slot = Tuple[str, ...]

INITIAL_REQUEST = "Initial Generation"
VARIATION_REQUEST = "Variation (Reversion)"
ENHANCE_REQUEST = "Product Enhancement (Studio Mode)"


def resize_request(fmt: AdFormat) -> str:
    return f"Resized to {fmt.value}"


class ActionCategory(Enum):
    CAMPAIGN = "campaign"
    AD_SET = "ad_set"
    REFINE = "refine"
    RESIZE = "resize"
    VARIATION = "variation"
    ENHANCE = "enhance"
    ANIMATE = "animate"


ERROR_MESSAGES: Dict[ActionCategory, str] = {
    ActionCategory.CAMPAIGN: "There was an error connecting to the AI. Please try again.",
    ActionCategory.AD_SET: "Error creating the ad set.",
    ActionCategory.REFINE: "Could not refine the ad.",
    ActionCategory.RESIZE: "Error resizing the image. Please try again.",
    ActionCategory.VARIATION: "Could not generate the variation. Please try again.",
    ActionCategory.ENHANCE: "Error processing the uploaded image. Try a smaller image.",
    ActionCategory.ANIMATE: "Error generating video. Please try again.",
}

ENTITLEMENT_MESSAGE = (
    "The API key has no video access or has expired. Please select a new key."
)


class ActionStatus(Enum):
    DONE = "done"
    FAILED = "failed"

    # Same slot already in flight; nothing was sent.
    BUSY = "busy"

    # Nothing to do: unknown target, empty instruction, ad already animated.
    SKIPPED = "skipped"

    # Finished after the store was closed; the result was dropped.
    DISCARDED = "discarded"


@dataclass(frozen=True)
class ActionOutcome:
    category: ActionCategory
    status: ActionStatus
    message: Optional[str] = None
    session_id: Optional[str] = None
    ad_set_id: Optional[str] = None
    ad_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ActionStatus.DONE


class SlotRegistry:
    """In-flight tokens keyed by action slot."""

    def __init__(self) -> None:
        self._in_flight: Dict[Slot, object] = {}

    def is_busy(self, slot: Slot) -> bool:
        return slot in self._in_flight

    @contextmanager
    def hold(self, slot: Slot) -> Iterator[object]:
        if slot in self._in_flight:
            raise SlotBusy(slot)
        token = object()
        self._in_flight[slot] = token
        try:
            yield token
        finally:
            if self._in_flight.get(slot) is token:
                del self._in_flight[slot]


class CredentialHelper:
    """
    Hook for picking API credentials before and after video requests.

    The default does nothing; front ends override it to ask the user.
    """

    async def has_selected_key(self) -> bool:
        return True

    async def select_key(self) -> Optional[str]:
        """Ask for a new key. Returns it, or None when the user declined."""
        return None


class CampaignStudio:
    """
    Runs user actions against a SessionStore using a content gateway.

    The gateway is anything with the GeminiGateway coroutine methods (research,
    generate_scripts, refine_scripts, generate_image, edit_image,
    animate_image).
    """

    def __init__(
            self,
            store: SessionStore,
            gateway,
            credentials: Optional[CredentialHelper] = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.credentials = credentials or CredentialHelper()
        self.slots = SlotRegistry()

    # -- plumbing ---------------------------------------------------------------

    async def _run(
            self,
            slot: Slot,
            category: ActionCategory,
            action: Callable[[], Awaitable[ActionOutcome]],
    ) -> ActionOutcome:
        try:
            with self.slots.hold(slot):
                return await action()
        except SlotBusy:
            logging.info("Ignoring %s request: slot %s is already in flight.", category.value, slot)
            return ActionOutcome(category, ActionStatus.BUSY)
        except GatewayError as exc:
            logging.error("%s failed: %s", category.value, exc)
            return ActionOutcome(category, ActionStatus.FAILED, ERROR_MESSAGES[category])

    def _discarded(self, category: ActionCategory) -> Optional[ActionOutcome]:
        if self.store.is_open:
            return None
        logging.info("Dropping %s result: store already closed.", category.value)
        return ActionOutcome(category, ActionStatus.DISCARDED)

    def _locate(
            self, session_id: str, ad_set_id: str
    ) -> Tuple[Optional[Session], Optional[AdSet]]:
        session = find_session(self.store.sessions, session_id)
        return session, find_ad_set(session, ad_set_id)

    # -- image strategies ---------------------------------------------------------

    def image_strategies(
            self,
            prompt: str,
            fmt: AdFormat,
            reference_image: Optional[str] = None,
            logo_image: Optional[str] = None,
    ) -> List[Strategy[str]]:
        """
        Image generation order for new content.

        A product photo is edited into the scene (with the logo when there is
        one); with only a logo the logo is edited into a generated scene; plain
        prompt-only generation is always the last resort.
        """
        gw = self.gateway
        strategies: List[Strategy[str]] = []
        if reference_image:
            strategies.append(Strategy(
                "edit-reference",
                lambda: gw.edit_image(reference_image, prompt, fmt, logo_image),
            ))
        elif logo_image:
            strategies.append(Strategy(
                "edit-logo",
                lambda: gw.edit_image(logo_image, build_logo_scene_prompt(prompt), fmt),
            ))
        strategies.append(Strategy("generate", lambda: gw.generate_image(prompt, fmt)))
        return strategies

    def _edit_then_generate(
            self, source: Optional[str], prompt: str, fmt: AdFormat
    ) -> List[Strategy[str]]:
        gw = self.gateway
        strategies: List[Strategy[str]] = []
        if source:
            strategies.append(Strategy("edit-source", lambda: gw.edit_image(source, prompt, fmt)))
        strategies.append(Strategy("generate", lambda: gw.generate_image(prompt, fmt)))
        return strategies

    # -- generation -------------------------------------------------------------

    @staticmethod
    def finish_scripts(scripts: Sequence[Script], fmt: AdFormat) -> Tuple[Script, ...]:
        """Carousel scripts get their four slides; other formats carry none."""
        if fmt == AdFormat.CAROUSEL:
            return tuple(backfill_carousel_slides(s) for s in scripts)
        return tuple(replace(s, slides=None) if s.slides is not None else s for s in scripts)

    async def generate_content(self, data: CampaignInput) -> GeneratedContent:
        """Research, then scripts, then the image. Raises GatewayError."""
        research = await self.gateway.research(
            data.product_name, data.target_audience, data.pain_point, data.use_research
        )
        batch = await self.gateway.generate_scripts(
            data, research.summary, build_color_directive(data)
        )
        image_url = await first_success(self.image_strategies(
            batch.image_prompt, data.format, data.reference_image, data.logo_image
        ))
        return GeneratedContent(
            scripts=self.finish_scripts(batch.scripts, data.format),
            image_prompt=batch.image_prompt,
            image_url=image_url,
            user_request=INITIAL_REQUEST,
            research_sources=research.sources,
        )

    @staticmethod
    def _new_ad(content: GeneratedContent) -> Ad:
        return Ad(
            id=new_id(),
            timestamp=now_ms(),
            scripts=content.scripts,
            image_prompt=content.image_prompt,
            image_url=content.image_url,
            user_request=content.user_request,
            research_sources=content.research_sources,
        )

    @staticmethod
    def _new_ad_set(data: CampaignInput, ad: Ad) -> AdSet:
        return AdSet(
            id=new_id(),
            name=derive_ad_set_name(data.target_audience, data.archetype),
            target_audience=data.target_audience,
            archetype=data.archetype,
            format=data.format,
            ads=(ad,),
            created_at=now_ms(),
            custom_colors=tuple(data.custom_colors) if data.color_palette == "custom" else None,
            reference_image=data.reference_image,
            logo_image=data.logo_image,
        )

    # -- actions: campaigns and ad sets ---------------------------------------------

    async def submit_campaign(self, data: CampaignInput) -> ActionOutcome:
        """Create a new session with its first ad set and select it."""
        category = ActionCategory.CAMPAIGN

        async def action() -> ActionOutcome:
            content = await self.generate_content(data)
            dropped = self._discarded(category)
            if dropped:
                return dropped
            ad = self._new_ad(content)
            ad_set = self._new_ad_set(data, ad)
            session_id = new_id()
            self.store.apply(lambda sessions: create_session(
                sessions,
                ad_set,
                ProductInfo(name=data.product_name, pain_point=data.pain_point),
                title=data.product_name,
                session_id=session_id,
            )[0])
            self.store.navigate(lambda nav: nav.campaign_created(session_id, ad_set.id))
            logging.info("Created session %s with ad set '%s'", session_id, ad_set.name)
            return ActionOutcome(category, ActionStatus.DONE, None, session_id, ad_set.id, ad.id)

        return await self._run(("campaign",), category, action)

    async def submit_ad_set(self, session_id: str, data: CampaignInput) -> ActionOutcome:
        """Generate a new ad set inside an existing session."""
        category = ActionCategory.AD_SET
        if find_session(self.store.sessions, session_id) is None:
            return ActionOutcome(category, ActionStatus.SKIPPED, session_id=session_id)

        async def action() -> ActionOutcome:
            content = await self.generate_content(data)
            dropped = self._discarded(category)
            if dropped:
                return dropped
            ad = self._new_ad(content)
            ad_set = self._new_ad_set(data, ad)
            self.store.apply(lambda sessions: append_ad_set(sessions, session_id, ad_set))
            if find_ad_set(find_session(self.store.sessions, session_id), ad_set.id) is None:
                logging.info("Session %s is gone; new ad set dropped.", session_id)
                return ActionOutcome(category, ActionStatus.SKIPPED, session_id=session_id)
            self.store.navigate(lambda nav: nav.ad_set_created(session_id, ad_set.id))
            return ActionOutcome(category, ActionStatus.DONE, None, session_id, ad_set.id, ad.id)

        return await self._run(("ad_set", session_id), category, action)

    # -- actions: new versions ----------------------------------------------------

    def refinement_context(self, session: Session, ad_set: AdSet) -> CampaignInput:
        """Rebuild generation parameters for an existing ad set."""
        return CampaignInput(
            product_name=session.product_info.name,
            pain_point=session.product_info.pain_point,
            target_audience=ad_set.target_audience,
            archetype=ad_set.archetype,
            format=ad_set.format,
            tone=AdTone.URGENT,
            use_research=False,
            use_pro_mode=False,
            color_palette="custom" if ad_set.custom_colors else "default",
            custom_colors=ad_set.custom_colors or DEFAULT_CUSTOM_COLORS,
            reference_image=ad_set.reference_image,
            logo_image=ad_set.logo_image,
        )

    async def refine(self, session_id: str, ad_set_id: str, instruction: str) -> ActionOutcome:
        """Regenerate scripts and image from the latest version plus an instruction."""
        category = ActionCategory.REFINE
        session, ad_set = self._locate(session_id, ad_set_id)
        previous = latest_ad(ad_set)
        if session is None or ad_set is None or previous is None or not instruction.strip():
            return ActionOutcome(category, ActionStatus.SKIPPED, None, session_id, ad_set_id)
        context = self.refinement_context(session, ad_set)

        async def action() -> ActionOutcome:
            batch = await self.gateway.refine_scripts(context, previous.image_prompt, instruction)
            image_url = await first_success(self.image_strategies(
                batch.image_prompt, context.format, context.reference_image, context.logo_image
            ))
            dropped = self._discarded(category)
            if dropped:
                return dropped
            ad = self._new_ad(GeneratedContent(
                scripts=self.finish_scripts(batch.scripts, context.format),
                image_prompt=batch.image_prompt,
                image_url=image_url,
                user_request=instruction,
                research_sources=previous.research_sources,
            ))
            self.store.apply(lambda s: append_ad_version(s, session_id, ad_set_id, ad))
            return ActionOutcome(category, ActionStatus.DONE, None, session_id, ad_set_id, ad.id)

        return await self._run(("refine", ad_set_id), category, action)

    async def _image_version(
            self,
            category: ActionCategory,
            session_id: str,
            ad_set_id: str,
            ad_id: str,
            build: Callable[[AdSet, Ad], Tuple[List[Strategy[str]], str]],
    ) -> ActionOutcome:
        """New version cloned from ad_id with only the image and request changed."""
        _, ad_set = self._locate(session_id, ad_set_id)
        source = find_ad(ad_set, ad_id)
        if ad_set is None or source is None:
            return ActionOutcome(category, ActionStatus.SKIPPED, None, session_id, ad_set_id, ad_id)
        strategies, user_request = build(ad_set, source)

        async def action() -> ActionOutcome:
            image_url = await first_success(strategies)
            dropped = self._discarded(category)
            if dropped:
                return dropped
            ad = replace(
                source,
                id=new_id(),
                timestamp=now_ms(),
                image_url=image_url,
                user_request=user_request,
            )
            self.store.apply(lambda s: append_ad_version(s, session_id, ad_set_id, ad))
            return ActionOutcome(category, ActionStatus.DONE, None, session_id, ad_set_id, ad.id)

        # Resize, variation and enhancement share one slot per ad set.
        return await self._run(("image", ad_set_id), category, action)

    async def resize(
            self, session_id: str, ad_set_id: str, ad_id: str, target: AdFormat
    ) -> ActionOutcome:
        def build(ad_set: AdSet, ad: Ad):
            return (
                self._edit_then_generate(ad_set.reference_image, ad.image_prompt, target),
                resize_request(target),
            )

        return await self._image_version(ActionCategory.RESIZE, session_id, ad_set_id, ad_id, build)

    async def variation(self, session_id: str, ad_set_id: str, ad_id: str) -> ActionOutcome:
        """Re-render a version from the stored product photo, or its own image."""
        def build(ad_set: AdSet, ad: Ad):
            source = ad_set.reference_image or ad.image_url
            return (
                self._edit_then_generate(source, ad.image_prompt, ad_set.format),
                VARIATION_REQUEST,
            )

        return await self._image_version(
            ActionCategory.VARIATION, session_id, ad_set_id, ad_id, build
        )

    async def enhance(
            self, session_id: str, ad_set_id: str, ad_id: str, upload: str
    ) -> ActionOutcome:
        """Composite an uploaded product photo into the version's scene (edit only)."""
        gw = self.gateway

        def build(ad_set: AdSet, ad: Ad):
            return (
                [Strategy(
                    "edit-upload",
                    lambda: gw.edit_image(upload, ad.image_prompt, ad_set.format),
                )],
                ENHANCE_REQUEST,
            )

        return await self._image_version(ActionCategory.ENHANCE, session_id, ad_set_id, ad_id, build)

    # -- actions: in-place enrichment ---------------------------------------------

    async def animate(self, session_id: str, ad_set_id: str, ad_id: str) -> ActionOutcome:
        """
        Attach a video to an existing version, in place.

        Versions that already carry a video are left alone.
        """
        category = ActionCategory.ANIMATE
        _, ad_set = self._locate(session_id, ad_set_id)
        target = find_ad(ad_set, ad_id)
        if ad_set is None or target is None or target.video_url:
            return ActionOutcome(category, ActionStatus.SKIPPED, None, session_id, ad_set_id, ad_id)
        slot: Slot = ("animate", ad_set_id)
        if self.slots.is_busy(slot):
            return ActionOutcome(category, ActionStatus.BUSY, None, session_id, ad_set_id, ad_id)

        await self._ensure_credentials()

        async def action() -> ActionOutcome:
            try:
                video_url = await self.gateway.animate_image(target.image_url, ad_set.format)
            except EntitlementError as exc:
                logging.error("Video model not available for this key: %s", exc)
                await self._reselect_credentials()
                return ActionOutcome(
                    category, ActionStatus.FAILED, ENTITLEMENT_MESSAGE, session_id, ad_set_id, ad_id
                )
            dropped = self._discarded(category)
            if dropped:
                return dropped
            self.store.apply(lambda s: update_ad_version_in_place(
                s, session_id, ad_set_id, ad_id, {"video_url": video_url}
            ))
            return ActionOutcome(category, ActionStatus.DONE, None, session_id, ad_set_id, ad_id)

        return await self._run(slot, category, action)

    async def _ensure_credentials(self) -> None:
        try:
            if not await self.credentials.has_selected_key():
                await self._reselect_credentials()
        except Exception as exc:
            logging.warning("Credential helper not available: %s", exc)

    async def _reselect_credentials(self) -> None:
        try:
            key = await self.credentials.select_key()
        except Exception as exc:
            logging.warning("Credential selection failed: %s", exc)
            return
        if key:
            self.gateway.use_api_key(key)

    # -- actions: bookkeeping ---------------------------------------------------

    def rename_ad_set(
            self, session_id: str, ad_set_id: str, name: str, target_audience: str
    ) -> None:
        self.store.apply(
            lambda s: rename_ad_set(s, session_id, ad_set_id, name, target_audience)
        )

    def delete_session(self, session_id: str) -> None:
        self.store.apply(lambda s: delete_session(s, session_id))
        self.store.navigate(lambda nav: nav.session_deleted(session_id))

    def new_session(self) -> None:
        self.store.navigate(lambda nav: nav.new_session())

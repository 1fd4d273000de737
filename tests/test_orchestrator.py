import asyncio

import pytest

from conftest import make_script, png_payload, wakeup_input
from viral_ads.errors import EntitlementError, GatewayError
from viral_ads.models import AdArchetype, AdFormat, CarouselSlide, ResearchSource
from viral_ads.navigation import ViewMode
from viral_ads.orchestrator import (
    ENHANCE_REQUEST,
    ENTITLEMENT_MESSAGE,
    ERROR_MESSAGES,
    INITIAL_REQUEST,
    VARIATION_REQUEST,
    ActionCategory,
    ActionStatus,
    CampaignStudio,
    CredentialHelper,
    resize_request,
)
from viral_ads.storage import LocalStore
from viral_ads.store import SessionStore
from viral_ads.strategies import strategy_names
from viral_ads.version_tree import find_ad_set, find_session


@pytest.fixture
def studio(store, gateway):
    return CampaignStudio(store, gateway)


def run(coro):
    return asyncio.run(coro)


def _ad_set(studio, outcome):
    return find_ad_set(find_session(studio.store.sessions, outcome.session_id), outcome.ad_set_id)


def test_new_campaign_creates_session_and_selects_it(studio, gateway):
    outcome = run(studio.submit_campaign(wakeup_input()))

    assert outcome.ok
    sessions = studio.store.sessions
    assert len(sessions) == 1
    session = sessions[0]
    assert session.title == "WakeUp Coffee"
    assert session.product_info.pain_point == "Morning fatigue"

    ad_set = session.ad_sets[0]
    assert ad_set.name == "students - Us vs. Them"
    assert ad_set.custom_colors is None
    assert len(ad_set.ads) == 1
    ad = ad_set.ads[0]
    assert ad.user_request == INITIAL_REQUEST
    assert len(ad.scripts) == 5
    assert ad.research_sources == (ResearchSource("Coffee trends", "https://example.com/coffee"),)
    assert gateway.call_names() == ["research", "generate_scripts", "generate_image"]

    nav = studio.store.navigation
    assert (nav.mode, nav.session_id, nav.ad_set_id) == (
        ViewMode.VIEW_AD_SET, session.id, ad_set.id
    )


def test_refining_twice_appends_versions(studio, gateway):
    created = run(studio.submit_campaign(wakeup_input()))
    first = run(studio.refine(created.session_id, created.ad_set_id, "Make it funnier"))
    second = run(studio.refine(created.session_id, created.ad_set_id, "Shorter hook"))

    assert first.ok and second.ok
    ads = _ad_set(studio, created).ads
    assert [a.user_request for a in ads] == [INITIAL_REQUEST, "Make it funnier", "Shorter hook"]
    assert ads[0].id == created.ad_id
    # Research is not repeated, its sources travel with the new versions.
    assert gateway.call_names().count("research") == 1
    assert ads[2].research_sources == ads[0].research_sources

    _, _, instruction = gateway.calls[-2][1]
    assert instruction == "Shorter hook"
    context = gateway.calls[-2][1][0]
    assert context.use_research is False
    assert context.archetype == AdArchetype.US_VS_THEM


def test_refine_with_blank_instruction_is_skipped(studio, gateway):
    created = run(studio.submit_campaign(wakeup_input()))
    outcome = run(studio.refine(created.session_id, created.ad_set_id, "   "))
    assert outcome.status == ActionStatus.SKIPPED
    assert "refine_scripts" not in gateway.call_names()


def test_failed_action_leaves_history_untouched(studio, gateway):
    created = run(studio.submit_campaign(wakeup_input()))
    before = studio.store.sessions

    gateway.failures["refine_scripts"] = GatewayError("backend down")
    outcome = run(studio.refine(created.session_id, created.ad_set_id, "Try again"))

    assert outcome.status == ActionStatus.FAILED
    assert outcome.message == ERROR_MESSAGES[ActionCategory.REFINE]
    assert studio.store.sessions is before


def test_failed_campaign_reports_message(studio, gateway):
    gateway.failures["generate_scripts"] = GatewayError("quota")
    outcome = run(studio.submit_campaign(wakeup_input()))
    assert outcome.status == ActionStatus.FAILED
    assert outcome.message == "There was an error connecting to the AI. Please try again."
    assert studio.store.sessions == ()


def test_image_strategy_order(studio):
    ref, logo = png_payload(), png_payload(color=(0, 0, 255))
    fmt = AdFormat.SQUARE
    assert strategy_names(studio.image_strategies("p", fmt, ref, logo)) == ["edit-reference", "generate"]
    assert strategy_names(studio.image_strategies("p", fmt, None, logo)) == ["edit-logo", "generate"]
    assert strategy_names(studio.image_strategies("p", fmt)) == ["generate"]


def test_reference_edit_failure_falls_back_to_generation(studio, gateway):
    gateway.failures["edit_image"] = GatewayError("edit refused")
    outcome = run(studio.submit_campaign(wakeup_input(reference_image=png_payload())))

    assert outcome.ok
    assert gateway.call_names()[-2:] == ["edit_image", "generate_image"]
    assert _ad_set(studio, outcome).ads[0].image_url.startswith("data:image/png;base64,GEN")


def test_reference_and_logo_are_both_sent_to_the_edit(studio, gateway):
    ref, logo = png_payload(), png_payload(color=(0, 0, 255))
    outcome = run(studio.submit_campaign(wakeup_input(reference_image=ref, logo_image=logo)))
    assert outcome.ok
    name, (source, _, _, sent_logo) = gateway.calls[-1]
    assert (name, source, sent_logo) == ("edit_image", ref, logo)
    ad_set = _ad_set(studio, outcome)
    assert (ad_set.reference_image, ad_set.logo_image) == (ref, logo)


def test_custom_colors_kept_only_for_custom_palette(studio):
    colors = ("#111111", "#222222", "#333333")
    plain = run(studio.submit_campaign(wakeup_input(custom_colors=colors)))
    assert _ad_set(studio, plain).custom_colors is None

    custom = run(studio.submit_ad_set(
        plain.session_id, wakeup_input(color_palette="custom", custom_colors=colors)
    ))
    assert _ad_set(studio, custom).custom_colors == colors


def test_submit_ad_set_appends_and_selects(studio):
    created = run(studio.submit_campaign(wakeup_input()))
    added = run(studio.submit_ad_set(
        created.session_id,
        wakeup_input(target_audience="parents", archetype=AdArchetype.THE_SKEPTIC),
    ))
    assert added.ok
    session = find_session(studio.store.sessions, created.session_id)
    assert [a.name for a in session.ad_sets] == ["students - Us vs. Them", "parents - The Skeptic"]
    assert studio.store.navigation.ad_set_id == added.ad_set_id

    missing = run(studio.submit_ad_set("gone", wakeup_input()))
    assert missing.status == ActionStatus.SKIPPED


def test_carousel_scripts_get_four_slides(studio, gateway):
    gateway.slides = (CarouselSlide(7, "Wide shot", "Only one", "Slide"),)
    outcome = run(studio.submit_campaign(wakeup_input(format=AdFormat.CAROUSEL)))
    for script in _ad_set(studio, outcome).ads[0].scripts:
        assert [s.slide_number for s in script.slides] == [1, 2, 3, 4]
        assert script.slides[0].headline == "Only one"


def test_non_carousel_scripts_carry_no_slides(studio, gateway):
    gateway.slides = (CarouselSlide(1, "Wide shot", "H", "B"),)
    outcome = run(studio.submit_campaign(wakeup_input(format=AdFormat.STORY)))
    assert all(s.slides is None for s in _ad_set(studio, outcome).ads[0].scripts)


def test_same_slot_twice_is_rejected(studio, gateway):
    created = run(studio.submit_campaign(wakeup_input()))

    async def scenario():
        gateway.gate = asyncio.Event()
        first = asyncio.create_task(studio.refine(created.session_id, created.ad_set_id, "A"))
        await asyncio.sleep(0)
        second = await studio.refine(created.session_id, created.ad_set_id, "B")
        # A different slot is not blocked by the pending refinement.
        resized = await studio.resize(
            created.session_id, created.ad_set_id, created.ad_id, AdFormat.STORY
        )
        gateway.gate.set()
        return await first, second, resized

    first, second, resized = run(scenario())
    assert first.ok and resized.ok
    assert second.status == ActionStatus.BUSY
    requests = [a.user_request for a in _ad_set(studio, created).ads]
    assert requests == [INITIAL_REQUEST, resize_request(AdFormat.STORY), "A"]


def test_resize_clones_version_with_new_image(studio, gateway):
    created = run(studio.submit_campaign(wakeup_input()))
    outcome = run(studio.resize(
        created.session_id, created.ad_set_id, created.ad_id, AdFormat.LANDSCAPE
    ))
    original, resized = _ad_set(studio, created).ads
    assert resized.user_request == "Resized to 16:9 (YouTube/Web)"
    assert resized.scripts == original.scripts
    assert resized.image_prompt == original.image_prompt
    assert resized.image_url != original.image_url
    assert resized.id == outcome.ad_id != original.id
    # No reference image: straight to generation at the new format.
    assert gateway.calls[-1][0] == "generate_image"
    assert gateway.calls[-1][1][1] == AdFormat.LANDSCAPE


def test_variation_edits_own_image_without_reference(studio, gateway):
    created = run(studio.submit_campaign(wakeup_input()))
    own_image = _ad_set(studio, created).ads[0].image_url
    outcome = run(studio.variation(created.session_id, created.ad_set_id, created.ad_id))
    assert outcome.ok
    name, args = gateway.calls[-1]
    assert (name, args[0]) == ("edit_image", own_image)
    assert _ad_set(studio, created).ads[-1].user_request == VARIATION_REQUEST


def test_enhance_has_no_fallback(studio, gateway):
    created = run(studio.submit_campaign(wakeup_input()))
    upload = png_payload()
    ok = run(studio.enhance(created.session_id, created.ad_set_id, created.ad_id, upload))
    assert ok.ok
    assert _ad_set(studio, created).ads[-1].user_request == ENHANCE_REQUEST

    gateway.failures["edit_image"] = GatewayError("too big")
    failed = run(studio.enhance(created.session_id, created.ad_set_id, created.ad_id, upload))
    assert failed.status == ActionStatus.FAILED
    assert failed.message == ERROR_MESSAGES[ActionCategory.ENHANCE]
    assert gateway.call_names()[-1] == "edit_image"
    assert len(_ad_set(studio, created).ads) == 2


def test_animate_patches_version_in_place(studio, gateway):
    created = run(studio.submit_campaign(wakeup_input()))
    run(studio.refine(created.session_id, created.ad_set_id, "v2"))

    outcome = run(studio.animate(created.session_id, created.ad_set_id, created.ad_id))
    assert outcome.ok
    ads = _ad_set(studio, created).ads
    assert len(ads) == 2
    assert ads[0].video_url == "file:///tmp/video.mp4"
    assert ads[1].video_url is None

    again = run(studio.animate(created.session_id, created.ad_set_id, created.ad_id))
    assert again.status == ActionStatus.SKIPPED
    assert gateway.call_names().count("animate_image") == 1


class RecordingCredentials(CredentialHelper):
    def __init__(self, selected=True, new_key="fresh-key"):
        self.selected = selected
        self.new_key = new_key
        self.prompts = 0

    async def has_selected_key(self):
        return self.selected

    async def select_key(self):
        self.prompts += 1
        return self.new_key


def test_animate_entitlement_error_reselects_key(store, gateway):
    credentials = RecordingCredentials()
    studio = CampaignStudio(store, gateway, credentials)
    created = run(studio.submit_campaign(wakeup_input()))

    gateway.failures["animate_image"] = EntitlementError("Requested entity was not found.")
    outcome = run(studio.animate(created.session_id, created.ad_set_id, created.ad_id))

    assert outcome.status == ActionStatus.FAILED
    assert outcome.message == ENTITLEMENT_MESSAGE
    assert credentials.prompts == 1
    assert gateway.api_key == "fresh-key"
    assert _ad_set(studio, created).ads[0].video_url is None


def test_animate_asks_for_key_when_none_selected(store, gateway):
    credentials = RecordingCredentials(selected=False, new_key=None)
    studio = CampaignStudio(store, gateway, credentials)
    created = run(studio.submit_campaign(wakeup_input()))

    outcome = run(studio.animate(created.session_id, created.ad_set_id, created.ad_id))
    assert outcome.ok
    assert credentials.prompts == 1
    assert gateway.api_key == "initial"


def test_result_arriving_after_close_is_discarded(studio, gateway):
    created = run(studio.submit_campaign(wakeup_input()))
    before = studio.store.sessions

    async def scenario():
        gateway.gate = asyncio.Event()
        pending = asyncio.create_task(studio.refine(created.session_id, created.ad_set_id, "late"))
        await asyncio.sleep(0)
        studio.store.close()
        gateway.gate.set()
        return await pending

    outcome = run(scenario())
    assert outcome.status == ActionStatus.DISCARDED
    assert studio.store.sessions is before


def test_result_for_deleted_session_is_dropped(studio, gateway):
    created = run(studio.submit_campaign(wakeup_input()))

    async def scenario():
        gateway.gate = asyncio.Event()
        pending = asyncio.create_task(studio.refine(created.session_id, created.ad_set_id, "late"))
        await asyncio.sleep(0)
        studio.delete_session(created.session_id)
        gateway.gate.set()
        return await pending

    run(scenario())
    assert studio.store.sessions == ()
    assert studio.store.navigation.mode == ViewMode.CREATE_CAMPAIGN


def test_rename_and_new_session(studio):
    created = run(studio.submit_campaign(wakeup_input()))
    studio.rename_ad_set(created.session_id, created.ad_set_id, "Exam week", "students")
    assert _ad_set(studio, created).name == "Exam week"

    studio.new_session()
    assert studio.store.navigation.mode == ViewMode.CREATE_CAMPAIGN
    assert len(studio.store.sessions) == 1


def test_finish_scripts_is_pure():
    script = make_script(1)
    assert CampaignStudio.finish_scripts((script,), AdFormat.SQUARE) == (script,)
    assert script.slides is None


def test_deleting_active_session_keeps_others_persisted(studio):
    other = run(studio.submit_campaign(wakeup_input(product_name="Zen Tea")))
    active = run(studio.submit_campaign(wakeup_input()))
    assert studio.store.navigation.session_id == active.session_id

    studio.delete_session(active.session_id)

    assert [s.id for s in studio.store.sessions] == [other.session_id]
    assert studio.store.navigation.mode == ViewMode.CREATE_CAMPAIGN
    assert studio.store.navigation.session_id is None

    reloaded = SessionStore(LocalStore(studio.store.backend.path)).open()
    assert [s.id for s in reloaded.sessions] == [other.session_id]

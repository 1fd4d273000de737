from dataclasses import replace

import pytest

from conftest import make_ad, make_ad_set, make_session
from viral_ads.models import ProductInfo
from viral_ads.version_tree import (
    append_ad_set,
    append_ad_version,
    create_session,
    delete_session,
    find_ad_set,
    find_session,
    latest_ad,
    list_sessions,
    rename_ad_set,
    session_stats,
    update_ad_version_in_place,
)


@pytest.fixture
def history():
    first = make_session(
        "s-1",
        ad_sets=[make_ad_set("set-1"), make_ad_set("set-2", ads=[make_ad("ad-9")])],
    )
    second = make_session(
        "s-2",
        product_info=ProductInfo(name="Zen Tea", pain_point="Stress"),
        last_modified=2000,
    )
    return (first, second)


def test_create_session_goes_first_with_one_ad_set(history):
    ad_set = make_ad_set("set-new")
    updated, session = create_session(
        history, ad_set, ProductInfo("Glow Cream", "Dry skin"), session_id="s-new", timestamp=5
    )
    assert updated[0] is session
    assert updated[1:] == history
    assert session.title == "Glow Cream"
    assert session.ad_sets == (ad_set,)
    assert session.last_modified == 5


def test_append_ad_version_keeps_prior_versions(history):
    new_ad = make_ad("ad-2", timestamp=3000, user_request="Make it funnier")
    updated = append_ad_version(history, "s-1", "set-1", new_ad, timestamp=3000)

    ad_set = find_ad_set(find_session(updated, "s-1"), "set-1")
    assert [a.id for a in ad_set.ads] == ["ad-1", "ad-2"]
    assert ad_set.ads[0] == history[0].ad_sets[0].ads[0]
    assert latest_ad(ad_set) is new_ad
    assert find_session(updated, "s-1").last_modified == 3000


def test_append_leaves_other_paths_untouched(history):
    updated = append_ad_version(history, "s-1", "set-1", make_ad("ad-2"))

    assert updated[1] is history[1]
    assert updated[0].ad_sets[1] is history[0].ad_sets[1]
    # The input collection itself never changes.
    assert [a.id for a in history[0].ad_sets[0].ads] == ["ad-1"]


def test_append_ad_set(history):
    ad_set = make_ad_set("set-3")
    updated = append_ad_set(history, "s-2", ad_set, timestamp=9)
    session = find_session(updated, "s-2")
    assert session.ad_sets[-1] is ad_set
    assert len(session.ad_sets) == 2
    assert session.last_modified == 9


def test_unknown_ids_return_input_unchanged(history):
    assert append_ad_version(history, "nope", "set-1", make_ad("x")) == history
    assert append_ad_version(history, "s-1", "nope", make_ad("x")) == history
    assert append_ad_set(history, "nope", make_ad_set("x")) == history
    assert update_ad_version_in_place(history, "s-1", "set-1", "nope", {"video_url": "v"}) == history
    assert rename_ad_set(history, "s-1", "nope", "n", "a") == history


def test_in_place_patch_keeps_position_and_count(history):
    grown = append_ad_version(history, "s-1", "set-1", make_ad("ad-2"))
    updated = update_ad_version_in_place(
        grown, "s-1", "set-1", "ad-1", {"video_url": "file:///v.mp4"}
    )
    ads = find_ad_set(find_session(updated, "s-1"), "set-1").ads
    assert [a.id for a in ads] == ["ad-1", "ad-2"]
    assert ads[0].video_url == "file:///v.mp4"
    assert replace(ads[0], video_url=None) == grown[0].ad_sets[0].ads[0]
    assert ads[1] is grown[0].ad_sets[0].ads[1]


def test_in_place_patch_rejects_other_fields(history):
    with pytest.raises(ValueError):
        update_ad_version_in_place(history, "s-1", "set-1", "ad-1", {"image_url": "x"})


def test_rename_changes_only_name_and_audience(history):
    updated = rename_ad_set(history, "s-1", "set-1", "Night owls", "night owls")
    before = history[0].ad_sets[0]
    after = find_ad_set(find_session(updated, "s-1"), "set-1")
    assert after.name == "Night owls"
    assert after.target_audience == "night owls"
    assert replace(after, name=before.name, target_audience=before.target_audience) == before


def test_delete_session(history):
    updated = delete_session(history, "s-1")
    assert [s.id for s in updated] == ["s-2"]
    assert delete_session(history, "missing") == history


def test_list_sessions_filters_and_sorts(history):
    assert [s.id for s in list_sessions(history, search="zen")] == ["s-2"]
    assert [s.id for s in list_sessions(history, search="  COFFEE ")] == ["s-1"]
    assert [s.id for s in list_sessions(history, sort_by="date")] == ["s-2", "s-1"]
    assert [s.id for s in list_sessions(history, sort_by="name")] == ["s-1", "s-2"]
    assert [s.id for s in list_sessions(history, sort_by="adsets")] == ["s-1", "s-2"]
    with pytest.raises(ValueError):
        list_sessions(history, sort_by="size")


def test_session_stats(history):
    assert session_stats(history[0]) == {"ad_sets": 2, "creatives": 2}

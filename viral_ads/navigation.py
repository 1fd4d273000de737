from __future__ import annotations

"""
Where the user is: view mode, selected session and ad set, and the cursor
over the selected ad set's versions and scripts.

The state is a frozen value. Transitions return a new state and never look
anything up in the history, so they cannot fail; the cursor is reconciled
against the actual number of versions whenever it is read.
"""

import json
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional


class ViewMode(Enum):
    CREATE_CAMPAIGN = "createCampaign"
    DASHBOARD = "dashboard"
    CREATE_AD_SET = "createAdSet"
    VIEW_AD_SET = "viewAdSet"


@dataclass(frozen=True)
class VersionCursor:
    """
    Position inside an ad set's history.

    known_length is the number of versions the cursor last saw. When the
    history grows past it the cursor jumps to the newest version.
    """

    version_index: int = 0
    script_tab: int = 0
    known_length: int = 0

    def sync(self, length: int) -> "VersionCursor":
        """Follow the newest version whenever the version count changed."""
        if length == self.known_length:
            return self
        return VersionCursor(
            version_index=max(0, length - 1),
            script_tab=0,
            known_length=length,
        )

    def effective_index(self, length: int) -> int:
        """The version index clamped into [0, length - 1]."""
        if length <= 0:
            return 0
        return max(0, min(self.version_index, length - 1))

    def select_version(self, index: int, length: int) -> "VersionCursor":
        """Point at a version; indexes past the end resolve to the last one."""
        synced = self.sync(length)
        target = VersionCursor(version_index=index).effective_index(length)
        if target == synced.effective_index(length):
            return replace(synced, version_index=target)
        return replace(synced, version_index=target, script_tab=0)

    def previous(self, length: int) -> "VersionCursor":
        return self.select_version(self.sync(length).effective_index(length) - 1, length)

    def next(self, length: int) -> "VersionCursor":
        return self.select_version(self.sync(length).effective_index(length) + 1, length)

    def select_script(self, tab: int, script_count: int) -> "VersionCursor":
        if script_count <= 0:
            return replace(self, script_tab=0)
        return replace(self, script_tab=max(0, min(tab, script_count - 1)))

    def effective_script_tab(self, script_count: int) -> int:
        if script_count <= 0 or self.script_tab >= script_count:
            return 0
        return max(0, self.script_tab)


@dataclass(frozen=True)
class NavigationState:
    mode: ViewMode = ViewMode.CREATE_CAMPAIGN
    session_id: Optional[str] = None
    ad_set_id: Optional[str] = None
    cursor: VersionCursor = VersionCursor()

    # -- transitions --------------------------------------------------------

    def new_session(self) -> "NavigationState":
        """Start over on the campaign form; clears every selection."""
        return NavigationState()

    def campaign_created(self, session_id: str, ad_set_id: str) -> "NavigationState":
        return NavigationState(
            mode=ViewMode.VIEW_AD_SET,
            session_id=session_id,
            ad_set_id=ad_set_id,
        )

    def select_session(self, session_id: str) -> "NavigationState":
        return NavigationState(mode=ViewMode.DASHBOARD, session_id=session_id)

    def open_ad_set(self, ad_set_id: str) -> "NavigationState":
        if self.session_id is None:
            return self
        if self.mode == ViewMode.VIEW_AD_SET and self.ad_set_id == ad_set_id:
            return self
        return replace(
            self,
            mode=ViewMode.VIEW_AD_SET,
            ad_set_id=ad_set_id,
            cursor=VersionCursor(),
        )

    def back(self) -> "NavigationState":
        """Return from an ad set (or the new ad set form) to the dashboard."""
        if self.session_id is None:
            return NavigationState()
        if self.mode in (ViewMode.VIEW_AD_SET, ViewMode.CREATE_AD_SET):
            return NavigationState(mode=ViewMode.DASHBOARD, session_id=self.session_id)
        return self

    def begin_ad_set(self) -> "NavigationState":
        if self.session_id is None:
            return self
        return NavigationState(mode=ViewMode.CREATE_AD_SET, session_id=self.session_id)

    def ad_set_created(self, session_id: str, ad_set_id: str) -> "NavigationState":
        return NavigationState(
            mode=ViewMode.VIEW_AD_SET,
            session_id=session_id,
            ad_set_id=ad_set_id,
        )

    def session_deleted(self, session_id: str) -> "NavigationState":
        if self.session_id == session_id:
            return self.new_session()
        return self

    def with_cursor(self, cursor: VersionCursor) -> "NavigationState":
        return replace(self, cursor=cursor)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def navigation_to_dict(state: NavigationState) -> Dict[str, Any]:
    return {
        "viewMode": state.mode.value,
        "sessionId": state.session_id,
        "adSetId": state.ad_set_id,
        "versionIndex": state.cursor.version_index,
        "scriptTab": state.cursor.script_tab,
        "knownLength": state.cursor.known_length,
    }


def dump_navigation(state: NavigationState) -> str:
    return json.dumps(navigation_to_dict(state))


def load_navigation(text: Optional[str]) -> NavigationState:
    """Restore a saved navigation state; anything unreadable gives a fresh one."""
    if not text:
        return NavigationState()
    try:
        raw = json.loads(text)
        return NavigationState(
            mode=ViewMode(raw.get("viewMode", ViewMode.CREATE_CAMPAIGN.value)),
            session_id=raw.get("sessionId"),
            ad_set_id=raw.get("adSetId"),
            cursor=VersionCursor(
                version_index=int(raw.get("versionIndex", 0)),
                script_tab=int(raw.get("scriptTab", 0)),
                known_length=int(raw.get("knownLength", 0)),
            ),
        )
    except (ValueError, TypeError, AttributeError) as exc:
        logging.warning("Ignoring unreadable navigation state: %s", exc)
        return NavigationState()

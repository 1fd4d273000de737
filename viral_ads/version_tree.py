from __future__ import annotations

"""
Pure operations over the session history.

Each function takes the current collection of sessions and returns the
collection that replaces it. Inputs are never modified: only the session, ad
set and ad on the changed path are rebuilt, every other object is passed
through as-is. Operations keyed by ids that no longer exist (a request that
finished after its session was deleted, say) return the input unchanged
instead of raising.
"""

from dataclasses import replace
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from .models import Ad, AdSet, ProductInfo, Session
from .utils import new_id, now_ms

Sessions = Tuple[Session, ...]

# Fields of an Ad that may be patched in place. Everything else about a
# version is fixed once it is appended.
IN_PLACE_FIELDS = frozenset({"video_url"})

SORT_KEYS = ("date", "name", "adsets")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def find_session(sessions: Sequence[Session], session_id: Optional[str]) -> Optional[Session]:
    for s in sessions:
        if s.id == session_id:
            return s
    return None


def find_ad_set(session: Optional[Session], ad_set_id: Optional[str]) -> Optional[AdSet]:
    if session is None:
        return None
    for a in session.ad_sets:
        if a.id == ad_set_id:
            return a
    return None


def find_ad(ad_set: Optional[AdSet], ad_id: Optional[str]) -> Optional[Ad]:
    if ad_set is None:
        return None
    for ad in ad_set.ads:
        if ad.id == ad_id:
            return ad
    return None


def latest_ad(ad_set: Optional[AdSet]) -> Optional[Ad]:
    if ad_set is None or not ad_set.ads:
        return None
    return ad_set.ads[-1]


# ---------------------------------------------------------------------------
# Path rewriting
# ---------------------------------------------------------------------------


def _update_session(
        sessions: Sequence[Session],
        session_id: str,
        fn: Callable[[Session], Optional[Session]],
) -> Sessions:
    """Replace the session with fn(session); fn returning None means no change."""
    out = []
    changed = False
    for s in sessions:
        if s.id == session_id and not changed:
            updated = fn(s)
            if updated is not None:
                out.append(updated)
                changed = True
                continue
        out.append(s)
    return tuple(out) if changed else tuple(sessions)


def _update_ad_set(
        sessions: Sequence[Session],
        session_id: str,
        ad_set_id: str,
        fn: Callable[[AdSet], Optional[AdSet]],
        timestamp: Optional[int],
) -> Sessions:
    def on_session(session: Session) -> Optional[Session]:
        ad_sets = list(session.ad_sets)
        for i, ad_set in enumerate(ad_sets):
            if ad_set.id != ad_set_id:
                continue
            updated = fn(ad_set)
            if updated is None:
                return None
            ad_sets[i] = updated
            return replace(
                session,
                ad_sets=tuple(ad_sets),
                last_modified=timestamp if timestamp is not None else now_ms(),
            )
        return None

    return _update_session(sessions, session_id, on_session)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def create_session(
        sessions: Sequence[Session],
        initial_ad_set: AdSet,
        product_info: ProductInfo,
        title: Optional[str] = None,
        session_id: Optional[str] = None,
        timestamp: Optional[int] = None,
) -> Tuple[Sessions, Session]:
    """Add a new session holding exactly one ad set. Newest sessions go first."""
    session = Session(
        id=session_id or new_id(),
        title=title if title is not None else product_info.name,
        product_info=product_info,
        ad_sets=(initial_ad_set,),
        last_modified=timestamp if timestamp is not None else now_ms(),
    )
    return (session,) + tuple(sessions), session


def append_ad_set(
        sessions: Sequence[Session],
        session_id: str,
        ad_set: AdSet,
        timestamp: Optional[int] = None,
) -> Sessions:
    def on_session(session: Session) -> Session:
        return replace(
            session,
            ad_sets=session.ad_sets + (ad_set,),
            last_modified=timestamp if timestamp is not None else now_ms(),
        )

    return _update_session(sessions, session_id, on_session)


def append_ad_version(
        sessions: Sequence[Session],
        session_id: str,
        ad_set_id: str,
        ad: Ad,
        timestamp: Optional[int] = None,
) -> Sessions:
    return _update_ad_set(
        sessions,
        session_id,
        ad_set_id,
        lambda ad_set: replace(ad_set, ads=ad_set.ads + (ad,)),
        timestamp,
    )


def update_ad_version_in_place(
        sessions: Sequence[Session],
        session_id: str,
        ad_set_id: str,
        ad_id: str,
        patch: Dict[str, Any],
        timestamp: Optional[int] = None,
) -> Sessions:
    """
    Shallow-merge patch into one existing ad, keeping its position.

    This is the only operation that alters a stored version, and only the
    fields in IN_PLACE_FIELDS may be patched.
    """
    unknown = set(patch) - IN_PLACE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be changed in place: {sorted(unknown)}")

    def on_ad_set(ad_set: AdSet) -> Optional[AdSet]:
        for i, ad in enumerate(ad_set.ads):
            if ad.id == ad_id:
                ads = list(ad_set.ads)
                ads[i] = replace(ad, **patch)
                return replace(ad_set, ads=tuple(ads))
        return None

    return _update_ad_set(sessions, session_id, ad_set_id, on_ad_set, timestamp)


def rename_ad_set(
        sessions: Sequence[Session],
        session_id: str,
        ad_set_id: str,
        name: str,
        target_audience: str,
        timestamp: Optional[int] = None,
) -> Sessions:
    return _update_ad_set(
        sessions,
        session_id,
        ad_set_id,
        lambda ad_set: replace(ad_set, name=name, target_audience=target_audience),
        timestamp,
    )


def delete_session(sessions: Sequence[Session], session_id: str) -> Sessions:
    return tuple(s for s in sessions if s.id != session_id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_sessions(
        sessions: Sequence[Session],
        search: str = "",
        sort_by: str = "date",
) -> Sessions:
    """
    Filter by product name (case-insensitive) and sort for display.

    sort_by is one of "date" (most recently modified first), "name" (product
    name A-Z) or "adsets" (most ad sets first).
    """
    if sort_by not in SORT_KEYS:
        raise ValueError(f"Unknown sort key {sort_by!r}; expected one of {SORT_KEYS}")

    term = search.strip().lower()
    filtered = [s for s in sessions if term in s.product_info.name.lower()] if term else list(sessions)

    if sort_by == "date":
        filtered.sort(key=lambda s: s.last_modified, reverse=True)
    elif sort_by == "name":
        filtered.sort(key=lambda s: s.product_info.name.lower())
    else:
        filtered.sort(key=lambda s: len(s.ad_sets), reverse=True)
    return tuple(filtered)


def session_stats(session: Session) -> Dict[str, int]:
    """Counts shown on a session's dashboard."""
    return {
        "ad_sets": len(session.ad_sets),
        "creatives": sum(len(a.ads) for a in session.ad_sets),
    }

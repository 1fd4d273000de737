# cli.py
import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

from .brief_loader import load_brief, load_image_payload, parse_format
from .config import Settings
from .gateway import GeminiGateway
from .models import ARCHETYPE_LABELS, FORMAT_LABELS, TONE_LABELS, AdFormat, AdSet, CampaignInput
from .navigation import ViewMode
from .orchestrator import ActionOutcome, ActionStatus, CampaignStudio, CredentialHelper
from .store import SessionStore, open_store
from .utils import decode_payload, format_script_text, payload_mime_type
from .version_tree import SORT_KEYS, find_session, list_sessions, session_stats


class PromptCredentialHelper(CredentialHelper):
    """Asks for a new Gemini API key on the terminal."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def has_selected_key(self) -> bool:
        return bool(self.settings.api_key)

    async def select_key(self) -> Optional[str]:
        if not sys.stdin.isatty():
            logging.warning("Set GEMINI_API_KEY to a key with access to the video model.")
            return None
        key = getpass.getpass("Gemini API key with video access (empty to skip): ").strip()
        return key or None


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="viral-ads",
        description="Generate ad creatives with Gemini and keep their version history.",
    )
    parser.add_argument("--store", type=Path, help="Path to the history store file.")
    parser.add_argument("--log", type=Path, help="Optional path to a log file.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("new", help="Create a campaign from a brief (YAML or JSON).")
    p.add_argument("--brief", required=True, type=Path)

    p = sub.add_parser("add-adset", help="Add an ad set to the open campaign.")
    p.add_argument("--brief", required=True, type=Path)
    p.add_argument("--session", help="Session id (defaults to the open one).")

    p = sub.add_parser("list", help="List campaigns.")
    p.add_argument("--search", default="", help="Filter by product name.")
    p.add_argument("--sort", default="date", choices=SORT_KEYS)

    p = sub.add_parser("open", help="Open a campaign dashboard.")
    p.add_argument("session")

    p = sub.add_parser("view", help="View an ad set of the open campaign.")
    p.add_argument("adset")

    sub.add_parser("back", help="Return to the campaign dashboard.")
    sub.add_parser("home", help="Leave the campaign and start a new one.")

    p = sub.add_parser("show", help="Show the selected ad version.")
    p.add_argument("--version", type=int, help="1-based version number.")
    p.add_argument("--script", type=int, help="1-based script number.")
    p.add_argument("--copy", action="store_true", help="Print only the copy text.")

    sub.add_parser("prev", help="Show the previous version.")
    sub.add_parser("next", help="Show the next version.")

    p = sub.add_parser("refine", help="Refine the latest version.")
    p.add_argument("instruction")

    p = sub.add_parser("resize", help="Re-render the selected version in another format.")
    p.add_argument("format", help="square, story, landscape or carousel.")

    sub.add_parser("vary", help="Generate an image variation of the selected version.")

    p = sub.add_parser("enhance", help="Composite a product photo into the selected version.")
    p.add_argument("image", type=Path)

    sub.add_parser("animate", help="Attach a video to the selected version.")

    p = sub.add_parser("rename", help="Rename the selected ad set.")
    p.add_argument("--name", required=True)
    p.add_argument("--audience", required=True)

    p = sub.add_parser("delete", help="Delete a campaign.")
    p.add_argument("session")

    p = sub.add_parser("export", help="Write the selected version's media and copy to a folder.")
    p.add_argument("output", type=Path)

    # If no arguments were supplied, show the help screen instead of failing
    # with a cryptic missing argument error.
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help(sys.stderr)
        sys.exit(1)
    return args


def configure_logging(log_path: Path | None, verbose: bool = False) -> None:
    """
    Configure basic logging to stderr and optionally to a file.

    The format is kept simple so logs can be tailed during a session while
    still being parseable if they are shipped elsewhere later.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s",
        handlers=handlers,
    )


# ---------------------------------------------------------------------------
# Selection helpers
# ---------------------------------------------------------------------------


class CommandError(Exception):
    """A command cannot run in the current state."""


def _resolve(ids: Iterable[str], prefix: str, what: str) -> str:
    matches = [i for i in ids if i.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise CommandError(f"No {what} matches '{prefix}'.")
    raise CommandError(f"'{prefix}' matches several {what}s; use more characters.")


def _require_session(store: SessionStore, session_arg: Optional[str] = None):
    if session_arg:
        session_id = _resolve((s.id for s in store.sessions), session_arg, "session")
        return find_session(store.sessions, session_id)
    session = store.active_session()
    if session is None:
        raise CommandError("No campaign is open. Use 'list' and 'open' first.")
    return session


def _require_ad_set(store: SessionStore):
    session = _require_session(store)
    ad_set, cursor = store.active_cursor()
    if ad_set is None:
        raise CommandError("No ad set is selected. Use 'view' first.")
    if not ad_set.ads:
        raise CommandError("This ad set has no versions.")
    return session, ad_set, ad_set.ads[cursor.effective_index(len(ad_set.ads))]


# ---------------------------------------------------------------------------
# Printing
# ---------------------------------------------------------------------------


def _print_dashboard(store: SessionStore) -> None:
    session = _require_session(store)
    stats = session_stats(session)
    print(f"{session.title}  [{session.id[:8]}]")
    print(f"  Pain point: {session.product_info.pain_point}")
    print(f"  {stats['ad_sets']} ad set(s), {stats['creatives']} creative(s)")
    if not session.ad_sets:
        print("  No ad sets yet. Use 'add-adset'.")
    for ad_set in session.ad_sets:
        print(
            f"  - {ad_set.id[:8]}  {ad_set.name}  "
            f"({ARCHETYPE_LABELS[ad_set.archetype]}, {FORMAT_LABELS[ad_set.format]}, "
            f"{len(ad_set.ads)} creative(s))"
        )


def _print_ad(store: SessionStore, copy_only: bool = False) -> None:
    _, ad_set, ad = _require_ad_set(store)
    cursor = store.navigation.cursor
    carousel = ad_set.format == AdFormat.CAROUSEL
    script = None
    if ad.scripts:
        script = ad.scripts[cursor.effective_script_tab(len(ad.scripts))]

    if copy_only:
        if script is not None:
            print(format_script_text(script, carousel))
        return

    index = cursor.effective_index(len(ad_set.ads))
    print(f"{ad_set.name}  [{ad_set.id[:8]}]")
    print(f"  Version {index + 1}/{len(ad_set.ads)}  [{ad.id[:8]}]  {ad.user_request or ''}")
    if ad_set.custom_colors:
        print(f"  Palette: {', '.join(ad_set.custom_colors)}")
    print(f"  Image prompt: {ad.image_prompt}")
    print(f"  Video: {ad.video_url or 'none'}")
    for source in ad.research_sources or ():
        print(f"  Source: {source.title} <{source.uri}>")
    if script is None:
        print("  No script data found.")
        return
    tab = cursor.effective_script_tab(len(ad.scripts))
    print(f"  Script {tab + 1}/{len(ad.scripts)}:")
    for line in format_script_text(script, carousel).splitlines():
        print(f"    {line}")


def _report(outcome: ActionOutcome) -> int:
    if outcome.status == ActionStatus.DONE:
        return 0
    if outcome.status == ActionStatus.BUSY:
        print("That action is already running.", file=sys.stderr)
    elif outcome.status == ActionStatus.SKIPPED:
        print("Nothing to do.", file=sys.stderr)
        return 0
    elif outcome.message:
        print(outcome.message, file=sys.stderr)
    return 1


def _export(ad_set: AdSet, ad, output: Path) -> None:
    output.mkdir(parents=True, exist_ok=True)
    ext = payload_mime_type(ad.image_url).split("/")[-1] or "png"
    image_path = output / f"{ad.id}.{ext}"
    image_path.write_bytes(decode_payload(ad.image_url))
    copy_path = output / f"{ad.id}.txt"
    carousel = ad_set.format == AdFormat.CAROUSEL
    copy_path.write_text(
        "\n\n---\n\n".join(format_script_text(s, carousel) for s in ad.scripts),
        encoding="utf-8",
    )
    logging.info("Exported image to %s and copy to %s", image_path, copy_path)
    if ad.video_url:
        print(f"Video: {ad.video_url}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _log_generation(data: CampaignInput) -> None:
    logging.info(
        "Generating %s ad set for '%s' (%s, %s tone)",
        FORMAT_LABELS[data.format],
        data.product_name,
        ARCHETYPE_LABELS[data.archetype],
        TONE_LABELS[data.tone],
    )


def run_command(args: argparse.Namespace, studio: CampaignStudio) -> int:
    store = studio.store
    cmd = args.command

    if cmd == "new":
        data = load_brief(args.brief)
        _log_generation(data)
        code = _report(asyncio.run(studio.submit_campaign(data)))
        if code == 0:
            _print_ad(store)
        return code

    if cmd == "add-adset":
        session = _require_session(store, args.session)
        data = load_brief(
            args.brief,
            defaults={
                "product_name": session.product_info.name,
                "pain_point": session.product_info.pain_point,
            },
        )
        _log_generation(data)
        code = _report(asyncio.run(studio.submit_ad_set(session.id, data)))
        if code == 0:
            _print_ad(store)
        return code

    if cmd == "list":
        sessions = list_sessions(store.sessions, args.search, args.sort)
        if not sessions:
            print("No campaigns yet.")
        for s in sessions:
            marker = "*" if s.id == store.navigation.session_id else " "
            print(f"{marker} {s.id[:8]}  {s.product_info.name}  ({len(s.ad_sets)} ad set(s))")
        return 0

    if cmd == "open":
        session = _require_session(store, args.session)
        store.navigate(lambda nav: nav.select_session(session.id))
        _print_dashboard(store)
        return 0

    if cmd == "view":
        session = _require_session(store)
        ad_set_id = _resolve((a.id for a in session.ad_sets), args.adset, "ad set")
        store.navigate(lambda nav: nav.open_ad_set(ad_set_id))
        _print_ad(store)
        return 0

    if cmd == "back":
        store.navigate(lambda nav: nav.back())
        if store.navigation.mode == ViewMode.DASHBOARD:
            _print_dashboard(store)
        return 0

    if cmd == "home":
        studio.new_session()
        return 0

    if cmd in ("show", "prev", "next"):
        _, ad_set, ad = _require_ad_set(store)
        length = len(ad_set.ads)
        cursor = store.navigation.cursor.sync(length)
        if cmd == "prev":
            cursor = cursor.previous(length)
        elif cmd == "next":
            cursor = cursor.next(length)
        else:
            if args.version is not None:
                cursor = cursor.select_version(args.version - 1, length)
            if args.script is not None:
                current = ad_set.ads[cursor.effective_index(length)]
                cursor = cursor.select_script(args.script - 1, len(current.scripts))
        store.navigate(lambda nav: nav.with_cursor(cursor))
        _print_ad(store, copy_only=getattr(args, "copy", False))
        return 0

    if cmd == "refine":
        session, ad_set, _ = _require_ad_set(store)
        code = _report(asyncio.run(studio.refine(session.id, ad_set.id, args.instruction)))
        if code == 0:
            _print_ad(store)
        return code

    if cmd in ("resize", "vary", "enhance", "animate"):
        session, ad_set, ad = _require_ad_set(store)
        if cmd == "resize":
            action = studio.resize(session.id, ad_set.id, ad.id, parse_format(args.format))
        elif cmd == "vary":
            action = studio.variation(session.id, ad_set.id, ad.id)
        elif cmd == "enhance":
            action = studio.enhance(session.id, ad_set.id, ad.id, load_image_payload(args.image))
        else:
            action = studio.animate(session.id, ad_set.id, ad.id)
        code = _report(asyncio.run(action))
        if code == 0:
            _print_ad(store)
        return code

    if cmd == "rename":
        session, ad_set, _ = _require_ad_set(store)
        studio.rename_ad_set(session.id, ad_set.id, args.name, args.audience)
        return 0

    if cmd == "delete":
        session = _require_session(store, args.session)
        studio.delete_session(session.id)
        print(f"Deleted {session.title} [{session.id[:8]}]")
        return 0

    if cmd == "export":
        _, ad_set, ad = _require_ad_set(store)
        _export(ad_set, ad, args.output)
        return 0

    raise CommandError(f"Unknown command {cmd!r}")


def main(argv: Optional[Iterable[str]] = None) -> None:
    """
    Entry point for the CLI module.

    - Reads settings from the environment.
    - Opens the history store and runs one command against it.
    - Flushes the store on the way out, whatever happened.
    """
    args = parse_args(argv)
    configure_logging(args.log, args.verbose)

    settings = Settings.from_env()
    store_path = args.store or settings.store_path
    store = open_store(store_path, settings.store_quota_bytes)
    studio = CampaignStudio(
        store,
        GeminiGateway(settings),
        credentials=PromptCredentialHelper(settings),
    )
    try:
        code = run_command(args, studio)
    except (CommandError, FileNotFoundError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        code = 2
    finally:
        store.close()
    sys.exit(code)


if __name__ == "__main__":
    main()

import pytest

from conftest import FakeGateway
from viral_ads.cli import CommandError, main, parse_args, run_command
from viral_ads.navigation import ViewMode
from viral_ads.orchestrator import CampaignStudio
from viral_ads.store import open_store


@pytest.fixture
def brief(tmp_path):
    path = tmp_path / "brief.yaml"
    path.write_text(
        "product_name: WakeUp Coffee\n"
        "pain_point: Morning fatigue\n"
        "target_audience: students\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def studio(tmp_path):
    store = open_store(tmp_path / "store.json", quota_bytes=5_000_000)
    yield CampaignStudio(store, FakeGateway())
    store.close()


def cli(studio, *argv):
    return run_command(parse_args(list(argv)), studio)


def test_new_campaign_then_refine_and_browse(studio, brief, capsys):
    assert cli(studio, "new", "--brief", str(brief)) == 0
    out = capsys.readouterr().out
    assert "students - Us vs. Them" in out
    assert "Version 1/1" in out

    assert cli(studio, "refine", "Make it funnier") == 0
    assert "Version 2/2" in capsys.readouterr().out

    assert cli(studio, "prev") == 0
    assert "Version 1/2" in capsys.readouterr().out

    assert cli(studio, "show", "--script", "3") == 0
    assert "Script 3/5" in capsys.readouterr().out

    assert cli(studio, "show", "--copy") == 0
    assert capsys.readouterr().out.startswith("Title 3")


def test_dashboard_and_back(studio, brief, capsys):
    cli(studio, "new", "--brief", str(brief))
    session_id = studio.store.navigation.session_id
    capsys.readouterr()

    assert cli(studio, "back") == 0
    assert studio.store.navigation.mode == ViewMode.DASHBOARD
    assert "1 ad set(s), 1 creative(s)" in capsys.readouterr().out

    assert cli(studio, "list") == 0
    assert f"* {session_id[:8]}" in capsys.readouterr().out

    assert cli(studio, "delete", session_id[:6]) == 0
    assert studio.store.sessions == ()
    assert studio.store.navigation.mode == ViewMode.CREATE_CAMPAIGN


def test_commands_needing_a_selection_fail_cleanly(studio):
    with pytest.raises(CommandError):
        cli(studio, "show")
    with pytest.raises(CommandError):
        cli(studio, "open", "missing")


def test_export_writes_image_and_copy(studio, brief, tmp_path):
    cli(studio, "new", "--brief", str(brief))
    out_dir = tmp_path / "export"
    assert cli(studio, "export", str(out_dir)) == 0
    assert len(list(out_dir.glob("*.png"))) == 1
    copy = next(out_dir.glob("*.txt")).read_text(encoding="utf-8")
    assert copy.count("---") == 4


def test_main_lists_from_store(tmp_path, monkeypatch, capsys):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    with pytest.raises(SystemExit) as info:
        main(["--store", str(tmp_path / "store.json"), "list"])
    assert info.value.code == 0
    assert "No campaigns yet." in capsys.readouterr().out


def test_no_command_prints_help():
    with pytest.raises(SystemExit) as info:
        parse_args([])
    assert info.value.code == 1

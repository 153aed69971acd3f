import threading
from datetime import datetime, timezone

import pytest

from addman import log_utils
from addman.sync.coordinator import AddonUpdater
from addman.sync.interfaces import Addon, UpdateInfo, UpdateOutcome
from addman.sync.orchestrator import SyncOrchestrator

pytestmark = [pytest.mark.integration]

ZIP = "application/zip"
NEW_TEXT = "2024-03-01T10:00:00Z"
OLD = datetime(2024, 1, 1, tzinfo=timezone.utc)


def release_url(short):
    return f"https://api.github.com/repos/proj/{short}/releases/latest"


def asset_url(short):
    return f"https://example.invalid/v2.0/{short}.zip"


@pytest.fixture
def tracking_session(session_factory):
    """A fake session that records how many requests run at the same time."""

    class TrackingSession(session_factory):
        def __init__(self):
            super().__init__()
            self.lock = threading.Lock()
            self.active = 0
            self.peak = 0

        def get(self, url, timeout=None, stream=False):
            with self.lock:
                self.active += 1
                self.peak = max(self.peak, self.active)
            try:
                threading.Event().wait(0.02)
                return super().get(url, timeout=timeout, stream=stream)
            finally:
                with self.lock:
                    self.active -= 1

    return TrackingSession()


def add_release(session, build_release, build_zip, short):
    session.routes[release_url(short)] = build_release(
        "v2.0", [(f"{short}.zip", ZIP, NEW_TEXT)]
    )
    session.routes[asset_url(short)] = build_zip([f"{short}/{short}.toc"])


def make_addons(shorts, update_info):
    addons = []
    for short in shorts:
        info = update_info.setdefault(f"proj/{short}", UpdateInfo(updated_on=OLD))
        addons.append(Addon.from_config(f"proj/{short}", [], 0, info))
    return addons


def test_updates_all_addons_with_bounded_network(
    tracking_session, build_release, build_zip, tmp_path
):
    shorts = [f"addon{i}" for i in range(5)]
    for short in shorts:
        add_release(tracking_session, build_release, build_zip, short)
    update_info = {}
    addons = make_addons(shorts, update_info)

    summary = SyncOrchestrator(
        addons,
        update_info,
        str(tmp_path / "addons"),
        net_tasks=2,
        session=tracking_session,
    ).run()

    assert summary.ok
    assert summary.count(UpdateOutcome.UPDATED) == 5
    assert 1 <= tracking_session.peak <= 2
    for short in shorts:
        assert (tmp_path / "addons" / short / f"{short}.toc").exists()
        assert update_info[f"proj/{short}"].version == "v2.0"
        assert update_info[f"proj/{short}"].extracted_dirs == [short]


def test_log_blocks_are_not_interleaved(
    fake_session, build_release, build_zip, tmp_path, mocker
):
    shorts = [f"addon{i}" for i in range(5)]
    for short in shorts:
        add_release(fake_session, build_release, build_zip, short)
    update_info = {}
    addons = make_addons(shorts, update_info)
    emit = mocker.patch.object(log_utils.logger, "log")

    SyncOrchestrator(
        addons, update_info, str(tmp_path), net_tasks=2, session=fake_session
    ).run()

    owners = []
    for call in emit.call_args_list:
        text = call.args[1]
        owner = next(s for s in shorts if f"{s}[/bold cyan]" in text)
        owners.append(owner)

    blocks = [owner for i, owner in enumerate(owners) if i == 0 or owners[i - 1] != owner]
    assert sorted(blocks) == sorted(shorts)


def test_one_failure_does_not_stop_the_others(
    fake_session, build_release, build_zip, tmp_path
):
    for short in ("good1", "good2"):
        add_release(fake_session, build_release, build_zip, short)
    update_info = {}
    addons = make_addons(["good1", "broken", "good2"], update_info)
    broken_before = update_info["proj/broken"]

    summary = SyncOrchestrator(
        addons, update_info, str(tmp_path), session=fake_session
    ).run()

    assert not summary.ok
    assert [s.addon.name for s in summary.failed] == ["proj/broken"]
    assert summary.count(UpdateOutcome.UPDATED) == 2
    assert update_info["proj/broken"] is broken_before
    assert update_info["proj/good1"].version == "v2.0"
    assert addons[0].update_info is update_info["proj/good1"]


def test_unexpected_crash_is_reported_as_failure(fake_session, tmp_path, mocker):
    update_info = {}
    addons = make_addons(["addon1"], update_info)
    mocker.patch.object(AddonUpdater, "update", side_effect=RuntimeError("bug"))

    summary = SyncOrchestrator(
        addons, update_info, str(tmp_path), session=fake_session
    ).run()

    assert len(summary.failed) == 1
    error = summary.failed[0].error
    assert error.addon == "addon1"
    assert isinstance(error.cause, RuntimeError)


def test_bracketed_release_text_is_logged_literally(
    fake_session, build_release, tmp_path
):
    fake_session.routes[release_url("addon1")] = build_release(
        "v1[/beta]", [("a-classic.zip", ZIP, NEW_TEXT)]
    )
    update_info = {}
    addons = make_addons(["addon1"], update_info)

    summary = SyncOrchestrator(
        addons, update_info, str(tmp_path), session=fake_session
    ).run()

    assert summary.ok is False
    assert len(summary.failed) == 1
    assert "v1[/beta]" in str(summary.failed[0].error)


def test_no_addons(fake_session, tmp_path):
    summary = SyncOrchestrator([], {}, str(tmp_path), session=fake_session).run()
    assert summary.statuses == []
    assert summary.ok


def test_builds_session_when_none_given(mocker, tmp_path):
    build = mocker.patch("addman.sync.orchestrator.build_session")
    SyncOrchestrator([], {}, str(tmp_path), net_tasks=3, github_token="abc")
    build.assert_called_once_with(3, "abc")

from datetime import datetime, timedelta, timezone

import pytest

from addman import utils

pytestmark = [pytest.mark.unit]


def test_user_agent_names_the_app():
    assert utils.get_user_agent().startswith("addman/")


class TestGithubToken:
    def test_explicit_token_wins(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        assert utils.get_effective_github_token(" cfg-token ") == "cfg-token"

    def test_env_token_fallback(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        assert utils.get_effective_github_token(None) == "env-token"

    def test_env_token_can_be_disabled(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        assert utils.get_effective_github_token("", allow_env_token=False) is None


class TestBuildSession:
    def test_headers_without_token(self):
        session = utils.build_session(2)
        assert session.headers["Accept"] == "application/vnd.github+json"
        assert session.headers["User-Agent"].startswith("addman/")
        assert "Authorization" not in session.headers

    def test_authorization_header_with_token(self):
        session = utils.build_session(2, github_token="abc")
        assert session.headers["Authorization"] == "token abc"

    def test_adapter_pool_sized_to_workers(self):
        session = utils.build_session(5)
        adapter = session.get_adapter("https://api.github.com")
        assert adapter._pool_maxsize == 5


class TestDatetimes:
    def test_parse_z_suffix(self):
        parsed = utils.parse_iso_datetime_utc("2024-03-01T10:00:00Z")
        assert parsed == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_parse_offset_is_normalized_to_utc(self):
        parsed = utils.parse_iso_datetime_utc("2024-03-01T12:00:00+02:00")
        assert parsed == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_parse_naive_datetime_is_taken_as_utc(self):
        parsed = utils.parse_iso_datetime_utc(datetime(2024, 3, 1, 10, 0))
        assert parsed.tzinfo is timezone.utc

    @pytest.mark.parametrize("value", [None, "", "yesterday", 12])
    def test_parse_unusable_values(self, value):
        assert utils.parse_iso_datetime_utc(value) is None

    def test_format_round_trips_through_parse(self):
        value = datetime(2024, 3, 1, 10, 0, tzinfo=timezone(timedelta(hours=3)))
        text = utils.format_iso_datetime_utc(value)
        assert text == "2024-03-01T07:00:00Z"
        assert utils.parse_iso_datetime_utc(text) == value

    def test_release_date_format(self):
        value = datetime(2006, 1, 2, 12, 0, tzinfo=timezone.utc)
        local = value.astimezone()
        assert utils.format_release_date(value) == f"{local:%b} {local.day}, 2006"

    def test_release_date_never(self):
        assert utils.format_release_date(None) == "never"


@pytest.mark.parametrize(
    "value, expected", [(-1, 0), (0, 0), (5, 5), (9, 8)]
)
def test_clamp(value, expected):
    assert utils.clamp(0, value, 8) == expected

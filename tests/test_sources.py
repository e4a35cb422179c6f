import json

import pytest
import requests

from modupdatepy.exceptions import (
    FetchFailureKind,
    MalformedResponseError,
    NotFoundError,
    RateLimitError,
    UnavailableError,
)
from modupdatepy.sources import (
    ChucklefishAdapter,
    CurseForgeAdapter,
    GitHubAdapter,
    ModDropAdapter,
    NexusAdapter,
    PastebinAdapter,
    SourceSettings,
    build_adapters,
)
from modupdatepy.update_keys import ModSource

from conftest import FakeResponse, FakeSession


def json_response(payload, status=200):
    return FakeResponse(status, json.dumps(payload))


def test_github_returns_non_draft_releases_in_order():
    session = FakeSession(json_response([
        {"tag_name": "v2.0.0-beta", "draft": False, "prerelease": True, "html_url": "https://github.com/a/b/releases/v2.0.0-beta",
         "published_at": "2024-02-01T10:00:00Z"},
        {"tag_name": "2.1.0", "draft": True, "html_url": "https://github.com/a/b/releases/2.1.0"},
        {"tag_name": "1.9.0", "draft": False, "prerelease": False, "html_url": "https://github.com/a/b/releases/1.9.0"},
    ]))
    info = GitHubAdapter(session).fetch("a/b")

    assert [r.version for r in info.releases] == ["v2.0.0-beta", "1.9.0"]
    assert info.releases[0].is_prerelease
    assert info.releases[0].published_at.year == 2024
    assert info.url == "https://github.com/a/b/releases"
    method, url, kwargs = session.requests[0]
    assert (method, url) == ("GET", "https://api.github.com/repos/a/b/releases")


def test_github_rejects_bad_identifier_without_request():
    session = FakeSession()
    with pytest.raises(NotFoundError):
        GitHubAdapter(session).fetch("not-a-repo")
    assert session.requests == []


def test_github_token_sent_as_bearer_header():
    session = FakeSession(json_response([]))
    GitHubAdapter(session, api_key="tok").fetch("a/b")
    assert session.requests[0][2]["headers"]["Authorization"] == "Bearer tok"


def test_nexus_single_version():
    session = FakeSession(json_response({"version": " 1.5.0 ", "available": True}))
    info = NexusAdapter(session, api_key="key").fetch("2400")

    assert [r.version for r in info.releases] == ["1.5.0"]
    assert info.url == "https://www.nexusmods.com/stardewvalley/mods/2400"
    method, url, kwargs = session.requests[0]
    assert url == "https://api.nexusmods.com/v1/games/stardewvalley/mods/2400.json"
    assert kwargs["headers"]["apikey"] == "key"


def test_nexus_hidden_mod_is_not_found():
    session = FakeSession(json_response({"version": "1.0.0", "available": False}))
    with pytest.raises(NotFoundError):
        NexusAdapter(session).fetch("1")


def test_nexus_non_numeric_id_is_not_found():
    with pytest.raises(NotFoundError):
        NexusAdapter(FakeSession()).fetch("abc")


def test_curseforge_reads_version_from_file_names():
    session = FakeSession(json_response({"data": {
        "links": {"websiteUrl": "https://www.curseforge.com/stardewvalley/mods/cp"},
        "latestFiles": [
            {"id": 1, "displayName": "Content Patcher 1.2.3", "releaseType": 1},
            {"id": 2, "displayName": "Content Patcher v1.3.0-beta.1", "releaseType": 2},
            {"id": 3, "displayName": "readme", "fileName": "ContentPatcher-1.1.0.zip", "releaseType": 1},
        ],
    }}))
    info = CurseForgeAdapter(session).fetch("309243")

    assert [r.version for r in info.releases] == ["1.2.3", "1.3.0-beta.1", "1.1.0"]
    assert [r.is_prerelease for r in info.releases] == [False, True, False]
    assert info.url == "https://www.curseforge.com/stardewvalley/mods/cp"


def test_curseforge_files_without_versions_are_malformed():
    session = FakeSession(json_response({"data": {"latestFiles": [{"displayName": "Latest"}]}}))
    with pytest.raises(MalformedResponseError):
        CurseForgeAdapter(session).fetch("1")


def test_moddrop_skips_old_files():
    session = FakeSession(json_response({"mods": {"580803": {
        "mod": {"pageUrl": "https://www.moddrop.com/stardew-valley/mods/580803"},
        "files": [
            {"version": "1.0.0", "isOld": True},
            {"version": "1.1.0", "isOld": False},
            {"version": "1.2.0-beta", "isPreRelease": True},
        ],
    }}}))
    info = ModDropAdapter(session).fetch("580803")

    assert [r.version for r in info.releases] == ["1.1.0", "1.2.0-beta"]
    assert info.releases[1].is_prerelease
    method, url, kwargs = session.requests[0]
    assert method == "POST"
    assert kwargs["json"] == {"ModIDs": [580803], "Files": True, "Mods": True}


def test_moddrop_missing_mod_is_not_found():
    session = FakeSession(json_response({"mods": {}}))
    with pytest.raises(NotFoundError):
        ModDropAdapter(session).fetch("1")


def test_chucklefish_scrapes_title_version():
    page = '<html><h1>Lookup Anything <span class="muted">1.18.1</span></h1></html>'
    session = FakeSession(FakeResponse(200, page))
    info = ChucklefishAdapter(session).fetch("4250")

    assert info.releases[0].version == "1.18.1"
    assert info.url == "https://community.playstarbound.com/resources/4250"


def test_chucklefish_page_without_version_is_malformed():
    session = FakeSession(FakeResponse(200, "<html><h1>Nothing here</h1></html>"))
    with pytest.raises(MalformedResponseError):
        ChucklefishAdapter(session).fetch("4250")


def test_pastebin_never_returns_versions():
    info = PastebinAdapter(FakeSession()).fetch("abc123")
    assert info.releases == ()
    assert info.url == "https://pastebin.com/abc123"


@pytest.mark.parametrize("status, error, kind", [
    (404, NotFoundError, FetchFailureKind.NOT_FOUND),
    (410, NotFoundError, FetchFailureKind.NOT_FOUND),
    (429, RateLimitError, FetchFailureKind.RATE_LIMITED),
    (503, UnavailableError, FetchFailureKind.UNAVAILABLE),
    (403, UnavailableError, FetchFailureKind.UNAVAILABLE),
])
def test_http_errors_map_to_fetch_errors(status, error, kind):
    session = FakeSession(FakeResponse(status, "", {"Retry-After": "30"}))
    with pytest.raises(error) as excinfo:
        NexusAdapter(session).fetch("1")
    assert excinfo.value.kind is kind
    assert excinfo.value.code == status


def test_rate_limit_keeps_retry_after():
    session = FakeSession(FakeResponse(429, "", {"Retry-After": "30"}))
    with pytest.raises(RateLimitError) as excinfo:
        GitHubAdapter(session).fetch("a/b")
    assert excinfo.value.retry_after == 30.0


def test_timeout_is_unavailable():
    session = FakeSession(requests.Timeout("read timed out"))
    with pytest.raises(UnavailableError, match="timed out"):
        GitHubAdapter(session, timeout=2).fetch("a/b")


def test_connection_error_is_unavailable():
    session = FakeSession(requests.ConnectionError("refused"))
    with pytest.raises(UnavailableError):
        NexusAdapter(session).fetch("1")


def test_invalid_json_is_malformed():
    session = FakeSession(FakeResponse(200, "<html>oops</html>"))
    with pytest.raises(MalformedResponseError):
        NexusAdapter(session).fetch("1")


def test_build_adapters_covers_every_source_and_applies_settings():
    session = FakeSession()
    adapters = build_adapters(
        {ModSource.NEXUS: SourceSettings(base_url="http://localhost:9000/", timeout=3)},
        session,
        timeout=10,
    )
    assert set(adapters) == {s for s in ModSource if s is not ModSource.UNKNOWN}
    assert adapters[ModSource.NEXUS].base_url == "http://localhost:9000"
    assert adapters[ModSource.NEXUS].timeout == 3
    assert adapters[ModSource.GITHUB].timeout == 10
    assert all(a.session is session for a in adapters.values())


@pytest.mark.parametrize("name, version", [
    ("ContentPatcher_1.2.3", "1.2.3"),
    ("ContentPatcher_v1.4.0.zip", "1.4.0"),
    ("Mod2 1.0.1", "1.0.1"),
])
def test_curseforge_version_after_underscore_or_digit_name(name, version):
    assert CurseForgeAdapter._version_from_file({"displayName": name}) == version

import pytest

from modupdatepy.exceptions import MalformedKeyError
from modupdatepy.update_keys import ModSource, UpdateKey


@pytest.mark.parametrize("token, source, identifier", [
    ("GitHub:Pathoschild/SMAPI", ModSource.GITHUB, "Pathoschild/SMAPI"),
    ("nexus:2400", ModSource.NEXUS, "2400"),
    ("CURSEFORGE:309243", ModSource.CURSEFORGE, "309243"),
    ("ModDrop: 580803 ", ModSource.MODDROP, "580803"),
    ("Chucklefish:4250", ModSource.CHUCKLEFISH, "4250"),
    ("Pastebin:abc123", ModSource.PASTEBIN, "abc123"),
])
def test_parse_known_sources(token, source, identifier):
    key = UpdateKey.parse(token)
    assert key.source is source
    assert key.identifier == identifier
    assert key.raw_text == token
    assert key.is_valid


def test_splits_on_first_colon_only():
    key = UpdateKey.parse("GitHub:owner/repo:extra")
    assert key.identifier == "owner/repo:extra"


@pytest.mark.parametrize("token", ["Nexus", "SomeSite:123", "Nexus:", ":123", ""])
def test_unusable_keys_parse_as_unknown(token):
    key = UpdateKey.parse(token)
    assert key.source is ModSource.UNKNOWN
    assert not key.is_valid
    with pytest.raises(MalformedKeyError):
        key.require_valid()


def test_unknown_key_keeps_raw_text_for_warnings():
    assert str(UpdateKey.parse("SomeSite:123")) == "SomeSite:123"


def test_str_uses_canonical_source_name():
    assert str(UpdateKey.parse("github:Owner/Repo")) == "GitHub:Owner/Repo"


def test_cache_key_is_case_insensitive_for_github_only():
    assert UpdateKey.parse("GitHub:Owner/Repo").cache_key == UpdateKey.parse("github:owner/repo").cache_key
    assert UpdateKey.parse("Nexus:12").cache_key == (ModSource.NEXUS, "12")

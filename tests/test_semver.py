import itertools

import pytest

from modupdatepy.exceptions import ParseError
from modupdatepy.semver import SemanticVersion, compare, is_prerelease, parse_version


def v(text, tolerant=False):
    return SemanticVersion.parse(text, tolerant=tolerant)


def test_parse_full_version():
    version = v("1.2.3-beta.2+sha.5114f85")
    assert (version.major, version.minor, version.patch) == (1, 2, 3)
    assert version.prerelease == ("beta", 2)
    assert version.build_metadata == "sha.5114f85"
    assert str(version) == "1.2.3-beta.2+sha.5114f85"


@pytest.mark.parametrize("triple", [(0, 0, 0), (1, 0, 0), (0, 4, 12), (10, 20, 30), (3, 15, 1)])
def test_format_then_parse_gives_same_version(triple):
    version = SemanticVersion(*triple)
    assert parse_version(str(version)) == version


@pytest.mark.parametrize("text", ["", "   ", "1", "1.2", "1.2.3.4", "v1.2.3", "1.4c", "1.2.-3", "a.b.c", "1.2.3-", "1.2.3-beta..1"])
def test_strict_parse_rejects(text):
    with pytest.raises(ParseError):
        v(text)


def test_standard_precedence_sample():
    ordered = [v("1.0.0-alpha"), v("1.0.0-alpha.1"), v("1.0.0-beta"), v("1.0.0")]
    for lower, higher in zip(ordered, ordered[1:]):
        assert lower < higher
        assert compare(lower, higher) == -1
        assert compare(higher, lower) == 1


def test_full_semver_precedence_chain():
    chain = ["1.0.0-alpha", "1.0.0-alpha.1", "1.0.0-alpha.beta", "1.0.0-beta",
             "1.0.0-beta.2", "1.0.0-beta.11", "1.0.0-rc.1", "1.0.0", "1.0.1", "1.1.0", "2.0.0"]
    versions = [v(t) for t in chain]
    assert sorted(reversed(versions)) == versions


def test_numeric_identifiers_sort_before_alphanumeric():
    assert v("1.0.0-1") < v("1.0.0-a")
    assert v("1.0.0-beta.9") < v("1.0.0-beta.10")


def test_build_metadata_is_ignored_for_ordering_and_equality():
    assert v("1.0.0+build.1") == v("1.0.0+build.2")
    assert hash(v("1.0.0+a")) == hash(v("1.0.0"))
    assert not v("1.0.0+b") > v("1.0.0+a")


def test_compare_is_antisymmetric_and_transitive():
    sample = [v(t) for t in ("0.9.9", "1.0.0-alpha", "1.0.0-alpha.1", "1.0.0-1", "1.0.0", "1.0.0+meta", "1.2.0-rc.1", "2.0.0")]
    for a, b in itertools.product(sample, repeat=2):
        assert compare(a, b) == -compare(b, a)
    for a, b, c in itertools.product(sample, repeat=3):
        if compare(a, b) <= 0 and compare(b, c) <= 0:
            assert compare(a, c) <= 0


def test_is_prerelease():
    assert is_prerelease(v("2.0.0-beta"))
    assert not is_prerelease(v("2.0.0"))
    assert not v("2.0.0+build").is_prerelease()


def test_tolerant_v_prefix_with_letter_suffix():
    version = v("v1.4c", tolerant=True)
    assert (version.major, version.minor, version.patch) == (1, 4, 0)
    assert version.prerelease == ("c",)
    with pytest.raises(ParseError):
        v("v1.4c")


@pytest.mark.parametrize("text, expected", [
    ("Release 1.4", "1.4.0"),
    ("2", "2.0.0"),
    ("1.2", "1.2.0"),
    ("V3.0.1", "3.0.1"),
    ("1.4 beta 2", "1.4.0-beta-2"),
    ("1.2.3.4", "1.2.3-4"),
    ("1.0.0-beta_1", "1.0.0-beta-1"),
    ("beta", "0.0.0-beta"),
])
def test_tolerant_parse_degrades_gracefully(text, expected):
    assert str(v(text, tolerant=True)) == expected


def test_tolerant_parse_keeps_valid_versions_unchanged():
    assert str(v("1.2.3-rc.1+abc", tolerant=True)) == "1.2.3-rc.1+abc"


def test_tolerant_parse_still_rejects_empty_text():
    with pytest.raises(ParseError):
        v("", tolerant=True)


def test_try_parse_returns_none_on_failure():
    assert SemanticVersion.try_parse("not a version") is None
    assert SemanticVersion.try_parse("1.0.0") == SemanticVersion(1, 0, 0)


def test_direct_construction_validates():
    assert SemanticVersion(1, 2, 3, "beta.1").prerelease == ("beta", 1)
    with pytest.raises(ParseError):
        SemanticVersion(-1, 0, 0)
    with pytest.raises(ParseError):
        SemanticVersion(1, 0, 0, ("bad id",))


def test_is_newer_than():
    assert v("1.0.1").is_newer_than(v("1.0.0"))
    assert not v("1.0.0").is_newer_than(v("1.0.0"))
    assert v("1.0.0").is_newer_than(None)


def test_versions_are_immutable():
    version = v("1.0.0")
    with pytest.raises(AttributeError):
        version.major = 2

"""Tests for version parsing and constraint matching."""

import logging

import pytest

from cosmos.errors import SemverError
from cosmos.versioning import (
    compare_versions,
    parse_constraint,
    parse_version,
    satisfies,
)


class TestParseVersion:
    """Tests for parse_version."""

    def test_full_version(self):
        v = parse_version("1.2.3")
        assert (v.major, v.minor, v.patch) == (1, 2, 3)

    def test_prerelease_and_build(self):
        v = parse_version("1.0.0-beta.2+build.7")
        assert v.prerelease == "beta.2"
        assert v.build == "build.7"

    @pytest.mark.parametrize("text", ["", "1.2", "one.two.three", "1.2.3.4", "01.2.3"])
    def test_invalid(self, text):
        with pytest.raises(SemverError):
            parse_version(text)


class TestSatisfies:
    """Tests for constraint evaluation."""

    def test_caret(self):
        assert satisfies("1.2.3", "^1.0.0")
        assert not satisfies("2.0.0", "^1.0.0")

    def test_bare_version_is_caret(self):
        assert satisfies("1.9.0", "1.2.3")
        assert not satisfies("1.2.2", "1.2.3")

    def test_caret_zero_major(self):
        assert satisfies("0.2.9", "^0.2.3")
        assert not satisfies("0.3.0", "^0.2.3")
        assert satisfies("0.0.3", "^0.0.3")
        assert not satisfies("0.0.4", "^0.0.3")

    def test_tilde(self):
        assert satisfies("1.2.9", "~1.2.3")
        assert not satisfies("1.3.0", "~1.2.3")
        assert satisfies("1.9.0", "~1")

    def test_exact(self):
        assert satisfies("1.2.3", "=1.2.3")
        assert not satisfies("1.2.4", "=1.2.3")

    def test_partial_exact_is_range(self):
        assert satisfies("1.2.7", "=1.2")
        assert not satisfies("1.3.0", "=1.2")

    def test_comparisons(self):
        assert satisfies("1.5.0", ">1.4.9")
        assert not satisfies("1.4.9", ">1.4.9")
        assert satisfies("1.4.9", ">=1.4.9")
        assert satisfies("1.4.8", "<1.4.9")
        assert satisfies("1.4.99", "<=1.4")
        assert not satisfies("1.5.0", "<=1.4")
        assert satisfies("2.0.0", ">1")
        assert not satisfies("1.9.9", ">1")

    def test_range(self):
        assert satisfies("1.3.0", ">=1.2, <1.5")
        assert not satisfies("1.5.0", ">=1.2, <1.5")

    def test_wildcards(self):
        assert satisfies("1.7.0", "1.*")
        assert satisfies("1.2.9", "1.2.x")
        assert not satisfies("2.0.0", "1.*")

    def test_any(self):
        assert satisfies("0.0.1", "*")
        assert satisfies("99.0.0", "*")

    def test_any_matches_prerelease(self):
        assert satisfies("2.0.0-rc.1", "*")

    def test_prerelease_needs_opt_in(self):
        assert not satisfies("1.3.0-alpha", "^1.0.0")
        assert satisfies("1.3.0-alpha", ">=1.3.0-alpha")
        assert satisfies("1.3.0-beta", ">=1.3.0-alpha")
        assert not satisfies("1.4.0-beta", ">=1.3.0-alpha")

    def test_build_metadata_ignored(self):
        assert satisfies("1.2.3+linux", "=1.2.3")

    def test_malformed_constraint_is_false(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert not satisfies("1.0.0", ">>1")
        assert ">>1" in caplog.text

    def test_malformed_version_is_false(self):
        assert not satisfies("latest", "*")


class TestParseConstraint:
    """Tests for constraint parsing errors."""

    @pytest.mark.parametrize("text", ["", " , ", ">=1.0,", ">1.*", "^1.x", "1.2-rc1", "abc"])
    def test_invalid(self, text):
        with pytest.raises(SemverError):
            parse_constraint(text)

    def test_comparators_kept_in_order(self):
        c = parse_constraint(">=1.2, <2")
        assert [comp.op for comp in c.comparators] == [">=", "<"]

    def test_is_any(self):
        assert parse_constraint("*").is_any
        assert not parse_constraint("^1").is_any


class TestCompareVersions:
    """Tests for compare_versions."""

    def test_ordering(self):
        assert compare_versions("1.0.0", "1.0.1") == -1
        assert compare_versions("1.0.0", "1.0.0") == 0
        assert compare_versions("2.0.0", "1.9.9") == 1

    def test_prerelease_precedence(self):
        assert compare_versions("1.0.0-alpha", "1.0.0") == -1
        assert compare_versions("1.0.0-alpha.1", "1.0.0-alpha.beta") == -1

    def test_invalid(self):
        with pytest.raises(SemverError):
            compare_versions("1.0", "1.0.0")

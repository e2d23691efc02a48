"""Tests for versioning data models."""

import pytest

from versioning.models import ConflictResolutionStrategy, PackageIdentity


class TestPackageIdentity:
    """Test case-insensitive identity semantics."""

    def test_equality_ignores_case(self):
        assert PackageIdentity("Newtonsoft.Json", "13.0.3") == PackageIdentity("newtonsoft.json", "13.0.3")
        assert PackageIdentity("Pkg", "1.0.0-Beta") == PackageIdentity("pkg", "1.0.0-beta")

    def test_different_version_not_equal(self):
        assert PackageIdentity("Pkg", "1.0.0") != PackageIdentity("Pkg", "1.0.1")

    def test_hash_matches_equality(self):
        a = PackageIdentity("Serilog", "3.1.1")
        b = PackageIdentity("SERILOG", "3.1.1")
        assert hash(a) == hash(b)
        assert len({a, b}) == 1
        assert {a: "x"}[b] == "x"

    def test_original_spelling_kept(self):
        identity = PackageIdentity("Serilog", "3.1.1")
        assert identity.id == "Serilog"

    def test_other_types_not_equal(self):
        assert PackageIdentity("Pkg", "1.0.0") != ("Pkg", "1.0.0")


class TestConflictResolutionStrategy:
    """Test strategy name parsing."""

    @pytest.mark.parametrize("text,expected", [
        ("UseHighest", ConflictResolutionStrategy.USE_HIGHEST),
        ("usemostcommon", ConflictResolutionStrategy.USE_MOST_COMMON),
        ("USE_LATEST_STABLE", ConflictResolutionStrategy.USE_LATEST_STABLE),
    ])
    def test_parse(self, text, expected):
        assert ConflictResolutionStrategy.parse(text) is expected

    def test_unknown(self):
        with pytest.raises(ValueError):
            ConflictResolutionStrategy.parse("UseNewest")

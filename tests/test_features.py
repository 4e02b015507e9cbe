"""
Tests for the feature registry.
"""

from datetime import datetime

import pytest

from featureloop.features import (
    FeatureExistsError,
    InvalidFeatureNameError,
    NoFeaturesError,
    add_feature,
    collect_features,
    discover_features,
    feature_ids_from_specs,
    load_feature,
    normalize_feature_name,
    parse_feature_list,
    read_feature_list,
    register_feature,
    remove_feature,
    validate_feature_name,
)
from featureloop.schema import FeatureStatus


def write_spec(layout, feature_id, text="# spec\n"):
    path = layout.feature_spec(feature_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


# ============================================================================
# Names
# ============================================================================

class TestFeatureNames:

    @pytest.mark.parametrize("name", ["search", "user-auth", "cart_v2", "A1"])
    def test_valid_names(self, name):
        assert validate_feature_name(name) == name

    @pytest.mark.parametrize("name", ["", "1search", "-x", "has space", "a/b", "semi;colon", "x" * 65])
    def test_invalid_names(self, name):
        with pytest.raises(InvalidFeatureNameError):
            validate_feature_name(name)

    def test_max_length_accepted(self):
        assert validate_feature_name("x" * 64)

    @pytest.mark.parametrize("raw,expected", [
        ("User Auth", "user-auth"),
        ("  Search!  ", "search"),
        ("cart_v2", "cartv2"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_feature_name(raw) == expected


# ============================================================================
# Discovery
# ============================================================================

class TestDiscovery:

    def test_parse_feature_list(self):
        text = "# features\nsearch\n\n  cart  \nsearch\n# trailing comment\n"

        assert parse_feature_list(text) == ["search", "cart"]

    def test_list_takes_precedence_over_specs(self, layout, feature_list):
        write_spec(layout, "orphan")
        feature_list("search", "cart")

        assert discover_features(layout) == ["search", "cart"]

    def test_specs_used_without_list(self, layout):
        write_spec(layout, "search")
        write_spec(layout, "auth")
        (layout.feature_specs_dir / "notes.md").write_text("not a spec")

        assert feature_ids_from_specs(layout) == ["auth", "search"]
        assert discover_features(layout) == ["auth", "search"]

    def test_nothing_discoverable_is_fatal(self, layout):
        with pytest.raises(NoFeaturesError):
            discover_features(layout)

    def test_empty_list_is_fatal(self, layout, feature_list):
        feature_list()
        write_spec(layout, "search")

        with pytest.raises(NoFeaturesError):
            discover_features(layout)


# ============================================================================
# Add / remove
# ============================================================================

class TestAddRemove:

    def test_add_feature_writes_spec_and_registers(self, layout):
        path = add_feature(layout, "search", "Full-text search", now=datetime(2025, 2, 3, 4, 5))

        text = path.read_text()
        assert "# Feature Specification: search" in text
        assert "Full-text search" in text
        assert "2025-02-03" in text
        assert read_feature_list(layout) == ["search"]

    def test_add_keeps_existing_spec_derived_ids(self, layout):
        write_spec(layout, "auth")

        add_feature(layout, "search", "")

        assert layout.features_file.read_text() == "auth\nsearch\n"
        assert "(no description provided)" in layout.feature_spec("search").read_text()

    def test_add_existing_feature_rejected(self, layout):
        add_feature(layout, "search", "x")

        with pytest.raises(FeatureExistsError):
            add_feature(layout, "search", "again")

    def test_add_invalid_name_rejected(self, layout):
        with pytest.raises(InvalidFeatureNameError):
            add_feature(layout, "bad name", "x")
        assert not layout.features_file.exists()

    def test_register_is_idempotent(self, layout, feature_list):
        feature_list("search")

        assert register_feature(layout, "search") is False
        assert register_feature(layout, "cart") is True
        assert read_feature_list(layout) == ["search", "cart"]

    def test_remove_feature(self, layout, feature_list):
        feature_list("search", "cart")
        write_spec(layout, "cart")

        assert remove_feature(layout, "cart") is True
        assert remove_feature(layout, "cart") is False
        assert read_feature_list(layout) == ["search"]
        assert layout.feature_spec("cart").exists()

    def test_remove_without_list(self, layout):
        assert remove_feature(layout, "search") is False


# ============================================================================
# Feature board
# ============================================================================

class TestCollectFeatures:

    def test_status_from_ledger(self, layout, feature_list, write_ledger):
        feature_list("search", "cart")
        write_ledger("search", "IN_PROGRESS", "COMPLETE")

        search, cart = collect_features(layout)

        assert search.status == FeatureStatus.COMPLETE
        assert search.is_complete
        assert search.message == "step 1"
        assert search.branch == "feature/search"
        assert cart.status is None
        assert cart.message == ""

    def test_unlisted_workspace_included(self, layout, feature_list, write_ledger):
        feature_list("search")
        write_ledger("legacy", "BLOCKED")

        ids = [feature.id for feature in collect_features(layout)]

        assert ids == ["search", "legacy"]

    def test_load_feature_paths(self, layout):
        feature = load_feature(layout, "search")

        assert feature.workspace == layout.workspace("search")
        assert feature.status is None

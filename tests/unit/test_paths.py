"""
Unit tests for the entity / package / classifier path grammar.

Tests cover:
- Package, entity and classifier path validity
- Reserved meta:: prefix
- Package membership
"""

import pytest

from sdlc.modelvcs_core.model import paths


class TestPathValidity:
    """Tests for the is_valid_* predicates."""

    @pytest.mark.parametrize("value", ["model", "model::domain", "a_b::c1"])
    def test_valid_package_paths(self, value):
        assert paths.is_valid_package_path(value)

    @pytest.mark.parametrize("value", ["", "model::", "::model", "model::do-main", "model:::x", None, "a::b$"])
    def test_invalid_package_paths(self, value):
        assert not paths.is_valid_package_path(value)

    @pytest.mark.parametrize("value", ["model::Person", "model::domain::Person", "a::B$1"])
    def test_valid_entity_paths(self, value):
        assert paths.is_valid_entity_path(value)

    @pytest.mark.parametrize("value", ["Person", "", "model::", "model::Per son", None, "model::a$::B"])
    def test_invalid_entity_paths(self, value):
        assert not paths.is_valid_entity_path(value)

    def test_entity_path_must_not_use_meta_prefix(self):
        """The meta:: prefix is reserved for classifiers."""
        assert not paths.is_valid_entity_path("meta::pure::Class")
        assert paths.is_valid_classifier_path("meta::pure::Class")

    @pytest.mark.parametrize("value", ["meta::Class", "meta::pure::metamodel::type::Class"])
    def test_valid_classifier_paths(self, value):
        assert paths.is_valid_classifier_path(value)

    @pytest.mark.parametrize("value", ["meta::", "model::Class", "meta", "meta::pure::", None])
    def test_invalid_classifier_paths(self, value):
        assert not paths.is_valid_classifier_path(value)

    def test_checks_never_raise_on_non_strings(self):
        for check in (paths.is_valid_package_path, paths.is_valid_entity_path, paths.is_valid_classifier_path):
            assert check(42) is False


class TestPathParts:
    """Tests for splitting paths and package membership."""

    def test_package_and_name(self):
        assert paths.package_of("model::domain::Person") == "model::domain"
        assert paths.name_of("model::domain::Person") == "Person"

    def test_iter_path_elements(self):
        assert list(paths.iter_path_elements("a::b::C")) == ["a", "b", "C"]

    def test_is_in_package(self):
        assert paths.is_in_package("model::domain::Person", "model::domain")
        assert paths.is_in_package("model::domain::Person", "model")
        assert not paths.is_in_package("model::domain::Person", "model", include_sub_packages=False)
        assert not paths.is_in_package("modelx::Person", "model")

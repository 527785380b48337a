# =============================================================================
# File: test_model_paths.py
# Date: 2026-10-08
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

"""Tests for identifier to directory resolution and path validation."""

import os

import pytest

from sentembed.config.appsettings import ModelsConfig
from sentembed.exceptions import ModelNotFoundError, ResourceException
from sentembed.services.embedder.model_paths import ModelPathResolver
from sentembed.utils.path_validator import has_dangerous_pattern, safe_join, validate_safe_path


def _touch_config(directory):
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, "config.json"), "w", encoding="utf-8") as f:
        f.write("{}")
    return str(directory)


def _resolver(root, **kwargs):
    return ModelPathResolver(ModelsConfig(roots=[str(root)], use_hub_cache=False, **kwargs))


class TestModelPathResolver:
    def test_org_name_directory(self, tmp_path):
        expected = _touch_config(tmp_path / "acme" / "encoder")
        assert _resolver(tmp_path).resolve_path("acme/encoder") == os.path.realpath(expected)

    @pytest.mark.parametrize("folder", ["acme--encoder", "acme_encoder"])
    def test_flattened_directory_names(self, tmp_path, folder):
        expected = _touch_config(tmp_path / folder)
        assert _resolver(tmp_path).resolve_path("acme/encoder") == os.path.realpath(expected)

    def test_existing_directory_identifier(self, tmp_path):
        path = _touch_config(tmp_path / "anywhere")
        assert _resolver(tmp_path / "unused").resolve_path(path) == os.path.abspath(path)

    def test_directory_without_config_is_not_found(self, tmp_path):
        (tmp_path / "empty").mkdir()
        with pytest.raises(ModelNotFoundError):
            _resolver(tmp_path).resolve_path(str(tmp_path / "empty"))

    def test_roots_are_searched_in_order(self, tmp_path):
        first = _touch_config(tmp_path / "one" / "m")
        _touch_config(tmp_path / "two" / "m")
        resolver = ModelPathResolver(
            ModelsConfig(roots=[str(tmp_path / "one"), str(tmp_path / "two")], use_hub_cache=False)
        )
        assert resolver.resolve_path("m") == os.path.realpath(first)

    def test_missing_root_is_skipped(self, tmp_path):
        expected = _touch_config(tmp_path / "real" / "m")
        resolver = ModelPathResolver(
            ModelsConfig(roots=[str(tmp_path / "nope"), str(tmp_path / "real")], use_hub_cache=False)
        )
        assert resolver.resolve_path("m") == os.path.realpath(expected)

    @pytest.mark.parametrize(
        "identifier", ["", "   ", "../escape", "acme/../../etc", "~/model", "$HOME/model", "/abs/model"]
    )
    def test_invalid_identifiers(self, tmp_path, identifier):
        with pytest.raises(ModelNotFoundError):
            _resolver(tmp_path).resolve_path(identifier)

    def test_unknown_identifier(self, tmp_path):
        with pytest.raises(ModelNotFoundError) as exc_info:
            _resolver(tmp_path).resolve_path("nonexistent/model-xyz")
        assert "nonexistent/model-xyz" in str(exc_info.value)

    def test_hub_cache_lookup(self, tmp_path):
        cache = tmp_path / "hub"
        repo = cache / "models--acme--encoder"
        commit = "0123456789abcdef0123456789abcdef01234567"
        (repo / "refs").mkdir(parents=True)
        (repo / "refs" / "main").write_text(commit)
        snapshot = _touch_config(repo / "snapshots" / commit)

        resolver = ModelPathResolver(
            ModelsConfig(roots=[], use_hub_cache=True, hub_cache_dir=str(cache))
        )
        assert os.path.realpath(resolver.resolve_path("acme/encoder")) == os.path.realpath(snapshot)

    def test_hub_cache_disabled(self, tmp_path):
        resolver = ModelPathResolver(
            ModelsConfig(roots=[], use_hub_cache=False, hub_cache_dir=str(tmp_path))
        )
        with pytest.raises(ModelNotFoundError):
            resolver.resolve_path("acme/encoder")

    def test_hub_cache_miss(self, tmp_path):
        resolver = ModelPathResolver(
            ModelsConfig(roots=[], use_hub_cache=True, hub_cache_dir=str(tmp_path / "empty-cache"))
        )
        with pytest.raises(ModelNotFoundError):
            resolver.resolve_path("acme/encoder")


class TestPathValidation:
    def test_validate_safe_path_inside(self, tmp_path):
        target = tmp_path / "file.txt"
        target.touch()
        assert validate_safe_path(target, tmp_path) == str(target.resolve())

    def test_validate_safe_path_outside(self, tmp_path):
        with pytest.raises(ResourceException):
            validate_safe_path(tmp_path / ".." / "x", tmp_path)

    def test_validate_safe_path_missing_base(self, tmp_path):
        with pytest.raises(ResourceException):
            validate_safe_path(tmp_path / "a", tmp_path / "missing")

    @pytest.mark.parametrize("component", ["..", "~user", "$HOME", "%APPDATA%", "", " padded"])
    def test_safe_join_rejects(self, tmp_path, component):
        with pytest.raises(ResourceException):
            safe_join(tmp_path, component)

    def test_safe_join_accepts_nested(self, tmp_path):
        assert safe_join(tmp_path, "a", "b.json") == str((tmp_path / "a" / "b.json").resolve())

    def test_has_dangerous_pattern(self):
        assert has_dangerous_pattern("a/../b")
        assert not has_dangerous_pattern("sentence-transformers/all-MiniLM-L12-v2")

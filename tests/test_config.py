"""Tests for configuration loading and root-relative paths."""

from pathlib import Path

import pytest
import yaml

from cosmos.config import (
    DEFAULT_GALAXIES,
    Config,
    CosmosPaths,
    is_local_locator,
    locator_to_path,
    resolve_root,
)
from cosmos.errors import CosmosIOError, MetadataParseError, MissingFieldError


class TestConfig:
    def test_default(self):
        config = Config.default()
        assert config.galaxies == DEFAULT_GALAXIES
        assert config.install_dir == "/"

    def test_default_with_root(self, tmp_path):
        assert Config.default(tmp_path).install_dir == str(tmp_path)
        assert Config.default("/").install_dir == "/"

    def test_save_preserves_galaxy_order(self, tmp_path):
        path = tmp_path / "etc" / "cosmos" / "config.yaml"
        config = Config(
            galaxies={"zeta": "http://z/", "alpha": "/srv/a", "mid": "file:///m"},
            install_dir="/",
            cache_dir="/var/cache/cosmos",
        )
        config.save(path)

        loaded = Config.from_file(path)
        assert list(loaded.galaxies) == ["zeta", "alpha", "mid"]
        assert loaded == config

    def test_galaxy_cache_dir(self):
        config = Config(cache_dir="/var/cache/cosmos")
        assert config.galaxy_cache_dir("core") == Path("/var/cache/cosmos/galaxies/core")

    @pytest.mark.parametrize("missing", ["install_dir", "cache_dir"])
    def test_missing_field(self, missing):
        data = {"galaxies": {}, "install_dir": "/", "cache_dir": "/c"}
        del data[missing]
        with pytest.raises(MissingFieldError):
            Config.from_dict(data)

    def test_galaxies_must_be_mapping(self):
        with pytest.raises(MetadataParseError):
            Config.from_dict({"galaxies": ["core"], "install_dir": "/", "cache_dir": "/c"})

    def test_from_file_errors(self, tmp_path):
        with pytest.raises(CosmosIOError):
            Config.from_file(tmp_path / "absent.yaml")

        bad = tmp_path / "bad.yaml"
        bad.write_text("galaxies: [oops\n")
        with pytest.raises(MetadataParseError):
            Config.from_file(bad)

        scalar = tmp_path / "scalar.yaml"
        scalar.write_text(yaml.safe_dump("just text"))
        with pytest.raises(MetadataParseError):
            Config.from_file(scalar)


class TestRoots:
    def test_override_wins(self, monkeypatch, tmp_path):
        monkeypatch.setenv("COSMOS_ROOT", "/elsewhere")
        assert resolve_root(tmp_path) == tmp_path

    def test_env(self, monkeypatch):
        monkeypatch.setenv("COSMOS_ROOT", "/mnt/target")
        assert resolve_root() == Path("/mnt/target")

    def test_default_root(self, monkeypatch):
        monkeypatch.delenv("COSMOS_ROOT", raising=False)
        assert resolve_root() == Path("/")

    def test_paths(self, tmp_path):
        paths = CosmosPaths(tmp_path)
        assert paths.config_path == tmp_path / "etc" / "cosmos" / "config.yaml"
        assert paths.universe_path == tmp_path / "var" / "lib" / "cosmos" / "universe.json"
        assert paths.lock_path == tmp_path / "var" / "lib" / "cosmos" / "universe.lock"


class TestLocators:
    @pytest.mark.parametrize("locator", ["file:///g", "/srv/g", "./g", "../g", None])
    def test_local(self, locator):
        assert is_local_locator(locator)

    @pytest.mark.parametrize("locator", ["http://example.org/g", "ftp://m/g"])
    def test_remote(self, locator):
        assert not is_local_locator(locator)

    def test_locator_to_path(self):
        assert locator_to_path("file:///srv/g") == Path("/srv/g")
        assert locator_to_path("./g") == Path("g")

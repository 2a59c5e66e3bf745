"""Shared fixtures: galaxy builders, tarballs, config roots and fake transports."""

from __future__ import annotations

import hashlib
import io
import tarfile
from pathlib import Path

import pytest
import yaml

from cosmos.errors import TransportError, UnsupportedUrlError
from cosmos.transport import url_scheme


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def build_tarball(
    path: Path,
    members: dict[str, bytes | str],
    modes: dict[str, int] | None = None,
    symlinks: dict[str, str] | None = None,
) -> Path:
    """Write a .tar.gz with the given file members (and optional symlinks)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    modes = modes or {}
    with tarfile.open(path, "w:gz") as tf:
        for name, content in members.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = modes.get(name, 0o644)
            tf.addfile(info, io.BytesIO(data))
        for name, target in (symlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            tf.addfile(info)
    return path


def star_dict(name: str, version: str = "1.0.0", **fields) -> dict:
    data = {"name": name, "version": version, "authors": {"Ada": "ada@example.org"}}
    data.update(fields)
    return data


class GalaxyBuilder:
    """Writes a galaxy directory: meta.yaml, stars/*.yaml, packages/*.tar.gz."""

    def __init__(self, path: Path, name: str):
        self.path = path
        self.name = name
        self.stars: dict[str, str] = {}
        self.checksums: dict[str, str] = {}
        self.path.mkdir(parents=True, exist_ok=True)
        self.write_meta()

    @property
    def url(self) -> str:
        return f"file://{self.path}"

    def tarball_path(self, name: str, version: str) -> Path:
        return self.path / "packages" / f"{name}-{version}.tar.gz"

    def add_star(
        self,
        name: str,
        version: str = "1.0.0",
        files: dict[str, str] | None = None,
        members: dict[str, bytes | str] | None = None,
        modes: dict[str, int] | None = None,
        publish_checksum: bool = False,
        **fields,
    ) -> dict:
        """Add a star; files go under files/ in its tarball, members verbatim."""
        data = star_dict(name, version, **fields)

        if files is not None or members is not None:
            all_members = {f"files/{k}": v for k, v in (files or {}).items()}
            all_members.update(members or {})
            tarball = build_tarball(self.tarball_path(name, version), all_members, modes)
            data.setdefault("source", f"./packages/{name}-{version}.tar.gz")
            if publish_checksum:
                self.checksums[name] = sha256_bytes(tarball.read_bytes())

        self.write_star(data)
        self.stars[name] = version
        self.write_meta()
        return data

    def write_star(self, data: dict) -> Path:
        star_path = self.path / "stars" / f"{data['name']}.yaml"
        star_path.parent.mkdir(parents=True, exist_ok=True)
        star_path.write_text(yaml.safe_dump(data), encoding="utf-8")
        return star_path

    def write_meta(self) -> None:
        meta = {"name": self.name, "stars": dict(self.stars)}
        if self.checksums:
            meta["checksums"] = dict(self.checksums)
        (self.path / "meta.yaml").write_text(yaml.safe_dump(meta), encoding="utf-8")


class FakeTransport:
    """In-memory transport keyed by URL."""

    def __init__(self, responses: dict[str, bytes] | None = None, schemes=("http",)):
        self.responses = dict(responses or {})
        self.schemes = set(schemes)
        self.requested: list[str] = []

    def supports_url(self, url: str) -> bool:
        return url_scheme(url) in self.schemes

    def fetch_bytes(self, url: str) -> bytes:
        self.requested.append(url)
        if not self.supports_url(url):
            raise UnsupportedUrlError(f"Scheme not allowed: {url}")
        if url not in self.responses:
            raise TransportError(f"Failed to fetch {url} (status: 404)")
        return self.responses[url]


def write_config(root: Path, galaxies: dict[str, str]) -> Path:
    """Write <root>/etc/cosmos/config.yaml installing into <root>/install."""
    config_path = root / "etc" / "cosmos" / "config.yaml"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config = {
        "galaxies": galaxies,
        "install_dir": str(root / "install"),
        "cache_dir": str(root / "cache"),
    }
    config_path.write_text(yaml.safe_dump(config, sort_keys=False), encoding="utf-8")
    (root / "install").mkdir(exist_ok=True)
    return config_path


@pytest.fixture
def make_tarball():
    return build_tarball


@pytest.fixture
def galaxy_factory(tmp_path):
    """Create GalaxyBuilder instances under tmp_path/galaxies."""

    def factory(name: str = "core") -> GalaxyBuilder:
        return GalaxyBuilder(tmp_path / "galaxies" / name, name)

    return factory


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def system_root(tmp_path):
    """A system root whose config lists no galaxies yet."""
    root = tmp_path / "root"
    root.mkdir()
    write_config(root, {})
    return root

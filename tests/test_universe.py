"""Tests for the installed-state ledger and its lock."""

import json

import pytest

from cosmos.errors import LockError, MetadataParseError
from cosmos.universe import InstalledStar, Universe, ledger_lock


class TestUniverse:
    def test_record_is_upsert(self):
        universe = Universe()
        universe.record_star("a", "1.0.0", ["/x"])
        universe.record_star("a", "1.1.0", ["/y"])
        assert universe.get("a") == InstalledStar("a", "1.1.0", ["/y"])
        assert len(universe.installed) == 1

    def test_uninstall(self):
        universe = Universe()
        universe.record_star("a", "1.0.0", [])
        assert universe.uninstall_star("a")
        assert not universe.uninstall_star("a")
        assert not universe.is_installed("a")

    def test_satisfies(self):
        universe = Universe()
        universe.record_star("a", "1.4.0", [])
        assert universe.satisfies("a", "^1.2")
        assert not universe.satisfies("a", "^2")
        assert not universe.satisfies("b", "*")

    def test_satisfies_with_bad_recorded_version(self):
        universe = Universe()
        universe.record_star("a", "not-a-version", [])
        assert not universe.satisfies("a", "*")

    def test_load_missing_is_fresh(self, tmp_path):
        universe = Universe.load(tmp_path / "universe.json")
        assert universe.installed == {}
        assert universe.system.arch

    def test_save_load_roundtrip(self, tmp_path):
        path = tmp_path / "var" / "lib" / "cosmos" / "universe.json"
        universe = Universe()
        universe.record_star("b", "2.0.0", ["/usr/bin/b"])
        universe.record_star("a", "1.0.0", [])
        universe.save(path)

        assert Universe.load(path) == universe

    def test_save_is_deterministic(self, tmp_path):
        first, second = tmp_path / "1.json", tmp_path / "2.json"
        u1 = Universe()
        u1.record_star("b", "2.0.0", [])
        u1.record_star("a", "1.0.0", [])
        u2 = Universe(system=u1.system)
        u2.record_star("a", "1.0.0", [])
        u2.record_star("b", "2.0.0", [])
        u1.save(first)
        u2.save(second)

        assert first.read_bytes() == second.read_bytes()
        assert list(json.loads(first.read_text())["installed"]) == ["a", "b"]

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "universe.json"
        path.write_text("{not json")
        with pytest.raises(MetadataParseError):
            Universe.load(path)

    def test_malformed_entry(self, tmp_path):
        path = tmp_path / "universe.json"
        path.write_text(json.dumps({"installed": {"a": {"version": "1.0.0"}}}))
        with pytest.raises(MetadataParseError):
            Universe.load(path)


class TestLedgerLock:
    def test_exclusive(self, tmp_path):
        lock_path = tmp_path / "var" / "lib" / "cosmos" / "universe.lock"
        with ledger_lock(lock_path):
            with pytest.raises(LockError):
                with ledger_lock(lock_path):
                    pass

    def test_released_on_exit(self, tmp_path):
        lock_path = tmp_path / "universe.lock"
        with ledger_lock(lock_path):
            pass
        with ledger_lock(lock_path):
            pass

    def test_released_on_error(self, tmp_path):
        lock_path = tmp_path / "universe.lock"
        with pytest.raises(RuntimeError):
            with ledger_lock(lock_path):
                raise RuntimeError("boom")
        with ledger_lock(lock_path):
            pass

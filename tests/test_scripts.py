"""Tests for shell install scripts and the Nova script runner."""

import os

import pytest

from cosmos.errors import ScriptFailedError, SecurityViolationError
from cosmos.install.scripts import (
    NovaCapabilities,
    NovaScriptRunner,
    ScriptRunner,
    recorded_path,
    run_shell_script,
    uses_sandboxed_runner,
    within_root,
)


@pytest.fixture
def roots(tmp_path):
    extraction_root = tmp_path / "extract"
    (extraction_root / "files" / "bin").mkdir(parents=True)
    (extraction_root / "files" / "bin" / "tool").write_text("tool")
    install_root = tmp_path / "install"
    install_root.mkdir()
    return extraction_root, install_root


def write_script(extraction_root, text, name="install.nova"):
    path = extraction_root / name
    path.write_text(text)
    return path


class TestHelpers:
    def test_uses_sandboxed_runner(self):
        assert uses_sandboxed_runner("install.nova")
        assert not uses_sandboxed_runner("install.sh")
        assert uses_sandboxed_runner("install.lua")
        assert not uses_sandboxed_runner(None)

    def test_within_root_reroots_absolute(self, tmp_path):
        assert within_root(tmp_path, "/usr/bin/t") == tmp_path / "usr" / "bin" / "t"

    @pytest.mark.parametrize("path", ["../x", "/usr/../../x", "a/../../b"])
    def test_within_root_rejects_escape(self, tmp_path, path):
        with pytest.raises(SecurityViolationError):
            within_root(tmp_path, path)

    def test_recorded_path(self):
        assert recorded_path("usr/bin/t") == "/usr/bin/t"
        assert recorded_path("./usr/bin/t") == "/usr/bin/t"
        assert recorded_path("/usr/bin/t/") == "/usr/bin/t"

    def test_runner_satisfies_protocol(self):
        assert isinstance(NovaScriptRunner(), ScriptRunner)


class TestShellScript:
    def test_success_runs_in_extraction_root(self, roots):
        extraction_root, _ = roots
        script = write_script(extraction_root, "#!/bin/sh\ntouch ran-here\n", "install.sh")
        script.chmod(0o755)

        run_shell_script(script, extraction_root)
        assert (extraction_root / "ran-here").exists()

    def test_nonzero_exit(self, roots):
        extraction_root, _ = roots
        script = write_script(extraction_root, "#!/bin/sh\necho broken >&2\nexit 3\n", "install.sh")
        script.chmod(0o755)

        with pytest.raises(ScriptFailedError, match="broken"):
            run_shell_script(script, extraction_root)


class TestNovaCapabilities:
    def test_copy_records_destination(self, roots):
        caps = NovaCapabilities(*roots)
        caps.copy("bin/tool", "/usr/bin/tool")
        assert (roots[1] / "usr" / "bin" / "tool").read_text() == "tool"
        assert caps.written == ["/usr/bin/tool"]

    def test_copy_missing_source(self, roots):
        with pytest.raises(ScriptFailedError):
            NovaCapabilities(*roots).copy("bin/none", "/usr/bin/none")

    def test_copy_cannot_read_outside_files(self, roots):
        with pytest.raises(SecurityViolationError):
            NovaCapabilities(*roots).copy("../install.nova", "/x")

    def test_symlink_replaces_existing(self, roots):
        caps = NovaCapabilities(*roots)
        link = roots[1] / "usr" / "bin" / "t"
        link.parent.mkdir(parents=True)
        link.write_text("old")

        caps.symlink("tool", "/usr/bin/t")
        assert os.readlink(link) == "tool"
        assert caps.written == ["/usr/bin/t"]

    def test_chmod_octal_string(self, roots):
        caps = NovaCapabilities(*roots)
        caps.copy("bin/tool", "/usr/bin/tool")
        caps.chmod("/usr/bin/tool", "750")
        assert (roots[1] / "usr" / "bin" / "tool").stat().st_mode & 0o777 == 0o750

    def test_run_failure(self, roots):
        with pytest.raises(ScriptFailedError):
            NovaCapabilities(*roots).run(["false"])


class TestNovaScriptRunner:
    def test_full_script(self, roots):
        extraction_root, install_root = roots
        script = write_script(
            extraction_root,
            "install:\n"
            "  - mkdir: /usr/share/tool\n"
            "  - copy: {from: bin/tool, to: /usr/bin/tool}\n"
            "  - chmod: {path: /usr/bin/tool, mode: '755'}\n"
            "  - symlink: {target: tool, link: /usr/bin/t}\n"
            "  - run: [touch, marker]\n",
        )

        written = NovaScriptRunner().run_install_script(script, extraction_root, install_root)

        assert written == ["/usr/bin/tool", "/usr/bin/t"]
        assert (install_root / "usr" / "share" / "tool").is_dir()
        assert (extraction_root / "marker").exists()

    def test_guards(self, roots):
        extraction_root, install_root = roots
        script = write_script(
            extraction_root,
            "install:\n"
            "  - copy: {from: bin/tool, to: /a}\n"
            "    if_exists: /missing\n"
            "  - copy: {from: bin/tool, to: /b}\n"
            "    unless_exists: /missing\n",
        )

        written = NovaScriptRunner().run_install_script(script, extraction_root, install_root)
        assert written == ["/b"]

    def test_lua_script_is_not_run_by_shell(self, roots, tmp_path):
        extraction_root, install_root = roots
        outside = tmp_path / "outside"
        script = write_script(
            extraction_root, f"#!/bin/sh\ntouch {outside}\n", "install.lua"
        )
        script.chmod(0o755)

        with pytest.raises(ScriptFailedError):
            NovaScriptRunner().run_install_script(script, extraction_root, install_root)
        assert not outside.exists()

    def test_lua_nova_document(self, roots):
        extraction_root, install_root = roots
        script = write_script(
            extraction_root,
            "install:\n  - copy: {from: bin/tool, to: /usr/bin/tool}\n",
            "install.lua",
        )
        written = NovaScriptRunner().run_install_script(script, extraction_root, install_root)
        assert written == ["/usr/bin/tool"]

    def test_escape_is_security_violation(self, roots):
        extraction_root, install_root = roots
        script = write_script(
            extraction_root, "install:\n  - copy: {from: bin/tool, to: ../../etc/evil}\n"
        )
        with pytest.raises(SecurityViolationError):
            NovaScriptRunner().run_install_script(script, extraction_root, install_root)

    @pytest.mark.parametrize(
        "text",
        [
            "steps: []\n",
            "install:\n  - delete: /\n",
            "install:\n  - {mkdir: /a, chmod: {path: /a, mode: '700'}}\n",
            "install:\n  - copy: {from: bin/tool}\n",
            "install: [oops\n",
        ],
    )
    def test_invalid_scripts(self, roots, text):
        extraction_root, install_root = roots
        script = write_script(extraction_root, text)
        with pytest.raises(ScriptFailedError):
            NovaScriptRunner().run_install_script(script, extraction_root, install_root)

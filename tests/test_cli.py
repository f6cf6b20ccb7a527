"""
Tests for CLI commands — create, view, install, detect, list, and global options.
"""

import json
import struct
import zipfile
from pathlib import Path

import pytest
from click.testing import CliRunner

from aperium.core.services import script_executor
from aperium.main import cli


@pytest.fixture
def config_file(tmp_path: Path, nixos_root: Path) -> Path:
    """Settings file pointing every path into tmp_path."""
    (tmp_path / "os-release").write_text("ID=ubuntu\nID_LIKE=debian\n")
    path = tmp_path / "config.yml"
    path.write_text(
        f"home: {tmp_path / 'home'}\n"
        f"os_release: {tmp_path / 'os-release'}\n"
        f"nixos_config: {nixos_root / 'configuration.nix'}\n"
        f"nixos_modules_dir: {nixos_root / 'aperium-modules'}\n"
        "rebuild_command: ['true']\n"
        "validate_nix: false\n"
        "use_sudo: false\n"
    )
    return path


@pytest.fixture
def captured_scripts(monkeypatch) -> list:
    scripts = []

    class FakePopen:
        returncode = 0

        def __init__(self, cmd, **_kw):
            scripts.append(Path(cmd[-1]).read_text())

        def communicate(self):
            return "", ""

    monkeypatch.setattr(script_executor.subprocess, "Popen", FakePopen)
    return scripts


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "install" in result.output
        assert "create" in result.output

    def test_version(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_missing_config_file(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(tmp_path / "nope.yml"), "detect"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestCreateAndView:
    """create → view round trip through the CLI."""

    def test_create_then_view(self, tmp_path, config_file):
        runner = CliRunner()
        out_dir = tmp_path / "dist"

        result = runner.invoke(cli, [
            "--config", str(config_file),
            "create", "htop-pack",
            "--debian", "apt install htop",
            "--nixos", "htop",
            "-o", str(out_dir),
        ])
        assert result.exit_code == 0, result.output
        assert "successfully created" in result.output
        assert (out_dir / "htop-pack.apm").is_file()
        assert (tmp_path / "home" / "key.enc").is_file()

        result = runner.invoke(cli, [
            "--config", str(config_file),
            "view", str(out_dir / "htop-pack.apm"), "--json",
        ])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["name"] == "htop-pack"
        payloads = {p["platform"]: p for p in data["payloads"]}
        assert payloads["debian"]["plaintext"] == "apt install htop"
        assert payloads["nixos"]["plaintext"] == "htop"
        assert payloads["arch"]["present"] is False

    def test_view_human_output(self, tmp_path, config_file):
        runner = CliRunner()
        runner.invoke(cli, [
            "--config", str(config_file),
            "create", "demo", "--generic", "echo hello", "-o", str(tmp_path),
        ])

        result = runner.invoke(cli, ["--config", str(config_file), "view", str(tmp_path / "demo.apm")])

        assert result.exit_code == 0
        assert "demo" in result.output
        assert "echo hello" in result.output

    def test_create_refuses_overwrite(self, tmp_path, config_file):
        runner = CliRunner()
        args = ["--config", str(config_file), "create", "demo", "--generic", "true", "-o", str(tmp_path)]

        assert runner.invoke(cli, args).exit_code == 0
        result = runner.invoke(cli, args)

        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_create_interactive(self, tmp_path, config_file):
        runner = CliRunner()
        result = runner.invoke(
            cli,
            ["--config", str(config_file), "create", "demo", "-o", str(tmp_path)],
            input="generic\necho hi\n",
        )
        assert result.exit_code == 0, result.output
        assert (tmp_path / "demo.apm").is_file()

    def test_view_unextractable_archive(self, tmp_path, config_file):
        archive = tmp_path / "odd.apm"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("package.json", json.dumps({"name": "odd"}))
        data = bytearray(archive.read_bytes())
        struct.pack_into("<H", data, 8, 99)
        struct.pack_into("<H", data, data.index(b"PK\x01\x02") + 10, 99)
        archive.write_bytes(bytes(data))

        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config_file), "view", str(archive)])

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "❌" in result.output

    def test_view_rejects_wrong_extension(self, tmp_path, config_file):
        bogus = tmp_path / "demo.zip"
        bogus.write_text("x")

        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config_file), "view", str(bogus)])

        assert result.exit_code == 1
        assert "extension" in result.output


class TestInstallCommand:
    """install / list through the CLI with a faked script runner."""

    def _create(self, runner, config_file, out_dir):
        result = runner.invoke(cli, [
            "--config", str(config_file),
            "create", "htop-pack",
            "--arch", "pacman -S htop",
            "--debian", "apt install htop",
            "-o", str(out_dir),
        ])
        assert result.exit_code == 0, result.output
        return out_dir / "htop-pack.apm"

    def test_install_and_list(self, tmp_path, config_file, captured_scripts):
        runner = CliRunner()
        archive = self._create(runner, config_file, tmp_path)

        result = runner.invoke(cli, ["--config", str(config_file), "install", str(archive)])
        assert result.exit_code == 0, result.output
        assert "Installed htop-pack" in result.output
        assert captured_scripts == ["apt install -y htop"]

        result = runner.invoke(cli, ["--config", str(config_file), "install", str(archive)])
        assert result.exit_code == 0
        assert "already installed" in result.output
        assert len(captured_scripts) == 1

        result = runner.invoke(cli, ["--config", str(config_file), "list", "--json"])
        records = json.loads(result.output)
        assert [r["name"] for r in records] == ["htop-pack"]

    def test_install_json(self, tmp_path, config_file, captured_scripts):
        runner = CliRunner()
        archive = self._create(runner, config_file, tmp_path)

        result = runner.invoke(cli, ["--config", str(config_file), "install", str(archive), "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["status"] == "installed"
        assert data["platform"] == "debian"

    def test_install_missing_file(self, tmp_path, config_file):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config_file), "install", str(tmp_path / "x.apm")])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_list_empty(self, config_file):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config_file), "list"])
        assert result.exit_code == 0
        assert "No packages installed." in result.output


class TestDetectCommand:
    def test_detect_json(self, config_file):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config_file), "detect", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output) == {"platform": "debian"}

    def test_detect_human(self, config_file):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(config_file), "detect"])
        assert "Platform: debian" in result.output

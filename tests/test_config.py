"""Unit tests for settings loading."""

import pathlib

import pytest

from pwcapture.config import CaptureSettings, env_overrides, load_config_file, load_settings
from pwcapture.runner import PlaywrightCommand, build_env


class TestSettings:
    """Test YAML and environment layering."""

    def test_defaults(self, tmp_path: pathlib.Path) -> None:
        """Test a missing file yields defaults."""
        settings = load_settings(str(tmp_path / "missing.yaml"), environ={})
        assert settings.single_timeout_seconds == 120
        assert settings.batch_timeout_seconds == 600
        assert settings.kill_grace_seconds == 5
        assert settings.reports_dir == "test-reports"
        assert settings.endpoint_env == "PW_CAPTURE_ENDPOINT"

    def test_yaml_capture_section(self, tmp_path: pathlib.Path) -> None:
        """Test the capture section of a YAML file is used."""
        config = tmp_path / "pwcapture.yaml"
        config.write_text("capture:\n  single_timeout_seconds: 30\n  reports_dir: out\nother: 1\n")
        assert load_config_file(str(config)) == {"single_timeout_seconds": 30, "reports_dir": "out"}
        settings = load_settings(str(config), environ={})
        assert settings.single_timeout_seconds == 30
        assert settings.reports_dir == "out"

    def test_env_overrides_yaml(self, tmp_path: pathlib.Path) -> None:
        """Test environment variables win over YAML."""
        config = tmp_path / "pwcapture.yaml"
        config.write_text("single_timeout_seconds: 30\n")
        environ = {
            "PWCAPTURE_SINGLE_TIMEOUT_SECONDS": "45",
            "PWCAPTURE_RECORD_HISTORY": "false",
            "PWCAPTURE_MCP_TRANSPORT": "sse",
            "HOME": "/root",
        }
        assert env_overrides(environ) == {"single_timeout_seconds": "45", "record_history": "false"}
        settings = load_settings(str(config), environ=environ)
        assert settings.single_timeout_seconds == 45
        assert settings.record_history is False

    def test_non_mapping_yaml_ignored(self, tmp_path: pathlib.Path) -> None:
        """Test a YAML list is ignored."""
        config = tmp_path / "pwcapture.yaml"
        config.write_text("- a\n- b\n")
        assert load_config_file(str(config)) == {}

    def test_invalid_values_rejected(self) -> None:
        """Test timeouts must be positive."""
        with pytest.raises(ValueError):
            CaptureSettings(single_timeout_seconds=0)


class TestCommands:
    """Test command lines and child environments."""

    def test_location_command(self, tmp_path: pathlib.Path) -> None:
        """Test a location run with filters."""
        command = PlaywrightCommand(str(tmp_path), executable=["pw"])
        assert command.test_location("a.spec.ts:3", grep="login", project="chromium") == [
            "pw", "test", "a.spec.ts:3", "--grep", "login", "--project", "chromium", "--reporter=line",
        ]

    def test_project_command(self, tmp_path: pathlib.Path) -> None:
        """Test a whole-project run uses the JSON reporter."""
        command = PlaywrightCommand(str(tmp_path), executable=["pw"])
        assert command.test_project(repeat_each=3) == ["pw", "test", "--repeat-each", "3", "--reporter=json"]

    def test_prefers_local_binary(self, tmp_path: pathlib.Path) -> None:
        """Test the project's own Playwright is preferred over npx."""
        assert PlaywrightCommand(str(tmp_path)).prefix() == ["npx", "playwright"]
        local = tmp_path / "node_modules" / ".bin" / "playwright"
        local.parent.mkdir(parents=True)
        local.write_text("")
        assert PlaywrightCommand(str(tmp_path)).prefix() == [str(local)]

    def test_env_without_endpoint(self, tmp_path: pathlib.Path) -> None:
        """Test colors are disabled and nothing else is injected."""
        env = build_env(CaptureSettings(), str(tmp_path), base_env={"PATH": "/bin"})
        assert env == {"PATH": "/bin", "FORCE_COLOR": "0"}

    def test_env_with_endpoint_and_hook(self, tmp_path: pathlib.Path) -> None:
        """Test endpoint, session and capture hook injection."""
        hook = tmp_path / "capture-hook.js"
        hook.write_text("")
        settings = CaptureSettings(capture_hook="capture-hook.js")
        env = build_env(
            settings,
            str(tmp_path),
            endpoint="http://127.0.0.1:5000/capture",
            session_id="test-1",
            base_env={"NODE_OPTIONS": "--max-old-space-size=4096"},
        )
        assert env["PW_CAPTURE_ENDPOINT"] == "http://127.0.0.1:5000/capture"
        assert env["PW_CAPTURE_SESSION"] == "test-1"
        assert env["NODE_OPTIONS"] == f'--max-old-space-size=4096 --require "{hook}"'

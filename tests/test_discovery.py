"""Unit tests for test and project discovery."""

import os
import pathlib

import pytest

from pwcapture.runner import PlaywrightCommand, discover_projects, discover_tests
from pwcapture.runner.discovery import discover_tests_with_glob, parse_test_file

SPEC = """\
import { test } from '@playwright/test';

test.describe('Login', () => {
  test('logs in', async ({ page }) => {});
  test.only("remembers me", async () => {});
});

test(`standalone`, async () => {});
"""


class TestListing:
    """Test discovery through the runner's list output."""

    @pytest.mark.asyncio
    async def test_discover_tests(self, fake_command: PlaywrightCommand, tmp_path: pathlib.Path) -> None:
        """Test listed tests are grouped by file and de-duplicated."""
        files = await discover_tests(str(tmp_path), command=fake_command)
        assert len(files) == 1
        test_file = files[0]
        assert test_file.relative_path == os.path.join("tests", "login.spec.ts")
        assert [(t.title, t.line) for t in test_file.tests] == [("logs in", 3), ("logs out", 9)]
        assert test_file.tests[0].full_title == "tests/login.spec.ts > logs in"

    @pytest.mark.asyncio
    async def test_discover_projects(self, fake_command: PlaywrightCommand, tmp_path: pathlib.Path) -> None:
        """Test projects come from the listed config."""
        projects = await discover_projects(str(tmp_path), command=fake_command)
        assert [(p.name, p.test_dir) for p in projects] == [("chromium", "tests"), ("firefox", None)]

    @pytest.mark.asyncio
    async def test_fallback_to_glob(self, tmp_path: pathlib.Path) -> None:
        """Test a broken runner falls back to scanning spec files."""
        (tmp_path / "playwright.config.ts").write_text("export default {};")
        spec = tmp_path / "tests" / "login.spec.ts"
        spec.parent.mkdir()
        spec.write_text(SPEC)
        command = PlaywrightCommand(str(tmp_path), executable=["false"])

        files = await discover_tests(str(tmp_path), command=command)
        assert [f.relative_path for f in files] == [os.path.join("tests", "login.spec.ts")]
        assert await discover_projects(str(tmp_path), command=command) == []


class TestGlobDiscovery:
    """Test regex-based discovery."""

    def test_parse_test_file(self, tmp_path: pathlib.Path) -> None:
        """Test describe and test titles with their lines."""
        spec = tmp_path / "a.spec.ts"
        spec.write_text(SPEC)
        tests = parse_test_file(spec)
        assert [(t.full_title, t.line) for t in tests] == [
            ("Login > logs in", 4),
            ("Login > remembers me", 5),
            ("Login > standalone", 8),
        ]

    def test_requires_config(self, tmp_path: pathlib.Path) -> None:
        """Test glob discovery needs a Playwright config."""
        spec = tmp_path / "tests" / "a.spec.ts"
        spec.parent.mkdir()
        spec.write_text(SPEC)
        assert discover_tests_with_glob(str(tmp_path)) == []

    def test_skips_node_modules(self, tmp_path: pathlib.Path) -> None:
        """Test vendored specs are ignored."""
        (tmp_path / "playwright.config.js").write_text("")
        vendored = tmp_path / "tests" / "node_modules" / "pkg" / "x.spec.ts"
        vendored.parent.mkdir(parents=True)
        vendored.write_text(SPEC)
        assert discover_tests_with_glob(str(tmp_path)) == []

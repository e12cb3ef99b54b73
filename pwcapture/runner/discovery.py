"""Test and project discovery for a Playwright project.

Discovery asks Playwright itself (``test --list --reporter=json``), which
respects the project's config. When that fails, test files are found by
globbing common test directories and scanning for ``test(`` declarations.
"""

import os
import pathlib
import re
from typing import Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from pwcapture.errors import PwCaptureError
from pwcapture.parsers.batch_report import load_report
from pwcapture.runner.commands import PlaywrightCommand
from pwcapture.runner.process import ManagedProcess

logger = structlog.get_logger(__name__)

DISCOVERY_TIMEOUT_SECONDS = 30.0
PROJECT_DISCOVERY_TIMEOUT_SECONDS = 15.0
CONFIG_FILES = ("playwright.config.ts", "playwright.config.js")
GLOB_PATTERNS = (
    "tests/**/*.spec.ts",
    "tests/**/*.spec.js",
    "test/**/*.spec.ts",
    "test/**/*.spec.js",
    "e2e/**/*.spec.ts",
    "e2e/**/*.spec.js",
)
GLOB_MAX_DEPTH = 3

_DESCRIBE_RE = re.compile(r"""(?:test\.)?describe\s*\(\s*['"`]([^'"`]+)['"`]""")
_TEST_RE = re.compile(r"""\b(?:test|it)(?:\.only)?\s*\(\s*['"`]([^'"`]+)['"`]""")


class TestCase(BaseModel):
    __test__ = False

    title: str
    line: int
    full_title: str


class TestFile(BaseModel):
    __test__ = False

    path: str = Field(description="Absolute path")
    relative_path: str
    tests: list[TestCase] = Field(default_factory=list)


class PlaywrightProject(BaseModel):
    name: str
    test_dir: Optional[str] = None


def parse_test_listing(raw: str, cwd: str) -> list[TestFile]:
    """Group a ``--list`` JSON payload by file, de-duplicating tests."""
    data = load_report(raw)
    root_dir = (data.get("config") or {}).get("rootDir") or cwd
    files: dict[str, list[TestCase]] = {}

    def walk(suite: dict, parent_title: str) -> None:
        title = suite.get("title")
        current = f"{parent_title} > {title}" if parent_title and title else (title or parent_title)
        for spec in suite.get("specs") or []:
            spec_file = spec.get("file") or suite.get("file")
            if not spec_file:
                continue
            file_path = os.path.normpath(
                spec_file if os.path.isabs(spec_file) else os.path.join(root_dir, spec_file)
            )
            tests = files.setdefault(file_path, [])
            spec_title = spec.get("title") or ""
            line = spec.get("line") or 1
            if any(t.line == line and t.title == spec_title for t in tests):
                continue
            full_title = f"{current} > {spec_title}" if current else spec_title
            tests.append(TestCase(title=spec_title, line=line, full_title=full_title))
        for nested in suite.get("suites") or []:
            walk(nested, current)

    for suite in data.get("suites") or []:
        walk(suite, "")

    return [
        TestFile(path=path, relative_path=os.path.relpath(path, cwd), tests=tests)
        for path, tests in files.items()
    ]


def parse_test_file(path: pathlib.Path) -> list[TestCase]:
    """Regex scan of one spec file for ``describe``/``test`` titles."""
    try:
        lines = path.read_text(encoding="utf-8").split("\n")
    except (OSError, UnicodeDecodeError):
        return []
    tests: list[TestCase] = []
    current_describe = ""
    for index, line in enumerate(lines):
        describe = _DESCRIBE_RE.search(line)
        if describe:
            current_describe = describe.group(1)
            continue
        match = _TEST_RE.search(line)
        if match:
            title = match.group(1)
            full_title = f"{current_describe} > {title}" if current_describe else title
            tests.append(TestCase(title=title, line=index + 1, full_title=full_title))
    return tests


def discover_tests_with_glob(cwd: str) -> list[TestFile]:
    """Fallback discovery; only runs when a Playwright config is present."""
    root = pathlib.Path(cwd)
    if not any((root / name).exists() for name in CONFIG_FILES):
        return []

    found: list[TestFile] = []
    seen: set[str] = set()
    for pattern in GLOB_PATTERNS:
        for file in sorted(root.glob(pattern)):
            relative = file.relative_to(root)
            if "node_modules" in relative.parts or len(relative.parts) > GLOB_MAX_DEPTH + 1:
                continue
            key = str(file.resolve())
            if key in seen:
                continue
            seen.add(key)
            tests = parse_test_file(file)
            if tests:
                found.append(TestFile(path=key, relative_path=str(relative), tests=tests))
    return found


async def _list_json(cwd: str, args: Sequence[str], timeout: float) -> str:
    outcome = await ManagedProcess(args, cwd=cwd, timeout=timeout, kill_grace=2.0).run()
    if outcome.stdout.strip().startswith("{") or outcome.exit_code == 0:
        return outcome.stdout
    raise PwCaptureError(outcome.stderr.strip() or f"Exit code {outcome.exit_code}")


async def discover_tests(
    cwd: str,
    project: Optional[str] = None,
    command: Optional[PlaywrightCommand] = None,
) -> list[TestFile]:
    """List test files and their tests for a project directory."""
    command = command or PlaywrightCommand(cwd)
    try:
        raw = await _list_json(cwd, command.list_tests(project), DISCOVERY_TIMEOUT_SECONDS)
        return parse_test_listing(raw, cwd)
    except PwCaptureError as e:
        logger.warning("test_discovery_fallback", cwd=cwd, error=str(e))
        return discover_tests_with_glob(cwd)


async def discover_projects(
    cwd: str,
    command: Optional[PlaywrightCommand] = None,
) -> list[PlaywrightProject]:
    """List the projects named in the Playwright config; empty on failure."""
    command = command or PlaywrightCommand(cwd)
    try:
        raw = await _list_json(cwd, command.list_tests(), PROJECT_DISCOVERY_TIMEOUT_SECONDS)
        data = load_report(raw)
    except PwCaptureError as e:
        logger.warning("project_discovery_failed", cwd=cwd, error=str(e))
        return []
    projects = []
    for entry in (data.get("config") or {}).get("projects") or []:
        name = str(entry.get("name") or "")
        if name:
            test_dir = entry.get("testDir")
            projects.append(PlaywrightProject(name=name, test_dir=str(test_dir) if test_dir else None))
    return projects

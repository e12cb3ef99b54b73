"""Playwright CLI command lines and child environments."""

import os
import pathlib
import time
from typing import Optional, Sequence

from pwcapture.config import CaptureSettings


class PlaywrightCommand:
    """Builds ``playwright test`` invocations for one project directory.

    The project's own ``node_modules/.bin/playwright`` is preferred over
    ``npx playwright`` so a monorepo never resolves a different install.

    Args:
        cwd: Project directory.
        executable: Explicit program prefix replacing the resolved binary,
            e.g. ``["python", "fake_playwright.py"]``.
    """

    def __init__(self, cwd: str, executable: Optional[Sequence[str]] = None) -> None:
        self.cwd = cwd
        self.executable = list(executable) if executable else None

    def prefix(self) -> list[str]:
        if self.executable:
            return list(self.executable)
        local_bin = pathlib.Path(self.cwd) / "node_modules" / ".bin" / "playwright"
        if local_bin.exists():
            return [str(local_bin)]
        return ["npx", "playwright"]

    def test_location(
        self,
        location: str,
        *,
        grep: Optional[str] = None,
        project: Optional[str] = None,
        repeat_each: int = 1,
        reporter: str = "line",
    ) -> list[str]:
        """Run one ``file:line`` location."""
        args = self.prefix() + ["test", location]
        args += self._filters(grep, project, repeat_each)
        args.append(f"--reporter={reporter}")
        return args

    def test_project(
        self,
        *,
        grep: Optional[str] = None,
        project: Optional[str] = None,
        repeat_each: int = 1,
    ) -> list[str]:
        """Run every matching test with the JSON reporter."""
        args = self.prefix() + ["test"]
        args += self._filters(grep, project, repeat_each)
        args.append("--reporter=json")
        return args

    def list_tests(self, project: Optional[str] = None) -> list[str]:
        args = self.prefix() + ["test", "--list", "--reporter=json"]
        if project:
            args += ["--project", project]
        return args

    @staticmethod
    def _filters(grep: Optional[str], project: Optional[str], repeat_each: int) -> list[str]:
        args: list[str] = []
        if grep:
            args += ["--grep", grep]
        if project:
            args += ["--project", project]
        if repeat_each and repeat_each > 1:
            args += ["--repeat-each", str(repeat_each)]
        return args


def new_session_id() -> str:
    return f"test-{int(time.time() * 1000)}"


def build_env(
    settings: CaptureSettings,
    cwd: str,
    endpoint: Optional[str] = None,
    session_id: Optional[str] = None,
    base_env: Optional[dict[str, str]] = None,
) -> dict[str, str]:
    """Environment for a test subprocess.

    Colors are disabled so output parsing sees plain text. When a capture
    endpoint is given, its address and a session id are injected, and a
    configured capture hook that exists on disk is preloaded through
    ``NODE_OPTIONS``.
    """
    env = dict(os.environ if base_env is None else base_env)
    env["FORCE_COLOR"] = "0"
    if not endpoint:
        return env

    env[settings.endpoint_env] = endpoint
    env[settings.session_env] = session_id or new_session_id()

    if settings.capture_hook:
        hook = pathlib.Path(settings.capture_hook)
        if not hook.is_absolute():
            hook = pathlib.Path(cwd) / hook
        if hook.exists():
            existing = env.get("NODE_OPTIONS", "")
            env["NODE_OPTIONS"] = f'{existing} --require "{hook}"'.strip()
    return env

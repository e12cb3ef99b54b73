"""Shared fixtures: a fake Playwright CLI and sample captured runs."""

import pathlib
import sys
from typing import Any, Optional

import pytest

from pwcapture.config import CaptureSettings
from pwcapture.models import ActionCapture, Attachment, Run, RunMode, TestEntry, TestStatus
from pwcapture.runner import Orchestrator, PlaywrightCommand, RunStore

FAKE_PLAYWRIGHT = pathlib.Path(__file__).parent / "fixtures" / "fake_playwright.py"

BEFORE_SNAPSHOT = """\
- banner [ref=e1]
  - link "Home" [ref=e2]
- main [ref=e3]
  - form "Login" [ref=e4]
    - textbox "Email" [ref=e5]
    - button "Sign in" [ref=e6]"""

AFTER_SNAPSHOT = """\
- banner [ref=e1]
  - link "Home" [ref=e2]
- main [ref=e3]
  - form "Login" [ref=e4]
    - textbox "Email" [ref=e5]: jane@example.com
    - alert "Invalid password" [ref=e7]"""


def make_action(
    method: str,
    *,
    type: str = "Locator",
    title: Optional[str] = None,
    requests: Optional[list[dict[str, Any]]] = None,
    console: Optional[list[dict[str, Any]]] = None,
    error: Optional[str] = None,
    snapshot: Optional[dict[str, str]] = None,
    params: Any = None,
    duration_ms: float = 120,
    page_url: str = "http://app.test/login",
) -> ActionCapture:
    """Build an action the way a capture event would carry it."""
    data: dict[str, Any] = {
        "type": type,
        "method": method,
        "title": title,
        "params": params,
        "timing": {"durationMs": duration_ms},
        "network": {"requests": requests or []},
        "console": console or [],
        "pageUrl": page_url,
    }
    if error:
        data["error"] = {"message": error, "stack": f"Error: {error}\n    at login.spec.ts:7:5"}
    if snapshot:
        data["snapshot"] = snapshot
    return ActionCapture.model_validate(data)


def request(url: str, status: Optional[int], method: str = "GET", **extra: Any) -> dict[str, Any]:
    return {"method": method, "url": url, "status": status, "durationMs": 40, "resourceType": "fetch", **extra}


def failing_entry(screenshot_path: Optional[str] = None) -> TestEntry:
    """A failed login test: goto, fill, a failing click, then a final check."""
    actions = [
        make_action(
            "goto",
            type="Page",
            title="Navigate to /login",
            params={"url": "/login"},
            requests=[request("http://app.test/login", 200, resourceType="document")],
        ),
        make_action(
            "fill",
            title="Fill email",
            params={"value": "jane@example.com"},
            requests=[request("http://app.test/api/check", 404, responseBody='{"found": false}')],
            console=[{"type": "warning", "text": "Deprecated API"}],
        ),
        make_action(
            "click",
            title="Click sign in",
            params={"selector": "role=button[name=Sign in]"},
            requests=[
                request(
                    "http://app.test/api/login",
                    500,
                    method="POST",
                    requestPostData='{"email": "jane@example.com"}',
                    responseBody='{"error": "db down"}',
                )
            ],
            console=[
                {"type": "error", "text": "Failed to load resource: 500",
                 "location": {"url": "http://app.test/app.js", "lineNumber": 10, "columnNumber": 4}},
                {"type": "log", "text": "retrying"},
            ],
            error="locator.click: Timeout 5000ms exceeded",
            snapshot={"before": BEFORE_SNAPSHOT, "after": AFTER_SNAPSHOT},
        ),
        make_action("isVisible", title="Check alert", requests=[request("http://app.test/ping", None)]),
    ]
    attachments = []
    if screenshot_path:
        attachments.append(Attachment(name="test-failed-1.png", path=screenshot_path))
    return TestEntry(
        file="tests/login.spec.ts",
        test_title="tests/login.spec.ts:3",
        location="tests/login.spec.ts:3",
        status=TestStatus.FAILED,
        duration=5400,
        error="Error: expect(locator).toBeVisible() failed",
        actions=actions,
        attachments=attachments,
    )


@pytest.fixture
def settings() -> CaptureSettings:
    """Fast timeouts; history disabled unless a test opts in."""
    return CaptureSettings(
        single_timeout_seconds=20,
        batch_timeout_seconds=20,
        kill_grace_seconds=0.5,
        record_history=False,
    )


@pytest.fixture
def fake_command(tmp_path: pathlib.Path) -> PlaywrightCommand:
    return PlaywrightCommand(str(tmp_path), executable=[sys.executable, str(FAKE_PLAYWRIGHT)])


@pytest.fixture
def orchestrator(
    tmp_path: pathlib.Path,
    settings: CaptureSettings,
    fake_command: PlaywrightCommand,
    monkeypatch: pytest.MonkeyPatch,
) -> Orchestrator:
    monkeypatch.setenv("FAKE_PW_STATE", str(tmp_path / "flaky-counter"))
    return Orchestrator(str(tmp_path), settings, command=fake_command)


@pytest.fixture
def sample_store(tmp_path: pathlib.Path) -> tuple[RunStore, Run]:
    """A store holding one finished run: a failing test and a passing one."""
    shot = tmp_path / "test-results" / "test-failed-1.png"
    shot.parent.mkdir(parents=True)
    shot.write_bytes(b"\x89PNG\r\n\x1a\nfake-image")

    passing = TestEntry(
        file="tests/home.spec.ts",
        test_title="tests/home.spec.ts:5",
        location="tests/home.spec.ts:5",
        status=TestStatus.PASSED,
        duration=850,
        actions=[make_action("goto", type="Page", requests=[request("http://app.test/", 200)])],
    )
    store = RunStore()
    run = store.create(mode=RunMode.SEQUENCE)
    run.tests = [failing_entry(str(shot)), passing]
    return store, run

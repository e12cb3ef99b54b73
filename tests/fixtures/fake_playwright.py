"""Stand-in for the ``playwright`` CLI used by the subprocess tests.

Understands the subset of ``playwright test`` the orchestrator issues and
behaves according to the spec file named in the location:

* ``pass.spec.ts``: inside ``test:start``/``test:end`` posts one captured
  ``Page.goto`` and exits 0.
* ``fail.spec.ts``: posts four actions (the third fails), writes a failure
  screenshot, prints an expectation error and exits 1.
* ``plain.spec.ts``: prints ``Error: locator not found`` and exits 1.
* ``flaky.spec.ts``: fails on odd attempts, passes on even ones (counter in
  ``FAKE_PW_STATE``).
* ``hang.spec.ts``: sleeps until terminated.
* ``stall.spec.ts``: passes on the first attempt, sleeps on later ones
  (counter in ``FAKE_PW_STATE``).
* ``stubborn.spec.ts``: ignores SIGTERM and sleeps.
* ``malformed.spec.ts``: posts one malformed batch, then a valid one.
* ``retried.spec.ts``: reports two starts of the same test in one process
  (an in-process retry), one action each, then exits 0.

With ``--reporter=json`` it prints a canned JSON report instead; ``--list``
prints a listing. ``FAKE_PW_BROKEN_JSON=1`` makes the JSON output garbage and
``FAKE_PW_JSON_OUTPUT`` replaces it verbatim.
"""

import json
import os
import pathlib
import signal
import sys
import time

import httpx

ENDPOINT = os.environ.get("PW_CAPTURE_ENDPOINT")
SESSION = os.environ.get("PW_CAPTURE_SESSION", "fake")


def post(events):
    if not ENDPOINT:
        return None
    response = httpx.post(ENDPOINT, json={"events": events}, timeout=5.0)
    return response.status_code


def event(event_type, data=None):
    return {"type": event_type, "sessionId": SESSION, "timestamp": time.time() * 1000, "data": data}


def action(method, title, requests=(), error=None, console=(), snapshot=None, params=None):
    capture = {
        "type": "Page" if method == "goto" else "Locator",
        "method": method,
        "title": title,
        "params": params or {},
        "timing": {"startTime": 0, "endTime": 12, "durationMs": 12},
        "network": {
            "requests": [
                {"method": "GET", "url": url, "status": status, "durationMs": 5, "resourceType": "fetch",
                 "responseBody": json.dumps({"status": status})}
                for url, status in requests
            ],
            "summary": "",
        },
        "console": list(console),
        "pageUrl": "http://app.test/login",
    }
    if error:
        capture["error"] = {"message": error, "stack": f"Error: {error}\n    at login.spec.ts:7:5"}
    if snapshot:
        capture["snapshot"] = snapshot
    return capture


def run_action(capture):
    post([event("action:start", {"type": capture["type"], "method": capture["method"], "title": capture["title"]})])
    post([event("action:capture", capture)])


def parse_args(argv):
    options = {"reporter": "line", "list": False, "location": None, "repeat_each": 1, "project": None}
    args = iter(argv)
    for arg in args:
        if arg == "test":
            continue
        if arg.startswith("--reporter="):
            options["reporter"] = arg.split("=", 1)[1]
        elif arg == "--list":
            options["list"] = True
        elif arg == "--repeat-each":
            options["repeat_each"] = int(next(args))
        elif arg == "--project":
            options["project"] = next(args)
        elif arg == "--grep":
            next(args)
        elif not arg.startswith("--"):
            options["location"] = arg
    return options


def spec_result(title, line, status, duration=100, error=None, project=None):
    result = {"status": "passed" if status in ("expected", "flaky") else status, "duration": duration, "errors": []}
    if error:
        result["errors"] = [{"message": f"\x1b[31m{error}\x1b[39m"}]
    return {
        "title": title,
        "line": line,
        "file": "login.spec.ts",
        "tests": [{"status": status, "projectName": project, "results": [result]}],
    }


def json_report(options):
    if "FAKE_PW_JSON_OUTPUT" in os.environ:
        return os.environ["FAKE_PW_JSON_OUTPUT"]
    if os.environ.get("FAKE_PW_BROKEN_JSON") == "1":
        return "Error: config not found\nthis is not json"
    specs = []
    location = options["location"]
    if location and options["repeat_each"] > 1:
        for i in range(options["repeat_each"]):
            flaky = "flaky" in location and i % 2 == 1
            specs.append(spec_result(
                "logs in", 3,
                "unexpected" if flaky else "expected",
                error="Error: boom" if flaky else None,
            ))
    else:
        specs = [
            spec_result("logs in", 3, "expected", project=options["project"]),
            spec_result("retries", 9, "flaky", project=options["project"]),
            spec_result("shows error", 15, "unexpected", error="Error: expected 200\n  at x", project=options["project"]),
            spec_result("todo", 21, "skipped", project=options["project"]),
        ]
    report = {
        "config": {"rootDir": os.path.join(os.getcwd(), "tests"), "projects": [{"name": "chromium", "testDir": "tests"}]},
        "suites": [{"title": "login.spec.ts", "file": "login.spec.ts", "specs": [],
                    "suites": [{"title": "Login", "file": "login.spec.ts", "specs": specs}]}],
    }
    return json.dumps(report)


def listing():
    return json.dumps({
        "config": {"rootDir": os.getcwd(), "projects": [{"name": "chromium", "testDir": "tests"}, {"name": "firefox"}]},
        "suites": [{"title": "tests/login.spec.ts", "file": "tests/login.spec.ts", "specs": [
            {"title": "logs in", "line": 3, "file": "tests/login.spec.ts"},
            {"title": "logs in", "line": 3, "file": "tests/login.spec.ts"},
            {"title": "logs out", "line": 9, "file": "tests/login.spec.ts"},
        ]}],
    })


def run_location(location):
    name = os.path.basename(location.split(":")[0])

    if name == "pass.spec.ts":
        post([event("test:start", {"testKey": location, "file": name, "test": "logs in"})])
        run_action(action("goto", "Navigate to /login", requests=[("http://app.test/login", 200)]))
        post([event("test:end", {"testKey": location})])
        print("  1 passed (1.2s)")
        return 0

    if name == "retried.spec.ts":
        for title in ("First attempt", "Retry"):
            post([event("test:start", {"testKey": location, "file": name, "test": "logs in"})])
            run_action(action("click", title))
            post([event("test:end", {"testKey": location})])
        print("  1 flaky")
        return 0

    if name == "fail.spec.ts":
        snapshot = {
            "before": '- form "Login" [ref=e1]\n  - button "Sign in" [ref=e2]',
            "after": '- form "Login" [ref=e1]\n  - alert "Invalid password" [ref=e3]',
        }
        run_action(action("goto", "Navigate", requests=[("http://app.test/login", 200)]))
        run_action(action("fill", "Fill password", requests=[("http://app.test/api/check", 404)]))
        run_action(action(
            "click", "Click sign in",
            requests=[("http://app.test/api/login", 500)],
            error="locator.click: Timeout 5000ms exceeded",
            console=[{"type": "error", "text": "Failed to load resource: 500"}],
            snapshot=snapshot,
        ))
        run_action(action("screenshot", "Screenshot", requests=[("http://app.test/ping", 200)]))
        shot_dir = pathlib.Path("test-results") / "login-fail"
        shot_dir.mkdir(parents=True, exist_ok=True)
        (shot_dir / "test-failed-1.png").write_bytes(b"\x89PNG\r\n\x1a\nfake")
        print("Running 1 test using 1 worker")
        print("  1) login.spec.ts:3:1 › logs in")
        print("    Error: expect(locator).toBeVisible() failed")
        print("")
        print("    Expected: visible")
        print("    Received: hidden")
        print("      at login.spec.ts:7:5")
        print("")
        print("  1 failed")
        return 1

    if name == "plain.spec.ts":
        print("Running 1 test using 1 worker")
        print("Error: locator not found")
        return 1

    if name == "flaky.spec.ts":
        state = pathlib.Path(os.environ["FAKE_PW_STATE"])
        count = int(state.read_text()) + 1 if state.exists() else 1
        state.write_text(str(count))
        run_action(action("goto", f"Attempt {count}"))
        if count % 2 == 1:
            print(f"Error: attempt {count} failed")
            return 1
        return 0

    if name == "malformed.spec.ts":
        status = post([event("action:capture", {"method": "click"}), event("action:capture", action("click", "ok"))])
        print(f"malformed status {status}")
        run_action(action("click", "Valid click"))
        return 0

    if name == "stall.spec.ts":
        state = pathlib.Path(os.environ["FAKE_PW_STATE"])
        count = int(state.read_text()) + 1 if state.exists() else 1
        state.write_text(str(count))
        if count > 1:
            time.sleep(60)
        return 0

    if name == "hang.spec.ts":
        time.sleep(60)
        return 0

    if name == "stubborn.spec.ts":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        time.sleep(60)
        return 0

    print(f"Error: No tests found for {location}")
    return 1


def main(argv):
    options = parse_args(argv)
    if options["list"]:
        print(listing())
        return 0
    if options["reporter"] == "json":
        sys.stderr.write("Running 3 tests using 1 worker\n")
        print(json_report(options))
        sys.stderr.write("  2 passed\n  1 failed\n")
        return 1
    return run_location(options["location"] or "")


if __name__ == "__main__":
    sys.stdout.reconfigure(line_buffering=True)
    sys.exit(main(sys.argv[1:]))

"""Unit tests for markdown rendering and exported HTML/JSON reports."""

import base64

from pwcapture.models import Attachment, FlakyVerdict, Run, RunMode, TestEntry, TestStatus
from pwcapture.query import QueryEngine, build_html_report, build_json_report, format_duration
from pwcapture.query import markdown
from pwcapture.query.engine import ElementMatches, TestSource
from pwcapture.runner import RunStore

from conftest import failing_entry


def entry(status: TestStatus, duration: int = 1000, **fields) -> TestEntry:
    return TestEntry(
        file="tests/login.spec.ts",
        test_title=fields.pop("test_title", "tests/login.spec.ts:3"),
        location="tests/login.spec.ts:3",
        status=status,
        duration=duration,
        **fields,
    )


class TestFormatting:
    """Test duration formatting."""

    def test_format_duration(self) -> None:
        """Test millisecond, second and unknown durations."""
        assert format_duration(850) == "850ms"
        assert format_duration(1500) == "1.5s"
        assert format_duration(12_400) == "12s"
        assert format_duration(None) == "?"


class TestRunMarkdown:
    """Test run result rendering for each mode."""

    def test_single_result(self) -> None:
        """Test per-test lines with action index ranges."""
        run = Run(run_id="run-1", timestamp=0, tests=[failing_entry()])
        text = markdown.render_run_result(run)
        assert text.startswith("**Run ID:** `run-1`")
        assert "❌ **FAILED** · `tests/login.spec.ts` · 5.4s · 4 actions (indices 0–3)" in text
        assert "> Error: expect(locator).toBeVisible() failed" in text
        assert "Use `e2e_get_failure_report` with runId `run-1`" in text

    def test_flaky_result(self) -> None:
        """Test the verdict table for retry runs."""
        run = Run(
            run_id="run-2",
            timestamp=0,
            mode=RunMode.FLAKY,
            verdict=FlakyVerdict.FLAKY,
            tests=[entry(TestStatus.FAILED, error="boom"), entry(TestStatus.PASSED, 850)],
        )
        text = markdown.render_run_result(run)
        assert "## Flaky Detection: 2 runs" in text
        assert "**Verdict:** ⚠️ FLAKY" in text
        assert "| 2 | ✅ passed | 850ms | `run-2` [1] |" in text
        assert "testIndex 0" in text

    def test_batch_result(self) -> None:
        """Test the batch summary lists failures with their indices."""
        run = Run(
            run_id="run-3",
            timestamp=0,
            mode=RunMode.BATCH,
            project="chromium",
            skipped=1,
            tests=[
                entry(TestStatus.PASSED, test_title="Login > logs in"),
                entry(TestStatus.FAILED, test_title="Login > shows error", error="Error: expected 200\n  at x"),
            ],
        )
        text = markdown.render_run_result(run)
        assert "## Results: 1 passed, 1 failed (project: chromium) · 2.0s" in text
        assert "_1 skipped._" in text
        assert "❌ [1] `tests/login.spec.ts:3` — Login > shows error · 1.0s" in text
        assert "> Error: expected 200" in text

    def test_batch_all_passed(self) -> None:
        """Test the all-passed line."""
        run = Run(run_id="run-4", timestamp=0, mode=RunMode.BATCH, tests=[entry(TestStatus.PASSED)])
        assert markdown.render_run_result(run).endswith("All tests passed!")

    def test_run_list(self) -> None:
        """Test the run list and its empty form."""
        assert markdown.render_run_list([]) == "No runs recorded yet."
        run = Run(run_id="run-5", timestamp=0, tests=[entry(TestStatus.PASSED)])
        assert "- `run-5` · single · 1 passed, 0 failed" in markdown.render_run_list([run])

    def test_run_summary(self) -> None:
        """Test the summary lists tests with action counts."""
        store = RunStore()
        run = store.create(mode=RunMode.SEQUENCE)
        run.tests = [failing_entry()]
        summary = QueryEngine(store, ".").get_run_summary(run.run_id)
        text = markdown.render_run_summary(summary)
        assert f"## Run `{run.run_id}` (sequence)" in text
        assert "0. ❌ `tests/login.spec.ts:3` · 5.4s · 4 actions" in text


class TestEvidenceMarkdown:
    """Test evidence view rendering."""

    def test_timeline(self) -> None:
        """Test the failing action is marked with its error."""
        store = RunStore()
        run = store.create()
        run.tests = [failing_entry()]
        text = markdown.render_timeline(QueryEngine(store, ".").get_timeline(run.run_id))
        assert text.startswith("## Action Timeline (4 actions)")
        assert "2. ✗ Locator.click [1 req]  120ms  ← FAILED" in text
        assert "    locator.click: Timeout 5000ms exceeded" in text
        assert markdown.render_timeline([]) == "No actions captured."

    def test_action_detail(self) -> None:
        """Test action detail sections."""
        action = failing_entry().actions[2]
        text = markdown.render_action_detail(action, 2)
        assert text.startswith("## ❌ Action 2: `Locator.click`")
        assert "❌ **Error:** locator.click: Timeout 5000ms exceeded" in text
        assert "+ Added: alert \"Invalid password\" [ref=e7]" in text
        assert "- ✗ `POST` http://app.test/api/login → 500 (40ms)" in text
        assert "- ⚠ Failed to load resource: 500" in text

    def test_network(self) -> None:
        """Test network rendering with and without bodies."""
        requests = failing_entry().network_requests()
        lean = markdown.render_network(requests)
        assert lean.startswith("## Network Requests (4)")
        assert "**Status:** pending" in lean
        assert lean.endswith(markdown.BODIES_OMITTED)

        full = markdown.render_network(requests[2:3], include_body=True)
        assert '```json\n{\n  "error": "db down"\n}\n```' in full
        assert markdown.render_network([]) == "No matching network requests."

    def test_console(self) -> None:
        """Test console lines with locations."""
        text = markdown.render_console(failing_entry().console_messages())
        assert "[WARN] Deprecated API" in text
        assert "[ERROR] Failed to load resource: 500 (http://app.test/app.js:10:4)" in text
        assert markdown.render_console([]) == "No console messages."

    def test_elements(self) -> None:
        """Test element matches and the no-match message."""
        found = ElementMatches(action_index=2, which="after", role="button", matches=['- button "Go"'])
        assert markdown.render_elements(found) == '## Found 1 element(s) (action 2 after)\n\n- button "Go"'
        none = ElementMatches(action_index=2, which="after", role="Checkbox", text="agree")
        assert markdown.render_elements(none) == 'No elements found matching role="checkbox", text="agree".'

    def test_source(self) -> None:
        """Test numbered source with the test line marked."""
        source = TestSource(file_path="a.spec.ts", start_line=9, end_line=10, test_line=10, lines=["a", "b"])
        text = markdown.render_test_source(source)
        assert "## a.spec.ts (lines 9–10)" in text
        assert "        9| a" in text
        assert " >>>   10| b" in text

    def test_failure_report(self) -> None:
        """Test the lean failure report with follow-up hints."""
        store = RunStore()
        run = store.create()
        run.tests = [failing_entry("/tmp/shot.png")]
        report = QueryEngine(store, ".").get_failure_report(run.run_id)
        text = markdown.render_failure_report(report)
        assert text.startswith("# ❌ Failure Report")
        assert "## ❌ Failing Action (step 3 of 4)" in text
        assert "_DOM snapshot available. Use `e2e_get_dom_snapshot` (actionIndex=2)" in text
        assert "## ✗ Failed Network Requests (2)" in text
        assert markdown.NETWORK_BODIES_OMITTED in text
        assert "## Screenshots (1)" in text
        assert "← FAILING" in text


class TestExportedReports:
    """Test HTML and JSON report builders."""

    def test_json_report(self) -> None:
        """Test the JSON tree uses wire naming."""
        run = Run(run_id="run-1", timestamp=1700000000000, mode=RunMode.FLAKY, verdict=FlakyVerdict.FLAKY,
                  tests=[failing_entry("/tmp/shot.png")])
        data = build_json_report(run)
        assert data["verdict"] == "FLAKY"
        test = data["tests"][0]
        assert test["test"] == "tests/login.spec.ts:3"
        assert test["status"] == "failed"
        assert test["actions"][2]["error"]["message"] == "locator.click: Timeout 5000ms exceeded"
        assert test["attachments"] == [{"name": "test-failed-1.png", "path": "/tmp/shot.png", "contentType": "image/png"}]

    def test_html_report(self, tmp_path) -> None:
        """Test summary stats, expanded failures and inlined screenshots."""
        shot = tmp_path / "shot.png"
        shot.write_bytes(b"png-bytes")
        failed = failing_entry(str(shot))
        failed.error = "<script>alert(1)</script>"
        passed = entry(TestStatus.PASSED, 500)
        run = Run(run_id="run-1", timestamp=1700000000000, tests=[failed, passed])

        page = build_html_report(run)
        assert '<div class="num pass-num">1</div>' in page
        assert '<div class="num fail-num">1</div>' in page
        assert page.count("<details open") == 1
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in page
        assert "<script>alert" not in page
        assert "Failed Network Requests (2)" in page
        assert "DOM at Failure" in page
        assert f"data:image/png;base64,{base64.b64encode(b'png-bytes').decode()}" in page

    def test_html_missing_screenshot(self, tmp_path) -> None:
        """Test unreadable screenshots are noted, not fatal."""
        test = entry(TestStatus.FAILED, error="x")
        test.attachments = [Attachment(name="gone.png", path=str(tmp_path / "gone.png"))]
        page = build_html_report(Run(run_id="run-1", timestamp=0, tests=[test]))
        assert "gone.png (file not found)" in page

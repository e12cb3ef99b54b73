"""pwcapture MCP server: run Playwright tests and inspect captured evidence.

Exposes the orchestrator and the query engine as Model Context Protocol
tools, so an MCP client can run a test, read its failure report, drill into
actions, network traffic, console output and DOM snapshots, and export
reports. All results are markdown; screenshots come back as images.

Transport support:
  - stdio: Direct stdin/stdout communication
  - SSE: HTTP-based streaming
"""

import os
from typing import Optional, Union

import structlog
import uvicorn

from mcp.server.fastmcp import FastMCP, Image
from pwcapture.config import CaptureSettings
from pwcapture.models import RunMode
from pwcapture.query import markdown
from pwcapture.query.engine import (
    FailureReportOptions,
    NetworkFilter,
    NotFound,
    QueryEngine,
    Screenshot,
)
from pwcapture.runner import (
    ExecuteOptions,
    Orchestrator,
    RunTarget,
    discover_projects,
    discover_tests,
)

logger = structlog.get_logger(__name__)

ToolContent = list[Union[str, Image]]


def _image(screenshot: Screenshot) -> Image:
    return Image(data=screenshot.data, format=screenshot.image_format)


class CaptureToolServer:
    """MCP tool server over one project directory.

    Each ``e2e_*`` tool delegates to a coroutine method of the same purpose
    so the behavior can be exercised without an MCP transport.

    Attributes:
        app: FastMCP application instance
        cwd: Project directory tests run in
        orchestrator: Runs tests and owns the run store
        engine: Read-only queries over the stored runs
    """

    def __init__(
        self,
        cwd: str,
        settings: Optional[CaptureSettings] = None,
        orchestrator: Optional[Orchestrator] = None,
    ) -> None:
        self.cwd = os.path.abspath(cwd)
        self.settings = settings or CaptureSettings()
        self.orchestrator = orchestrator or Orchestrator(self.cwd, self.settings)
        self.engine = QueryEngine(self.orchestrator.store, self.cwd, self.settings.reports_dir)

        self.app = FastMCP("pwcapture")
        self._register_tools()

    # ── Handlers ─────────────────────────────────────────────────────

    async def list_tests(self, project: Optional[str] = None) -> str:
        files = await discover_tests(self.cwd, project, self.orchestrator.command)
        if not files:
            return "No test files found."
        lines = []
        for test_file in files:
            lines.append(f"## {test_file.relative_path}")
            lines += [f"  - {test.full_title} (line {test.line})" for test in test_file.tests]
            lines.append("")
        return "\n".join(lines)

    async def list_projects(self) -> str:
        projects = await discover_projects(self.cwd, self.orchestrator.command)
        if not projects:
            return "No Playwright projects found. Check that playwright.config.ts exists and defines projects."
        lines = [f"## Playwright Projects ({len(projects)})", ""]
        for project in projects:
            test_dir = f" — {project.test_dir}" if project.test_dir else ""
            lines.append(f"- **{project.name}**{test_dir}")
        return "\n".join(lines)

    async def run_test(
        self,
        location: Optional[str] = None,
        grep: Optional[str] = None,
        project: Optional[str] = None,
        timeout: Optional[float] = None,
        retries: int = 0,
        repeat_each: Optional[int] = None,
    ) -> str:
        """Run one location, a flaky check, a repeat stress run or the whole project.

        Whole-project runs also write an HTML report.
        """
        if retries and not location:
            return "⚠ `retries` is only supported when `location` is set (single-test mode)."
        try:
            target = RunTarget(
                location=location,
                grep=grep,
                project=project,
                retries=max(0, int(retries)),
                repeat_each=max(1, int(repeat_each or 1)),
            )
            options = ExecuteOptions(timeout_seconds=timeout, on_progress=self._log_progress)
        except ValueError as e:
            return f"Invalid run request: {e}"

        run = await self.orchestrator.execute(target, options)
        text = markdown.render_run_result(run)
        if run.mode == RunMode.BATCH:
            report = self.engine.generate_report(run.run_id, "html")
            if not isinstance(report, NotFound):
                text += f"\n\n📄 **Report:** `{report.path}`"
        return text

    async def run_summary(self, run_id: Optional[str] = None) -> str:
        if not run_id:
            return markdown.render_run_list(self.orchestrator.list_runs())
        summary = self.engine.get_run_summary(run_id)
        if isinstance(summary, NotFound):
            return summary.message
        return markdown.render_run_summary(summary)

    async def failure_report(
        self,
        run_id: str,
        test_index: int = 0,
        include_dom: bool = False,
        include_network_bodies: bool = False,
    ) -> str:
        report = self.engine.get_failure_report(
            run_id,
            test_index,
            FailureReportOptions(include_dom=include_dom, include_network_bodies=include_network_bodies),
        )
        if isinstance(report, NotFound):
            return report.message
        return markdown.render_failure_report(report)

    async def actions(self, run_id: str, test_index: int = 0) -> str:
        timeline = self.engine.get_timeline(run_id, test_index)
        if isinstance(timeline, NotFound):
            return timeline.message
        return markdown.render_timeline(timeline)

    async def action_detail(self, run_id: str, action_index: int, test_index: int = 0) -> str:
        action = self.engine.get_action(run_id, test_index, action_index)
        if isinstance(action, NotFound):
            return action.message
        return markdown.render_action_detail(action, action_index)

    async def network(
        self,
        run_id: str,
        test_index: int = 0,
        url_pattern: Optional[str] = None,
        method: Optional[str] = None,
        status_min: Optional[int] = None,
        include_body: bool = False,
    ) -> str:
        filters = NetworkFilter(
            url_pattern=url_pattern, method=method, status_min=status_min, include_body=include_body
        )
        requests = self.engine.get_network(run_id, test_index, filters)
        if isinstance(requests, NotFound):
            return requests.message
        return markdown.render_network(requests, include_body)

    async def console(self, run_id: str, test_index: int = 0, type: Optional[str] = None) -> str:
        messages = self.engine.get_console(run_id, test_index, type)
        if isinstance(messages, NotFound):
            return messages.message
        return markdown.render_console(messages)

    async def screenshot(self, run_id: str, test_index: int = 0, screenshot_index: int = 0) -> ToolContent:
        shot = self.engine.get_screenshot(run_id, test_index, screenshot_index)
        if isinstance(shot, NotFound):
            return [shot.message]
        return [f"Screenshot: {shot.name}", _image(shot)]

    async def dom_snapshot(
        self,
        run_id: str,
        action_index: int,
        test_index: int = 0,
        which: str = "after",
        depth: Optional[int] = None,
        interactive_only: bool = False,
    ) -> str:
        if which not in ("before", "after", "both"):
            return f'Invalid "which": {which}. Use before, after or both.'
        view = self.engine.get_dom_snapshot(run_id, test_index, action_index, which, depth, interactive_only)
        if isinstance(view, NotFound):
            return view.message
        return markdown.render_dom_snapshot(view)

    async def dom_diff(self, run_id: str, action_index: int, test_index: int = 0) -> str:
        view = self.engine.get_dom_diff(run_id, test_index, action_index)
        if isinstance(view, NotFound):
            return view.message
        return markdown.render_dom_diff(view)

    async def find_elements(
        self,
        run_id: str,
        action_index: int,
        test_index: int = 0,
        which: str = "after",
        role: Optional[str] = None,
        text: Optional[str] = None,
    ) -> str:
        if not role and not text:
            return "Provide at least one of role or text."
        result = self.engine.find_elements(run_id, test_index, action_index, which, role, text)
        if isinstance(result, NotFound):
            return result.message
        return markdown.render_elements(result)

    async def test_source(self, file_path: str, test_line: Optional[int] = None, context: Optional[int] = None) -> str:
        source = self.engine.get_test_source(file_path, test_line, context)
        if isinstance(source, NotFound):
            return source.message
        return markdown.render_test_source(source)

    async def evidence_bundle(self, run_id: str, test_index: int = 0, output_file: bool = False) -> ToolContent:
        bundle = self.engine.get_evidence_bundle(run_id, test_index, output_file)
        if isinstance(bundle, NotFound):
            return [bundle.message]
        content: ToolContent = [bundle.markdown]
        for shot in bundle.screenshots:
            content += [f"\n**Screenshot:** {shot.name}", _image(shot)]
        if bundle.output_path:
            content.append(f"\n_Evidence written to `{bundle.output_path}`_")
        return content

    async def generate_report(self, run_id: str, format: str = "html") -> str:
        if format not in ("html", "json"):
            return f'Unsupported report format "{format}". Use html or json.'
        report = self.engine.generate_report(run_id, format)
        if isinstance(report, NotFound):
            return report.message
        return markdown.render_generated_report(report)

    def _log_progress(self, message: str) -> None:
        logger.info("run_progress", message=message)

    # ── Tool registration ────────────────────────────────────────────

    def _register_tools(self) -> None:
        """Register all MCP tools."""

        # Discovery & execution

        @self.app.tool()
        async def e2e_list_tests(project: Optional[str] = None) -> str:
            """Discover available Playwright tests with their line numbers.

            Args:
                project: Playwright project name to filter by
            """
            try:
                return await self.list_tests(project)
            except Exception as e:
                logger.error("list_tests_failed", error=str(e))
                return f"Failed to list tests: {e}"

        @self.app.tool()
        async def e2e_list_projects() -> str:
            """List the Playwright projects defined in the config."""
            try:
                return await self.list_projects()
            except Exception as e:
                logger.error("list_projects_failed", error=str(e))
                return f"Failed to list projects: {e}"

        @self.app.tool()
        async def e2e_run_test(
            location: Optional[str] = None,
            grep: Optional[str] = None,
            project: Optional[str] = None,
            timeout: Optional[float] = None,
            retries: int = 0,
            repeat_each: Optional[int] = None,
        ) -> str:
            """Run Playwright tests.

            With a location, runs that test with action capture for deep
            debugging. Without one, runs all tests (optionally filtered by
            project) and returns a pass/fail summary plus an HTML report.

            Args:
                location: Test location, file path or file:line
                grep: Filter tests by title
                project: Playwright project name
                timeout: Timeout in seconds (default 120 for one test, 600 for all)
                retries: Run the test retries+1 times and report a FLAKY/CONSISTENT verdict
                repeat_each: Repeat each test N times within one Playwright process

            Returns:
                Run ID and per-test results
            """
            try:
                return await self.run_test(location, grep, project, timeout, retries, repeat_each)
            except Exception as e:
                logger.error("run_test_failed", location=location, error=str(e))
                return f"Test run failed: {e}"

        # Run inspection

        @self.app.tool()
        async def e2e_get_run_summary(run_id: Optional[str] = None) -> str:
            """Summarize a run, or list recorded runs when run_id is omitted.

            Args:
                run_id: Run ID from e2e_run_test
            """
            return await self.run_summary(run_id)

        @self.app.tool()
        async def e2e_get_failure_report(
            run_id: str,
            test_index: int = 0,
            include_dom: bool = False,
            include_network_bodies: bool = False,
        ) -> str:
            """Get the failure report: error, failing action, timeline, failed requests, console errors.

            DOM snapshots and network bodies are left out unless requested.

            Args:
                run_id: Run ID from e2e_run_test
                test_index: Test index within the run
                include_dom: Include the DOM snapshot at the failing action
                include_network_bodies: Include request/response bodies
            """
            return await self.failure_report(run_id, test_index, include_dom, include_network_bodies)

        @self.app.tool()
        async def e2e_get_actions(run_id: str, test_index: int = 0) -> str:
            """Get the action timeline of a test.

            Args:
                run_id: Run ID from e2e_run_test
                test_index: Test index within the run
            """
            return await self.actions(run_id, test_index)

        @self.app.tool()
        async def e2e_get_action_detail(run_id: str, action_index: int, test_index: int = 0) -> str:
            """Get params, error, DOM changes, network and console for one action.

            Args:
                run_id: Run ID
                action_index: Action index from the timeline
                test_index: Test index within the run
            """
            return await self.action_detail(run_id, action_index, test_index)

        @self.app.tool()
        async def e2e_get_network(
            run_id: str,
            test_index: int = 0,
            url_pattern: Optional[str] = None,
            method: Optional[str] = None,
            status_min: Optional[int] = None,
            include_body: bool = False,
        ) -> str:
            """Get network requests captured during a test, optionally filtered.

            Args:
                run_id: Run ID
                test_index: Test index within the run
                url_pattern: Keep URLs containing this substring
                method: Keep requests with this HTTP method
                status_min: Keep responses with at least this status (e.g. 400)
                include_body: Include request/response bodies
            """
            return await self.network(run_id, test_index, url_pattern, method, status_min, include_body)

        @self.app.tool()
        async def e2e_get_console(run_id: str, test_index: int = 0, type: Optional[str] = None) -> str:
            """Get browser console output captured during a test.

            Args:
                run_id: Run ID
                test_index: Test index within the run
                type: Filter by message type (log, warn, error, info)
            """
            return await self.console(run_id, test_index, type)

        @self.app.tool(structured_output=False)
        async def e2e_get_screenshot(run_id: str, test_index: int = 0, screenshot_index: int = 0) -> ToolContent:
            """Get a screenshot captured for a test.

            Args:
                run_id: Run ID
                test_index: Test index within the run
                screenshot_index: Screenshot index
            """
            return await self.screenshot(run_id, test_index, screenshot_index)

        @self.app.tool()
        async def e2e_get_dom_snapshot(
            run_id: str,
            action_index: int,
            test_index: int = 0,
            which: str = "after",
            depth: Optional[int] = None,
            interactive_only: bool = False,
        ) -> str:
            """Get the aria snapshot before and/or after an action.

            Args:
                run_id: Run ID
                action_index: Action index from the timeline
                test_index: Test index within the run
                which: before, after or both
                depth: Keep only this many nesting levels
                interactive_only: Keep only interactive elements (buttons, links, inputs)
            """
            return await self.dom_snapshot(run_id, action_index, test_index, which, depth, interactive_only)

        @self.app.tool()
        async def e2e_get_dom_diff(run_id: str, action_index: int, test_index: int = 0) -> str:
            """Get the elements added, removed and changed by an action.

            Args:
                run_id: Run ID
                action_index: Action index from the timeline
                test_index: Test index within the run
            """
            return await self.dom_diff(run_id, action_index, test_index)

        @self.app.tool()
        async def e2e_find_elements(
            run_id: str,
            action_index: int,
            test_index: int = 0,
            which: str = "after",
            role: Optional[str] = None,
            text: Optional[str] = None,
        ) -> str:
            """Search an action's DOM snapshot for elements by role and/or text.

            Args:
                run_id: Run ID
                action_index: Action index from the timeline
                test_index: Test index within the run
                which: before or after
                role: ARIA role, e.g. button, link, textbox
                text: Case-insensitive text to look for
            """
            return await self.find_elements(run_id, action_index, test_index, which, role, text)

        @self.app.tool()
        async def e2e_get_test_source(
            file_path: str,
            test_line: Optional[int] = None,
            context: Optional[int] = None,
        ) -> str:
            """Read a test file with line numbers, centered on a test.

            Args:
                file_path: Path relative to the project root
                test_line: Line of the test declaration to highlight
                context: Lines shown either side of test_line (default 60)
            """
            return await self.test_source(file_path, test_line, context)

        # Reports

        @self.app.tool(structured_output=False)
        async def e2e_get_evidence_bundle(run_id: str, test_index: int = 0, output_file: bool = False) -> ToolContent:
            """Get the full evidence bundle for a failed test, screenshots included.

            Args:
                run_id: Run ID
                test_index: Test index within the run
                output_file: Also write the markdown to test-reports/evidence-<runId>.md
            """
            try:
                return await self.evidence_bundle(run_id, test_index, output_file)
            except OSError as e:
                logger.error("evidence_bundle_failed", run_id=run_id, error=str(e))
                return [f"Failed to build evidence bundle: {e}"]

        @self.app.tool()
        async def e2e_generate_report(run_id: str, format: str = "html") -> str:
            """Write an HTML or JSON report for a run under test-reports/.

            Args:
                run_id: Run ID
                format: html or json
            """
            try:
                return await self.generate_report(run_id, format)
            except OSError as e:
                logger.error("generate_report_failed", run_id=run_id, error=str(e))
                return f"Failed to write report: {e}"

    # ── Transports ───────────────────────────────────────────────────

    async def run_stdio(self) -> None:
        """Run the server with stdio transport (for MCP-compatible clients)."""
        logger.info("starting_mcp_server", transport="stdio", cwd=self.cwd)
        try:
            await self.app.run_stdio_async()
        except KeyboardInterrupt:
            logger.info("mcp_server_stopped")
        finally:
            self.orchestrator.stop()

    async def run_sse(self, host: str = "127.0.0.1", port: int = 8001) -> None:
        """Run the server with SSE (Server-Sent Events) transport.

        Args:
            host: Host to bind to
            port: Port to listen on
        """
        logger.info("starting_mcp_server", transport="sse", host=host, port=port, cwd=self.cwd)
        config = uvicorn.Config(app=self.app.sse_app(), host=host, port=port, log_level="info")
        server = uvicorn.Server(config)
        try:
            await server.serve()
        except KeyboardInterrupt:
            logger.info("mcp_server_stopped")
        finally:
            self.orchestrator.stop()


"""pwcapture: Playwright test orchestration with live action capture.

Runs browser end-to-end tests as subprocesses, collects the actions, network
traffic, console output and DOM snapshots they report over a loopback
capture channel, and answers queries and reports over the finished runs.
"""

from pwcapture.config import CaptureSettings, load_settings
from pwcapture.models import ActionCapture, Run, TestEntry
from pwcapture.query import QueryEngine
from pwcapture.runner import ExecuteOptions, Orchestrator, RunTarget

__version__ = "0.1.0"

__all__ = [
    "ActionCapture",
    "CaptureSettings",
    "ExecuteOptions",
    "Orchestrator",
    "QueryEngine",
    "Run",
    "RunTarget",
    "TestEntry",
    "__version__",
    "load_settings",
]

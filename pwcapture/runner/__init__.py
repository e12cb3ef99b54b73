"""Test execution: subprocess management, orchestration and run bookkeeping."""

from pwcapture.runner.commands import PlaywrightCommand, build_env
from pwcapture.runner.discovery import (
    PlaywrightProject,
    TestCase,
    TestFile,
    discover_projects,
    discover_tests,
)
from pwcapture.runner.history import HistoryEntry, RunHistory
from pwcapture.runner.orchestrator import ExecuteOptions, Orchestrator, RunTarget, split_location
from pwcapture.runner.process import ManagedProcess, ProcessOutcome
from pwcapture.runner.screenshots import collect_attachments
from pwcapture.runner.store import RunStore

__all__ = [
    "ExecuteOptions",
    "HistoryEntry",
    "ManagedProcess",
    "Orchestrator",
    "PlaywrightCommand",
    "PlaywrightProject",
    "ProcessOutcome",
    "RunHistory",
    "RunStore",
    "RunTarget",
    "TestCase",
    "TestFile",
    "build_env",
    "collect_attachments",
    "discover_projects",
    "discover_tests",
    "split_location",
]

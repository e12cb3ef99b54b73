"""Parsers for test-runner output and test source files."""

from pwcapture.parsers.batch_report import BatchParseResult, load_report, parse_batch_report
from pwcapture.parsers.error_extract import extract_error, find_error_span, meaningful_tail
from pwcapture.parsers.scanner import (
    TEST_START_PATTERN,
    BraceScanner,
    find_test_bounds,
    find_test_start,
)
from pwcapture.parsers.text import ProgressTally, clean_output, strip_ansi

__all__ = [
    "BatchParseResult",
    "BraceScanner",
    "ProgressTally",
    "TEST_START_PATTERN",
    "clean_output",
    "extract_error",
    "find_error_span",
    "find_test_bounds",
    "find_test_start",
    "load_report",
    "meaningful_tail",
    "parse_batch_report",
    "strip_ansi",
]

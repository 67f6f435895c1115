"""Analysis of test failure messages and stack traces.

JUnit reporters differ in how much they say about a failure, so the message
and the stack trace are mined for the assertion that failed and the source
positions involved. Anything not recognised is simply left empty.
"""

import re
from collections.abc import Sequence

from execution_tracker.models.failure import (
    FailureCategory,
    FailureDetails,
    SourceLocation,
)

# Checked in order; the first keyword found in the type or message wins.
CATEGORY_KEYWORDS: Sequence[tuple[FailureCategory, str]] = (
    ("assertion", "assert"),
    ("timeout", "timeout"),
    ("element", "element"),
    ("network", "network"),
)

FRAMEWORK_KEYWORDS: Sequence[tuple[str, str]] = (
    ("junit", "JUnit"),
    ("pytest", "pytest"),
    ("testng", "TestNG"),
    ("nunit", "NUnit"),
)

# expected:<200> but was:<500>
_JUNIT_EXPECTED = re.compile(r"expected:\s*<(.*?)>\s*but\s+was:\s*<(.*?)>", re.I)
# expected 200 but got 500
_PROSE_EXPECTED = re.compile(
    r"expected:?\s+(.+?),?\s+but\s+(?:was|got|found)\s*:?\s+(.+?)\s*$", re.I | re.M
)
# assert 500 == 200
_COMPARISON = re.compile(
    r"^\s*(?:E\s+)?(?:assert|AssertionError:)\s+"
    r"(.+?)\s*(==|!=|<=|>=|<|>)\s*(.+?)\s*$",
    re.M,
)

_JAVA_FRAME = re.compile(r"at\s+([\w$.<>]+)\((.+?):(\d+)(?::(\d+))?\)")
_PYTHON_FRAME = re.compile(r'File\s+"(.+?)",\s*line\s+(\d+)(?:,\s*in\s+(\S+))?')
_FILE_LINE = re.compile(r"^\s*([\w./\\-]+\.\w+):(\d+)(?::(\d+))?")


def categorize_failure(failure_type: str, message: str) -> FailureCategory:
    """Classify a failure from its type and message."""
    text = f"{failure_type} {message}".lower()
    for category, keyword in CATEGORY_KEYWORDS:
        if keyword in text:
            return category
    return "general"


def detect_framework(class_name: str, failure_type: str) -> str:
    """Guess the test framework from the class name and failure type."""
    text = f"{class_name} {failure_type}".lower()
    for keyword, framework in FRAMEWORK_KEYWORDS:
        if keyword in text:
            return framework
    return "Unknown"


def extract_assertion(text: str) -> tuple[str, str, str] | None:
    """Find the expected value, actual value and operator of a failed assertion.

    Returns ``None`` when no assertion is recognised.
    """
    if match := _JUNIT_EXPECTED.search(text):
        return match.group(1), match.group(2), "=="
    if match := _PROSE_EXPECTED.search(text):
        return match.group(1), match.group(2), "=="
    if match := _COMPARISON.search(text):
        actual, operator, expected = match.groups()
        return expected, actual, operator
    return None


def extract_locations(stack_trace: str) -> Sequence[SourceLocation]:
    """List the source positions a stack trace goes through, in order."""
    locations: list[SourceLocation] = []
    for line in stack_trace.splitlines():
        if match := _JAVA_FRAME.search(line):
            function, file, lineno, column = match.groups()
            locations.append(
                SourceLocation(
                    file=file,
                    line=int(lineno),
                    column=int(column) if column else None,
                    function=function,
                )
            )
        elif match := _PYTHON_FRAME.search(line):
            file, lineno, function = match.groups()
            locations.append(
                SourceLocation(file=file, line=int(lineno), function=function)
            )
        elif match := _FILE_LINE.match(line):
            file, lineno, column = match.groups()
            locations.append(
                SourceLocation(
                    file=file,
                    line=int(lineno),
                    column=int(column) if column else None,
                )
            )
    return locations


def analyze_failure(
    *,
    failure_type: str | None,
    message: str | None,
    stack_trace: str | None,
    method: str = "",
    class_name: str = "",
    file: str | None = None,
    line: int | None = None,
) -> FailureDetails:
    """Build the details of a failure reported by a test runner."""
    failure_type = failure_type or "TestFailure"
    message = message or ""
    stack_trace = (stack_trace or "").strip()

    assertion = extract_assertion(f"{message}\n{stack_trace}")
    expected, actual, operator = assertion or (None, None, None)

    return FailureDetails(
        type=failure_type,
        message=message,
        category=categorize_failure(failure_type, message),
        framework=detect_framework(class_name, failure_type),
        method=method,
        class_name=class_name,
        file=file,
        line=line,
        expected=expected,
        actual=actual,
        operator=operator,
        stack_trace=stack_trace or None,
        locations=extract_locations(stack_trace),
    )

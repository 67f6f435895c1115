"""Parsing of test result artifacts produced by CI runs.

Two formats are understood: JUnit XML reports, and JSON documents shaped
like the webhook payload (``{"results": [{"id": ..., "status": ...}]}``).
"""

import json
import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from pydantic import TypeAdapter, ValidationError

from execution_tracker.ci.base import Artifact
from execution_tracker.failures import analyze_failure
from execution_tracker.models.failure import FailureDetails
from execution_tracker.models.payloads import ReportedTestCase, results_from_reports
from execution_tracker.models.result import TestResult, TestStatus

log = logging.getLogger(__name__)

REPORTS_ADAPTER = TypeAdapter(list[ReportedTestCase])

LOG_SECTIONS = (("system-out", "=== STDOUT ==="), ("system-err", "=== STDERR ==="))


class ArtifactParseError(ValueError):
    """Raised when an artifact document cannot be parsed."""


@dataclass(frozen=True, kw_only=True)
class JUnitCase:
    """One ``<testcase>`` element of a JUnit report."""

    name: str
    classname: str
    status: TestStatus
    duration_ms: int
    logs: str | None = None
    failure: FailureDetails | None = None


def parse_junit_xml(content: str | bytes) -> Sequence[JUnitCase]:
    """Parse every test case of a JUnit XML report.

    Both a ``<testsuites>`` root and a single ``<testsuite>`` root are
    accepted.

    Raises:
        ArtifactParseError: If the document is not well-formed JUnit XML

    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise ArtifactParseError(f"Malformed JUnit XML: {exc}") from exc

    if root.tag not in ("testsuites", "testsuite"):
        raise ArtifactParseError(f"Unexpected JUnit root element <{root.tag}>")

    return [_junit_case(element) for element in root.iter("testcase")]


def _junit_case(element: ET.Element) -> JUnitCase:
    failure = element.find("failure")
    if failure is None:
        failure = element.find("error")

    status: TestStatus
    if failure is not None:
        status = "Failed"
    elif element.find("skipped") is not None:
        status = "Blocked"
    else:
        status = "Passed"

    try:
        duration_ms = int(float(element.get("time") or 0) * 1000)
    except ValueError:
        duration_ms = 0

    logs: list[str] = []
    if failure is not None:
        message = failure.get("message")
        if message:
            logs.append(message)
        if failure.text and failure.text.strip():
            logs.append(failure.text.strip())
    for tag, header in LOG_SECTIONS:
        output = element.findtext(tag)
        if output and output.strip():
            logs.extend([header, output.strip()])

    name = element.get("name") or "Unknown Test"
    classname = element.get("classname") or ""
    return JUnitCase(
        name=name,
        classname=classname,
        status=status,
        duration_ms=duration_ms,
        logs="\n".join(logs) or None,
        failure=_failure_details(failure, element, name, classname),
    )


def _failure_details(
    failure: ET.Element | None, element: ET.Element, name: str, classname: str
) -> FailureDetails | None:
    if failure is None:
        return None
    line = element.get("line")
    return analyze_failure(
        failure_type=failure.get("type"),
        message=failure.get("message"),
        stack_trace=failure.text,
        method=name,
        class_name=classname,
        file=element.get("file"),
        line=int(line) if line and line.isdigit() else None,
    )


def select_junit_case(
    cases: Iterable[JUnitCase], test_case_id: str
) -> JUnitCase | None:
    """Pick the JUnit case reporting ``test_case_id``.

    An exact match on name or class name wins over a case-insensitive
    substring match.
    """
    cases = list(cases)
    for case in cases:
        if test_case_id in (case.name, case.classname):
            return case

    lowered = test_case_id.lower()
    for case in cases:
        if lowered in case.name.lower() or lowered in case.classname.lower():
            return case
    return None


def junit_case_to_result(
    case: JUnitCase, test_case_id: str, *, source: str
) -> TestResult:
    """Convert a JUnit case into the result of ``test_case_id``."""
    return TestResult(
        test_case_id=test_case_id,
        status=case.status,
        duration_ms=case.duration_ms,
        logs=case.logs,
        name=case.name,
        failure=case.failure,
        source=source,
    )


def parse_json_results(content: str | bytes) -> Sequence[ReportedTestCase]:
    """Parse a JSON results document.

    Accepts either ``{"results": [...]}`` or a bare list of results.

    Raises:
        ArtifactParseError: If the document is not valid JSON of that shape

    """
    try:
        data = json.loads(content)
    except ValueError as exc:
        raise ArtifactParseError(f"Malformed JSON results: {exc}") from exc

    if isinstance(data, Mapping):
        data = data.get("results")
    if not isinstance(data, list):
        raise ArtifactParseError("JSON results document has no results list")

    try:
        return REPORTS_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise ArtifactParseError(f"Invalid JSON results: {exc}") from exc


def parse_artifacts(
    artifacts: Iterable[Artifact],
    requested_test_case_ids: Sequence[str],
    *,
    source: str,
) -> Sequence[TestResult]:
    """Extract results for the requested test cases from run artifacts.

    Files ending in ``.xml`` are read as JUnit reports and files ending in
    ``.json`` as JSON results; anything else is ignored. Results for test
    cases that were not requested are dropped. The first result found for
    a test case wins.

    Raises:
        ArtifactParseError: If any result document is malformed

    """
    requested = set(requested_test_case_ids)
    found: dict[str, TestResult] = {}
    junit_cases: list[JUnitCase] = []

    for artifact in artifacts:
        for filename, content in artifact.files.items():
            lowered = filename.lower()
            if lowered.endswith(".xml"):
                junit_cases.extend(parse_junit_xml(content))
            elif lowered.endswith(".json"):
                reports = parse_json_results(content)
                for result in results_from_reports(
                    ((None, report) for report in reports), source=source
                ):
                    if result.test_case_id in requested:
                        found.setdefault(result.test_case_id, result)
            else:
                log.debug("Ignoring artifact file %s/%s", artifact.name, filename)

    if junit_cases:
        for test_case_id in requested_test_case_ids:
            if test_case_id in found:
                continue
            case = select_junit_case(junit_cases, test_case_id)
            if case is not None:
                found[test_case_id] = junit_case_to_result(
                    case, test_case_id, source=source
                )

    return [found[tc] for tc in requested_test_case_ids if tc in found]

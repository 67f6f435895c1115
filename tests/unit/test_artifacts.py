"""Tests for artifact parsing."""

import json

import pytest

from execution_tracker.artifacts import (
    ArtifactParseError,
    parse_artifacts,
    parse_json_results,
    parse_junit_xml,
    select_junit_case,
)
from execution_tracker.ci.base import Artifact
from execution_tracker.testing.junit import junit_report


class TestParseJunitXml:
    """Tests for parse_junit_xml."""

    def test_maps_outcomes_to_statuses(self) -> None:
        """failure and error are Failed, skipped is Blocked, else Passed."""
        cases = parse_junit_xml(
            junit_report(
                {
                    "TC_001": "passed",
                    "TC_002": "failed",
                    "TC_003": "error",
                    "TC_004": "skipped",
                }
            )
        )

        assert [(c.name, c.status) for c in cases] == [
            ("TC_001", "Passed"),
            ("TC_002", "Failed"),
            ("TC_003", "Failed"),
            ("TC_004", "Blocked"),
        ]

    def test_converts_time_and_collects_logs(self) -> None:
        """time is seconds; logs include failure text and stdout."""
        (case,) = parse_junit_xml(junit_report({"TC_002": "failed"}))

        assert case.duration_ms == 250
        assert case.logs is not None
        assert "AssertionError: expected 200" in case.logs
        assert "=== STDOUT ===" in case.logs
        assert "running TC_002" in case.logs

    def test_failures_are_analyzed(self) -> None:
        """failure and error elements produce failure details; passes do not."""
        passed, failed, errored = parse_junit_xml(
            junit_report({"TC_001": "passed", "TC_002": "failed", "TC_003": "error"})
        )

        assert passed.failure is None
        assert failed.failure is not None
        assert failed.failure.type == "AssertionError"
        assert failed.failure.message == "AssertionError: expected 200"
        assert failed.failure.category == "assertion"
        assert (failed.failure.expected, failed.failure.actual) == ("200", "500")
        assert failed.failure.method == "TC_002"
        assert failed.failure.class_name == "tests.test_quality-tracker"
        assert errored.failure is not None
        assert errored.failure.type == "RuntimeError"
        assert errored.failure.category == "general"
        assert errored.failure.stack_trace is None

    def test_failure_reads_file_line_and_stack_trace(self) -> None:
        """Test case file and line attributes and trace frames are kept."""
        (case,) = parse_junit_xml(
            '<testsuite name="s">'
            '<testcase classname="com.acme.junit.LoginTest" name="TC_001"'
            ' file="LoginTest.java" line="40">'
            '<failure type="java.lang.AssertionError"'
            ' message="expected:&lt;200&gt; but was:&lt;500&gt;">'
            "java.lang.AssertionError\n"
            "\tat com.acme.LoginTest.testLogin(LoginTest.java:42)"
            "</failure></testcase></testsuite>"
        )

        assert case.failure is not None
        assert (case.failure.file, case.failure.line) == ("LoginTest.java", 40)
        assert case.failure.framework == "JUnit"
        assert (case.failure.expected, case.failure.actual) == ("200", "500")
        assert [(loc.file, loc.line) for loc in case.failure.locations] == [
            ("LoginTest.java", 42)
        ]

    def test_accepts_single_testsuite_root(self) -> None:
        """A lone testsuite element is a valid report."""
        cases = parse_junit_xml(
            '<testsuite name="s"><testcase name="TC_001" time="1.5"/></testsuite>'
        )

        assert cases[0].duration_ms == 1500
        assert cases[0].logs is None

    def test_rejects_malformed_xml(self) -> None:
        """Broken XML raises ArtifactParseError."""
        with pytest.raises(ArtifactParseError, match="Malformed"):
            parse_junit_xml("<testsuites><testsuite>")

    def test_rejects_other_documents(self) -> None:
        """Well-formed XML that is not JUnit is rejected."""
        with pytest.raises(ArtifactParseError, match="<html>"):
            parse_junit_xml("<html></html>")


class TestSelectJunitCase:
    """Tests for select_junit_case."""

    def test_prefers_exact_match(self) -> None:
        """An exact name match wins over a containing name."""
        cases = parse_junit_xml(
            junit_report({"test_tc_001_login": "failed", "TC_001": "passed"})
        )

        selected = select_junit_case(cases, "TC_001")

        assert selected is not None
        assert selected.name == "TC_001"

    def test_falls_back_to_case_insensitive_containment(self) -> None:
        """The ID may appear anywhere in the name, in any case."""
        cases = parse_junit_xml(junit_report({"test_tc_002_checkout": "passed"}))

        selected = select_junit_case(cases, "TC_002")

        assert selected is not None
        assert selected.name == "test_tc_002_checkout"

    def test_returns_none_without_match(self) -> None:
        """No matching case gives None."""
        cases = parse_junit_xml(junit_report({"TC_001": "passed"}))

        assert select_junit_case(cases, "TC_404") is None


def test_parse_json_results_accepts_both_shapes() -> None:
    """Results may be wrapped in an object or a bare list."""
    item = {"id": "TC_001", "status": "Passed"}

    assert len(parse_json_results(json.dumps({"results": [item]}))) == 1
    assert len(parse_json_results(json.dumps([item]))) == 1


def test_parse_json_results_rejects_other_documents() -> None:
    """Documents without a results list are rejected."""
    with pytest.raises(ArtifactParseError):
        parse_json_results(json.dumps({"status": "done"}))
    with pytest.raises(ArtifactParseError):
        parse_json_results("not json")


class TestParseArtifacts:
    """Tests for parse_artifacts."""

    def test_collects_requested_results_in_order(self) -> None:
        """Results come back in request order; unrequested ones are dropped."""
        artifacts = [
            Artifact(
                name="test-results",
                files={
                    "junit.xml": junit_report(
                        {"TC_002": "failed", "TC_001": "passed", "TC_009": "passed"}
                    ).encode()
                },
            )
        ]

        results = parse_artifacts(artifacts, ["TC_001", "TC_002"], source="ci_poll")

        assert [(r.test_case_id, r.status) for r in results] == [
            ("TC_001", "Passed"),
            ("TC_002", "Failed"),
        ]
        assert all(r.source == "ci_poll" for r in results)

    def test_json_results_take_precedence_over_junit(self) -> None:
        """The first result found for a test case wins."""
        artifacts = [
            Artifact(
                name="test-results-json",
                files={
                    "results.json": json.dumps(
                        {"results": [{"id": "TC_001", "status": "Failed"}]}
                    ).encode()
                },
            ),
            Artifact(
                name="test-results-junit",
                files={"junit.xml": junit_report({"TC_001": "passed"}).encode()},
            ),
        ]

        results = parse_artifacts(artifacts, ["TC_001"], source="ci_poll")

        assert [r.status for r in results] == ["Failed"]

    def test_ignores_other_files(self) -> None:
        """Files that are neither XML nor JSON are skipped."""
        artifacts = [Artifact(name="test-results", files={"report.html": b"<p>"})]

        assert parse_artifacts(artifacts, ["TC_001"], source="ci_poll") == []

    def test_malformed_document_raises(self) -> None:
        """A malformed result document fails the whole parse."""
        artifacts = [Artifact(name="test-results", files={"junit.xml": b"<oops"})]

        with pytest.raises(ArtifactParseError):
            parse_artifacts(artifacts, ["TC_001"], source="ci_poll")

    def test_failure_details_reach_results(self) -> None:
        """Results parsed from JUnit carry the failure analysis."""
        artifacts = [
            Artifact(
                name="test-results",
                files={"junit.xml": junit_report({"TC_002": "failed"}).encode()},
            )
        ]

        (result,) = parse_artifacts(artifacts, ["TC_002"], source="ci_poll")

        assert result.failure is not None
        assert result.failure.category == "assertion"
        assert result.failure.stack_trace is not None
        assert "assert 500 == 200" in result.failure.stack_trace

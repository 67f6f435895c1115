"""JUnit XML documents for tests."""

from collections.abc import Mapping


def junit_report(cases: Mapping[str, str], *, suite: str = "quality-tracker") -> str:
    """Build a JUnit XML report with one test case per entry.

    Keys are test case names, values one of ``passed``, ``failed``,
    ``error`` or ``skipped``.
    """
    elements = []
    for name, outcome in cases.items():
        body = ""
        if outcome == "failed":
            body = (
                '<failure message="AssertionError: expected 200" type="AssertionError">'
                "Traceback (most recent call last):\n  assert 500 == 200</failure>"
            )
        elif outcome == "error":
            body = '<error message="setup failed" type="RuntimeError"/>'
        elif outcome == "skipped":
            body = '<skipped message="not applicable"/>'
        elements.append(
            f'<testcase classname="tests.test_{suite}" name="{name}" time="0.25">'
            f"{body}<system-out>running {name}</system-out></testcase>"
        )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<testsuites><testsuite name="{suite}" tests="{len(cases)}">'
        f"{''.join(elements)}</testsuite></testsuites>"
    )

"""CLI entry point for running a subject's test cases."""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from execution_tracker.app import open_coordinator
from execution_tracker.config import RunnerSettings
from execution_tracker.coordinator import ExecutionOptions
from execution_tracker.errors import ConfigurationError
from execution_tracker.models.request import ExecutionReport
from execution_tracker.store import JsonFileRecordStore

STATUS_SYMBOLS = {
    "Passed": "✅",
    "Failed": "❌",
    "Blocked": "⛔",
    "Cancelled": "🚫",
    "Running": "⏳",
    "Not Started": "⏸️",
}

FAILED_STATUSES = frozenset(["Failed", "Blocked"])


def log_results_summary(log: logging.Logger, report: ExecutionReport) -> None:
    """Log a formatted summary of the run's results."""
    log.info("=" * 80)
    log.info("Test Results Summary (%s): %s", report.request_id, report.outcome)
    log.info("=" * 80)

    for result in report.results:
        symbol = STATUS_SYMBOLS.get(result.status, "?")
        log.info(
            "%s %s: %s (%.2fs)",
            symbol,
            result.test_case_id,
            result.status,
            result.duration_ms / 1000,
        )
    if report.message:
        log.info("Message: %s", report.message)


def format_output(report: ExecutionReport) -> dict[str, Any]:
    """Format the run's report for JSON output."""
    results: list[dict[str, Any]] = []
    for result in report.results:
        entry: dict[str, Any] = {
            "test_case_id": result.test_case_id,
            "status": result.status,
            "duration_ms": result.duration_ms,
            "source": result.source,
        }
        if result.failure is not None:
            entry["failure"] = result.failure.model_dump(
                mode="json", by_alias=True, exclude={"stack_trace"}
            )
        results.append(entry)

    return {
        "request_id": report.request_id,
        "subject_id": report.subject_id,
        "outcome": report.outcome,
        "message": report.message,
        "total": len(results),
        "passed": sum(1 for r in results if r["status"] == "Passed"),
        "failed": sum(1 for r in results if r["status"] == "Failed"),
        "blocked": sum(1 for r in results if r["status"] == "Blocked"),
        "results": results,
    }


def select_test_cases(
    store: JsonFileRecordStore, subject_id: str, explicit: Sequence[str]
) -> Sequence[str]:
    """Use the given test cases, or every test case linked to the subject."""
    if explicit:
        return tuple(explicit)
    return tuple(
        test_case.id
        for test_case in store.test_cases.values()
        if subject_id in test_case.requirement_ids
    )


async def run(
    settings_path: Path,
    store_path: Path,
    subject_id: str,
    test_case_ids: Sequence[str] = (),
    simulate: bool = False,
) -> int:
    """Run the subject's test cases and return exit code."""
    log = logging.getLogger("execution_tracker")

    try:
        settings = RunnerSettings.load(settings_path)
    except (OSError, ValidationError) as exc:
        log.error("Cannot read settings from %s: %s", settings_path, exc)
        return 2
    try:
        store = JsonFileRecordStore.load(store_path)
    except (OSError, ValidationError) as exc:
        log.error("Cannot read test cases from %s: %s", store_path, exc)
        return 2

    selected = select_test_cases(store, subject_id, test_case_ids)
    if not selected:
        log.info("No test cases linked to %s", subject_id)
        print(json.dumps({"total": 0, "results": []}))
        return 0

    async with open_coordinator(settings, store) as coordinator:
        try:
            handle = await coordinator.start(
                subject_id, selected, ExecutionOptions(simulate=simulate)
            )
        except ConfigurationError as exc:
            log.error("Cannot run tests: %s", exc)
            return 2
        report = await coordinator.wait(handle)

    store.save()
    log_results_summary(log, report)

    output = format_output(report)
    print(json.dumps(output, indent=2))

    has_failures = report.outcome != "completed" or any(
        result.status in FAILED_STATUSES for result in report.results
    )
    return 1 if has_failures else 0


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run a requirement's test cases in CI and record the results"
    )
    parser.add_argument(
        "--settings",
        type=Path,
        required=True,
        help="Path to the JSON CI settings (repoUrl, ghToken, workflowId, ...)",
    )
    parser.add_argument(
        "--store",
        type=Path,
        required=True,
        help="Path to the JSON file holding test cases",
    )
    parser.add_argument(
        "--subject",
        required=True,
        help="Requirement ID the run is for",
    )
    parser.add_argument(
        "--test-case",
        action="append",
        default=[],
        dest="test_cases",
        help="Test case ID to run (repeatable; defaults to the subject's)",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Fabricate results instead of dispatching to CI",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    exit_code = asyncio.run(
        run(
            settings_path=args.settings,
            store_path=args.store,
            subject_id=args.subject,
            test_case_ids=args.test_cases,
            simulate=args.simulate,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()

"""
Unit tests for run reporting

Tests:
- Status classification and exit codes
- Summary table and error listing
- JSON export
"""

import json
import os
import tempfile
import unittest

from cms_migrate.models.migration import MigrationResult, MigrationSummary, RunStatus, WriteOutcome
from cms_migrate.services.reporter import MigrationReporter, format_bytes, format_duration


def result(collection, created=0, failed=0, halted=False) -> MigrationResult:
    r = MigrationResult(collection=collection, total=created + failed)
    for _ in range(created):
        r.record(WriteOutcome.CREATED)
    for i in range(failed):
        r.fail(i + 1, f"error {i + 1}", field="title")
    if halted:
        r.halted = True
        r.success = False
    return r


class TestRunStatus(unittest.TestCase):
    """Test MigrationSummary.status"""

    def test_no_failures_is_success(self):
        summary = MigrationSummary(results=[result("tags", created=3)])

        self.assertEqual(summary.status, RunStatus.SUCCESS)
        self.assertEqual(summary.status.exit_code, 0)

    def test_empty_run_is_success(self):
        self.assertEqual(MigrationSummary().status, RunStatus.SUCCESS)

    def test_mostly_successful_is_degraded(self):
        summary = MigrationSummary(results=[result("tags", created=3), result("music", created=2, failed=1)])

        self.assertEqual(summary.status, RunStatus.DEGRADED)
        self.assertEqual(summary.status.exit_code, 1)

    def test_mostly_failed_is_failed(self):
        summary = MigrationSummary(results=[result("music", created=1, failed=1)])

        self.assertEqual(summary.status, RunStatus.FAILED)

    def test_halted_migrator_fails_the_run(self):
        summary = MigrationSummary(results=[result("tags", created=50), result("music", created=10, failed=2, halted=True)])

        self.assertEqual(summary.status, RunStatus.FAILED)
        self.assertEqual(summary.status.exit_code, 2)

    def test_fatal_error_fails_the_run(self):
        summary = MigrationSummary(results=[result("tags", created=3)], fatal_error="connection refused")

        self.assertEqual(summary.status, RunStatus.FAILED)


class TestMigrationReporter(unittest.TestCase):
    """Test MigrationReporter rendering"""

    def test_format_helpers(self):
        self.assertEqual(format_duration(125.4), "2m 5s")
        self.assertEqual(format_duration(None), "n/a")
        self.assertEqual(format_bytes(5 * 1024 * 1024), "5.00 MB")
        self.assertEqual(format_bytes(3 * 1024 ** 3), "3.00 GB")

    def test_table_has_totals(self):
        reporter = MigrationReporter()
        reporter.add_result(result("tags", created=3))
        reporter.add_result(result("music", created=1, failed=1))

        table = reporter.format_table()

        lines = table.splitlines()
        self.assertTrue(lines[0].startswith("Collection"))
        self.assertTrue(lines[-1].startswith("TOTAL"))
        self.assertIn("4 (80.0%)", lines[-1])

    def test_summary_lists_first_errors(self):
        reporter = MigrationReporter()
        reporter.add_result(result("music", created=10, failed=5))

        text = reporter.format_summary()

        self.assertIn("Errors in music (5):", text)
        self.assertIn("  - Row 1 [title]: error 1", text)
        self.assertNotIn("error 4", text)
        self.assertIn("... and 2 more", text)
        self.assertIn("Migration completed with 5 errors", text)

    def test_status_lines(self):
        halted = MigrationReporter(MigrationSummary(results=[result("frames", created=1, failed=3, halted=True)]))
        fatal = MigrationReporter(MigrationSummary(fatal_error="connection refused"))

        self.assertEqual(MigrationReporter().status_line(), "Migration completed successfully")
        self.assertEqual(halted.status_line(), "Migration failed: error limit exceeded in frames")
        self.assertEqual(fatal.status_line(), "Migration failed: connection refused")

    def test_dry_run_mode_is_shown(self):
        reporter = MigrationReporter(MigrationSummary(dry_run=True))

        self.assertIn("Mode: DRY RUN (skip existing records)", reporter.format_summary())

    def test_save_json(self):
        reporter = MigrationReporter()
        reporter.add_result(result("tags", created=2, failed=1))

        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "nested", "report.json")
            reporter.save_json(path)
            with open(path) as f:
                report = json.load(f)

        self.assertEqual(report["status"], "degraded")
        self.assertEqual(report["total_failed"], 1)
        self.assertEqual(report["results"][0]["errors"][0]["message"], "error 1")

    def test_media_stats_line(self):
        summary = MigrationSummary(media_stats={
            "downloaded": 4, "cache_hits": 2, "uploaded": 3, "reused": 1,
            "skipped": 0, "failed": 1, "bytes_uploaded": 2 * 1024 * 1024,
        })

        text = MigrationReporter(summary).format_summary()

        self.assertIn(
            "Media transfers: downloaded 4, cache hits 2, uploaded 3, reused 1, skipped 0, failed 1 (2.00 MB uploaded)",
            text,
        )

    def test_media_stats_line_omitted_without_transfers(self):
        self.assertNotIn("Media transfers:", MigrationReporter().format_summary())

    def test_media_stats_in_json(self):
        reporter = MigrationReporter(MigrationSummary(media_stats={"downloaded": 1, "failed": 2}))

        self.assertEqual(reporter.summary.to_dict()["media_stats"], {"downloaded": 1, "failed": 2})

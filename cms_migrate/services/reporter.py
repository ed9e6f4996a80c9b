"""Run reporting: summary table, status classification and JSON export."""

import json
import logging
from pathlib import Path
from typing import List, Optional

from ..models.migration import MigrationResult, MigrationSummary, RunStatus

logger = logging.getLogger(__name__)

MAX_ERRORS_SHOWN = 3
MEDIA_STAT_NAMES = ["downloaded", "cache_hits", "uploaded", "reused", "skipped", "failed"]


def format_duration(seconds: Optional[float]) -> str:
    """Render a duration as 'Xm Ys'."""
    if seconds is None:
        return "n/a"
    minutes, secs = divmod(int(round(seconds)), 60)
    return f"{minutes}m {secs}s"


def format_bytes(size: int) -> str:
    """Render a byte count in MB or GB."""
    gb = size / (1024 ** 3)
    if gb >= 1:
        return f"{gb:.2f} GB"
    return f"{size / (1024 ** 2):.2f} MB"


class MigrationReporter:
    """
    Accumulates migrator results and renders the final report.

    Supports:
    - Per-collection and total counts
    - Success rate and media totals
    - Final status line with exit code
    - JSON export of the full summary
    """

    HEADERS = ["Collection", "Total", "Success", "Failed", "Created", "Updated", "Existing", "Skipped", "Media"]

    def __init__(self, summary: Optional[MigrationSummary] = None):
        self.summary = summary or MigrationSummary()

    def add_result(self, result: MigrationResult) -> None:
        self.summary.add_result(result)

    @property
    def status(self) -> RunStatus:
        return self.summary.status

    def status_line(self) -> str:
        """One-line verdict for the run."""
        status = self.status
        if self.summary.fatal_error:
            return f"Migration failed: {self.summary.fatal_error}"
        if status == RunStatus.SUCCESS:
            return "Migration completed successfully"
        if status == RunStatus.DEGRADED:
            return f"Migration completed with {self.summary.total_failed} errors"
        halted = [r.collection for r in self.summary.results if r.halted]
        if halted:
            return f"Migration failed: error limit exceeded in {', '.join(halted)}"
        return f"Migration failed with {self.summary.total_failed} errors"

    def _row(self, result: MigrationResult) -> List[str]:
        processed = result.succeeded + result.failed
        pct = (result.succeeded / processed * 100) if processed else 100.0
        return [
            result.collection,
            str(result.total),
            f"{result.succeeded} ({pct:.1f}%)",
            str(result.failed),
            str(result.created),
            str(result.updated),
            str(result.existing),
            str(result.skipped),
            f"{result.media_transferred}+{result.media_reused}",
        ]

    def format_table(self) -> str:
        """Render the per-collection table with a TOTAL row."""
        rows = [self._row(r) for r in self.summary.results]

        total = MigrationResult(collection="TOTAL")
        for r in self.summary.results:
            total.total += r.total
            total.succeeded += r.succeeded
            total.failed += r.failed
            total.created += r.created
            total.updated += r.updated
            total.existing += r.existing
            total.skipped += r.skipped
            total.media_transferred += r.media_transferred
            total.media_reused += r.media_reused
        rows.append(self._row(total))

        widths = [
            max(len(self.HEADERS[i]), *(len(row[i]) for row in rows))
            for i in range(len(self.HEADERS))
        ]

        def line(cells: List[str]) -> str:
            return " | ".join(cell.ljust(widths[i]) for i, cell in enumerate(cells))

        separator = "-+-".join("-" * w for w in widths)
        out = [line(self.HEADERS), separator]
        out.extend(line(row) for row in rows[:-1])
        out.append(separator)
        out.append(line(rows[-1]))
        return "\n".join(out)

    def format_summary(self) -> str:
        """Render the full report."""
        summary = self.summary
        out = [
            "",
            "=" * 60,
            "MIGRATION SUMMARY",
            "=" * 60,
            f"Mode: {'DRY RUN' if summary.dry_run else 'LIVE'} ({summary.run_mode.value} existing records)",
            "",
            self.format_table(),
        ]

        for result in summary.results:
            if not result.errors:
                continue
            out.append("")
            out.append(f"Errors in {result.collection} ({len(result.errors)}):")
            for error in result.errors[:MAX_ERRORS_SHOWN]:
                field_info = f" [{error.field}]" if error.field else ""
                out.append(f"  - Row {error.row}{field_info}: {error.message}")
            if len(result.errors) > MAX_ERRORS_SHOWN:
                out.append(f"  ... and {len(result.errors) - MAX_ERRORS_SHOWN} more")

        out.extend([
            "",
            f"Duration: {format_duration(summary.duration_seconds)}",
            f"Media uploaded: {summary.total_media_transferred} "
            f"({format_bytes(summary.total_media_size_bytes)}), reused: {summary.total_media_reused}",
        ])
        if summary.media_stats:
            out.append(self.format_media_stats())
        out.extend([
            "",
            self.status_line(),
            "=" * 60,
        ])
        return "\n".join(out)

    def format_media_stats(self) -> str:
        """One line of transfer counters, downloads and cache hits included."""
        stats = self.summary.media_stats
        parts = [f"{name.replace('_', ' ')} {stats[name]}" for name in MEDIA_STAT_NAMES if name in stats]
        line = "Media transfers: " + ", ".join(parts)
        if stats.get("bytes_uploaded"):
            line += f" ({format_bytes(stats['bytes_uploaded'])} uploaded)"
        return line

    def print_summary(self) -> None:
        print(self.format_summary())

    def save_json(self, path: str) -> None:
        """Write the full summary as JSON."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w") as f:
            json.dump(self.summary.to_dict(), f, indent=2, default=str)
        logger.info(f"Report saved to {target}")

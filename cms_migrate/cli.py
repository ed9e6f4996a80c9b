"""Command line entry point for the legacy-to-CMS migration."""

import argparse
import logging
import sys
from typing import List, Optional

from .models.migration import MigrationConfig, RunMode, RunStatus
from .orchestrator import MigrationOrchestrator
from .services.schema_analyzer import format_table_schema

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cms-migrate",
        description="Migrate the legacy meditation database into the CMS",
    )
    parser.add_argument("--dry-run", action="store_true", help="Run without writing to the target")
    parser.add_argument("--analyze-only", action="store_true", help="Introspect the source schema and stop")
    parser.add_argument("--config", help="Load saved field mappings instead of generating them")
    parser.add_argument("--save-mappings", help="Write the generated field mappings to this file")
    parser.add_argument("--tables", help="Comma-separated collections or source tables to migrate")
    parser.add_argument("--reset", action="store_true", help="Delete the selected collections before importing")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in RunMode],
        default=RunMode.SKIP.value,
        help="What to do with records that already exist (default: skip)",
    )
    parser.add_argument("--unit", type=int, help="Only import Storyblok lessons of this unit")
    parser.add_argument("--cache-dir", help="Directory for downloaded media and the ID map snapshot")
    parser.add_argument("--batch-size", type=int, help="Rows per batch")
    parser.add_argument("--max-errors", type=int, help="Halt a migrator after this many errors")
    parser.add_argument("--interactive", action="store_true", help="Confirm each proposed field mapping")
    parser.add_argument("--report", help="Write the run summary as JSON to this file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    return parser


def config_from_args(args: argparse.Namespace) -> MigrationConfig:
    """Environment configuration overridden by command line flags."""
    config = MigrationConfig.from_env()

    config.dry_run = args.dry_run
    config.analyze_only = args.analyze_only
    config.mapping_file = args.config
    config.save_mappings = args.save_mappings
    config.reset = args.reset
    config.run_mode = RunMode(args.mode)
    config.interactive = args.interactive
    config.report_path = args.report

    if args.tables:
        config.tables = [t.strip() for t in args.tables.split(",") if t.strip()]
    if args.cache_dir:
        config.cache_dir = args.cache_dir
    if args.batch_size:
        config.batch_size = args.batch_size
    if args.max_errors is not None:
        config.max_errors = args.max_errors
    if args.unit is not None:
        config.storyblok_unit = args.unit

    return config


def main(argv: Optional[List[str]] = None):
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    config = config_from_args(args)
    orchestrator = MigrationOrchestrator(config)
    summary = orchestrator.run()

    if config.analyze_only and not summary.fatal_error:
        print("\n" + "=" * 60)
        print("SCHEMA ANALYSIS")
        print("=" * 60)
        for schema in orchestrator.schemas:
            print(format_table_schema(schema))
            print()
        collections = orchestrator.mappings.collections
        print(f"Mapped collections: {', '.join(collections) if collections else 'none'}")
        sys.exit(RunStatus.SUCCESS.exit_code)

    orchestrator.reporter.print_summary()
    sys.exit(summary.status.exit_code)


if __name__ == "__main__":
    main()
